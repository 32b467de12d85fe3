"""
Pure domain layer.

Value types, state machines, FEFO allocation, the capacity policy, and
immutable DTOs.  No dependencies on the ORM, the database, or I/O (time
comes in through an injected Clock).
"""

from pallet_kernel.domain.capacity import available_space, ensure_capacity
from pallet_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from pallet_kernel.domain.dtos import (
    BatchInfo,
    DriverInfo,
    InventoryInfo,
    InvariantViolation,
    LocationInfo,
    LocationSummary,
    PalletInfo,
    ProductBreakdown,
    ProductInfo,
    ScanResult,
    TaskInfo,
)
from pallet_kernel.domain.fefo import BatchCandidate, BatchSlice, allocate_fefo
from pallet_kernel.domain.pallet_codes import PalletCodeGenerator
from pallet_kernel.domain.values import (
    BatchStatus,
    LocationKind,
    PalletStatus,
    ScanMode,
    TaskStatus,
    TaskType,
)

__all__ = [
    "available_space",
    "ensure_capacity",
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "BatchInfo",
    "DriverInfo",
    "InventoryInfo",
    "InvariantViolation",
    "LocationInfo",
    "LocationSummary",
    "PalletInfo",
    "ProductBreakdown",
    "ProductInfo",
    "ScanResult",
    "TaskInfo",
    "BatchCandidate",
    "BatchSlice",
    "allocate_fefo",
    "PalletCodeGenerator",
    "BatchStatus",
    "LocationKind",
    "PalletStatus",
    "ScanMode",
    "TaskStatus",
    "TaskType",
]
