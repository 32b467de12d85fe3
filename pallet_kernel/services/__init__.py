"""
Kernel services.

Every service takes the caller's Session, flushes, and never commits.

    CatalogService    -- products, locations, drivers
    InventoryService  -- location-locked inventory deltas, FEFO withdrawal
    SequenceService   -- global production-number counter
    TaskOrchestrator  -- task lifecycle and its inventory effects
    ScanVerifier      -- driver scans (pickup, pallet, delivery)
"""

from pallet_kernel.services.catalog_service import CatalogService
from pallet_kernel.services.inventory_service import InventoryService
from pallet_kernel.services.scan_verifier import ScanVerifier
from pallet_kernel.services.sequence_service import SequenceCounter, SequenceService
from pallet_kernel.services.task_orchestrator import TaskOrchestrator

__all__ = [
    "CatalogService",
    "InventoryService",
    "ScanVerifier",
    "SequenceCounter",
    "SequenceService",
    "TaskOrchestrator",
]
