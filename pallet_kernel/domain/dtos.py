"""
Immutable DTOs returned by services and selectors.

Services return these instead of ORM entities so callers (UI forms, the
driver app, report renderers) never hold live session state.
"""

from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from pallet_kernel.domain.values import (
    BatchStatus,
    LocationKind,
    PalletStatus,
    ScanMode,
    TaskStatus,
    TaskType,
)


@dataclass(frozen=True)
class ProductInfo:
    id: UUID
    name: str
    qr_code: str
    expiry_days: int
    stock: int


@dataclass(frozen=True)
class LocationInfo:
    id: UUID
    kind: LocationKind
    name: str
    qr_code: str
    capacity: int | None


@dataclass(frozen=True)
class DriverInfo:
    id: UUID
    name: str
    email: str
    is_active: bool


@dataclass(frozen=True)
class BatchInfo:
    id: UUID
    location_id: UUID
    product_id: UUID
    batch_key: str
    production_number: int
    pallet_quantity: int
    expiration_date: datetime | None
    status: BatchStatus | None = None
    task_id: UUID | None = None


@dataclass(frozen=True)
class InventoryInfo:
    location_id: UUID
    product_id: UUID
    total_pallets: int
    batches: tuple[BatchInfo, ...]


@dataclass(frozen=True)
class PalletInfo:
    sequence: int
    code: str
    status: PalletStatus


@dataclass(frozen=True)
class TaskInfo:
    """Snapshot of a task and its pallet set."""

    id: UUID
    task_type: TaskType
    status: TaskStatus
    product_id: UUID
    product_name: str
    product_qr_code: str
    production_number: int
    pallet_quantity: int
    assigned_to: UUID
    from_id: UUID
    from_name: str
    from_qr_code: str
    to_id: UUID
    to_name: str
    to_qr_code: str
    created_at: datetime
    expiration_date: datetime
    completed_at: datetime | None
    pallets: tuple[PalletInfo, ...] = field(default_factory=tuple)

    def pallets_in(self, status: PalletStatus) -> list[PalletInfo]:
        return [p for p in self.pallets if p.status == status]

    @property
    def all_delivered(self) -> bool:
        return bool(self.pallets) and all(
            p.status == PalletStatus.DELIVERED for p in self.pallets
        )


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one accepted driver scan."""

    mode: ScanMode
    task_id: UUID
    scanned_code: str
    task_status: TaskStatus
    pallets_affected: int
    remaining_pallets: int
    completed: bool = False


@dataclass(frozen=True)
class ProductBreakdown:
    product_id: UUID
    product_name: str
    pallets: int
    reserved_pallets: int = 0
    loaded_pallets: int = 0


@dataclass(frozen=True)
class LocationSummary:
    location_id: UUID
    kind: LocationKind
    name: str
    capacity: int | None
    occupied: int
    available: int | None
    usage_percentage: int
    products: tuple[ProductBreakdown, ...]
    reserved_pallets: int = 0
    loaded_pallets: int = 0
    reserving_task_ids: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class InvariantViolation:
    rule: str
    location_id: UUID
    detail: str
    product_id: UUID | None = None
