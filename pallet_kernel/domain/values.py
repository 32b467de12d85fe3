"""
Value types shared by the domain, models, and services.

Status values are stored verbatim, so their string values match the
codes drivers and reports already know (``teslim_alma_dogrulama``,
``forklift_üstünde``, ...).
"""

from enum import Enum


class LocationKind(str, Enum):
    """Kind of place that can hold or hand over pallets."""

    WAREHOUSE = "warehouse"
    TRUCK = "truck"
    DELIVERY_POINT = "delivery_point"
    PRODUCTION_LINE = "production_line"

    @property
    def requires_capacity(self) -> bool:
        return self in (LocationKind.WAREHOUSE, LocationKind.TRUCK)


class TaskType(str, Enum):
    PRODUCTION_TO_WAREHOUSE = "productionToWarehouse"
    PRODUCTION_TO_TRUCK = "productionToTruck"
    WAREHOUSE_TO_TRUCK = "warehouseToTruck"

    @property
    def is_production_origin(self) -> bool:
        return self is not TaskType.WAREHOUSE_TO_TRUCK

    @property
    def targets_truck(self) -> bool:
        return self is not TaskType.PRODUCTION_TO_WAREHOUSE


class TaskStatus(str, Enum):
    """Task lifecycle: PENDING_PICKUP -> IN_PROGRESS -> COMPLETED."""

    PENDING_PICKUP = "teslim_alma_dogrulama"
    IN_PROGRESS = "devam_ediyor"
    COMPLETED = "tamamlandı"


class PalletStatus(str, Enum):
    """Pallet micro-state: WAITING -> ON_FORKLIFT -> DELIVERED."""

    WAITING = "beklemede"
    ON_FORKLIFT = "forklift_üstünde"
    DELIVERED = "teslim_edildi"


class BatchStatus(str, Enum):
    """Truck batch state.  Warehouse and delivery-point batches carry none."""

    RESERVED = "reserved"
    LOADED = "loaded"


class ScanMode(str, Enum):
    PICKUP = "pickup"
    PALLET = "pallet"
    DELIVERY = "delivery"


def production_batch_key(production_number: int) -> str:
    """Batch key for stock received on completion, merged per production number."""
    return f"pn-{production_number}"


def reservation_batch_key(task_id) -> str:
    """Batch key for a truck reservation owned by one task."""
    return f"task-{task_id}"
