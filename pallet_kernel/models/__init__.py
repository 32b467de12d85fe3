"""Domain models for the pallet kernel."""

from pallet_kernel.models.driver import Driver
from pallet_kernel.models.inventory import Inventory, InventoryBatch
from pallet_kernel.models.location import Location
from pallet_kernel.models.product import Product, normalize_product_name
from pallet_kernel.models.task import Task, TaskPallet

__all__ = [
    "Driver",
    "Inventory",
    "InventoryBatch",
    "Location",
    "Product",
    "normalize_product_name",
    "Task",
    "TaskPallet",
]
