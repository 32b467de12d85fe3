"""Read-only query selectors."""

from pallet_kernel.selectors.base import BaseSelector
from pallet_kernel.selectors.inventory_selector import InventorySelector
from pallet_kernel.selectors.task_selector import TaskSelector

__all__ = [
    "BaseSelector",
    "InventorySelector",
    "TaskSelector",
]
