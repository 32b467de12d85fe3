"""
Capacity policy.

available_space = capacity - sum(total_pallets across all products).
A location without a declared capacity (production lines, delivery points)
is unlimited, represented by ``None``.
"""

from pallet_kernel.exceptions import CapacityExceededError


def available_space(capacity: int | None, occupied: int) -> int | None:
    """Free pallet slots, or None when the location is unlimited."""
    if not capacity:
        return None
    return capacity - occupied


def ensure_capacity(location_id, capacity: int | None, occupied: int, requested: int) -> None:
    """Raise CapacityExceededError if ``requested`` pallets do not fit."""
    space = available_space(capacity, occupied)
    if space is None:
        return
    if requested > space:
        raise CapacityExceededError(str(location_id), requested, max(space, 0), capacity)


def usage_percentage(capacity: int | None, occupied: int) -> int:
    if not capacity:
        return 0
    return round(occupied / capacity * 100)
