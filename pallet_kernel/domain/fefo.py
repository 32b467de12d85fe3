"""
FEFO -- First-Expired-First-Out batch allocation.

Responsibility:
    Given the candidate batches of one product across all warehouses and a
    requested pallet quantity, decide which batches to draw from and how
    many pallets to take from each.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  InventoryService
    loads the candidates under lock and applies the resulting slices.

Invariants enforced:
    - Earliest expiration first.  Batches without an expiration date come
      last.  Ties break on production number, then batch id, so allocation
      is deterministic.
    - A batch is only split when it is the last one needed.
    - Sum of slice quantities == requested quantity, or nothing is
      allocated and InsufficientStockError is raised.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from pallet_kernel.exceptions import InsufficientStockError, InvalidQuantityError


@dataclass(frozen=True)
class BatchCandidate:
    """One warehouse batch eligible for withdrawal."""

    batch_id: UUID
    location_id: UUID
    batch_key: str
    production_number: int
    pallet_quantity: int
    expiration_date: datetime | None


@dataclass(frozen=True)
class BatchSlice:
    """Pallets taken from one batch to satisfy a withdrawal."""

    batch_id: UUID
    location_id: UUID
    batch_key: str
    production_number: int
    quantity: int
    expiration_date: datetime | None


def fefo_sort_key(candidate: BatchCandidate) -> tuple:
    return (
        candidate.expiration_date is None,
        candidate.expiration_date or datetime.max,
        candidate.production_number,
        str(candidate.batch_id),
    )


def order_fefo(candidates: list[BatchCandidate]) -> list[BatchCandidate]:
    return sorted(candidates, key=fefo_sort_key)


def allocate_fefo(
    product_id,
    candidates: list[BatchCandidate],
    quantity: int,
) -> list[BatchSlice]:
    """
    Select batches earliest-expiry first until ``quantity`` pallets are covered.

    Raises:
        InvalidQuantityError: quantity < 1.
        InsufficientStockError: total across all candidates < quantity.
    """
    if quantity < 1:
        raise InvalidQuantityError(quantity)

    available = sum(c.pallet_quantity for c in candidates if c.pallet_quantity > 0)
    if available < quantity:
        raise InsufficientStockError(str(product_id), quantity, available)

    slices: list[BatchSlice] = []
    remaining = quantity
    for candidate in order_fefo(candidates):
        if remaining == 0:
            break
        if candidate.pallet_quantity <= 0:
            continue
        take = min(candidate.pallet_quantity, remaining)
        slices.append(
            BatchSlice(
                batch_id=candidate.batch_id,
                location_id=candidate.location_id,
                batch_key=candidate.batch_key,
                production_number=candidate.production_number,
                quantity=take,
                expiration_date=candidate.expiration_date,
            )
        )
        remaining -= take

    return slices
