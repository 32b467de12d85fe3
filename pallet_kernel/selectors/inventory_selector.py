"""
Module: pallet_kernel.selectors.inventory_selector
Responsibility: Read-only inventory queries: per-location summaries for the
    report renderer, per-product batch listings in FEFO order, expiring
    batches, and an invariant audit over all inventories.
Architecture position: Kernel > Selectors.

Invariants checked by verify_inventory_invariants():
    total_matches_batches -- total_pallets == sum(batch.pallet_quantity)
    no_empty_inventory    -- no inventory row with total_pallets == 0
    within_capacity       -- sum(total_pallets) <= capacity for capacity-bound
                             locations
"""

from collections import defaultdict
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select

from pallet_kernel.domain.capacity import available_space, usage_percentage
from pallet_kernel.domain.clock import Clock, SystemClock
from pallet_kernel.domain.dtos import (
    BatchInfo,
    InventoryInfo,
    InvariantViolation,
    LocationSummary,
    ProductBreakdown,
)
from pallet_kernel.domain.values import BatchStatus
from pallet_kernel.exceptions import LocationNotFoundError
from pallet_kernel.models.inventory import Inventory, InventoryBatch
from pallet_kernel.models.location import Location
from pallet_kernel.models.product import Product
from pallet_kernel.selectors.base import BaseSelector

RULE_TOTAL_MATCHES_BATCHES = "total_matches_batches"
RULE_NO_EMPTY_INVENTORY = "no_empty_inventory"
RULE_WITHIN_CAPACITY = "within_capacity"


def _batch_sort_key(batch: BatchInfo) -> tuple:
    return (
        batch.expiration_date is None,
        batch.expiration_date or datetime.max,
        batch.production_number,
        str(batch.id),
    )


class InventorySelector(BaseSelector):
    """Read-only inventory views."""

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        expiring_soon_days: int = 7,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self.expiring_soon_days = expiring_soon_days

    def _batch_rows(self, *criteria):
        stmt = (
            select(InventoryBatch, Inventory.location_id, Inventory.product_id)
            .join(Inventory, Inventory.id == InventoryBatch.inventory_id)
            .where(*criteria)
        )
        return [
            BatchInfo(
                id=batch.id,
                location_id=location_id,
                product_id=product_id,
                batch_key=batch.batch_key,
                production_number=batch.production_number,
                pallet_quantity=batch.pallet_quantity,
                expiration_date=batch.expiration_date,
                status=batch.status,
                task_id=batch.task_id,
            )
            for batch, location_id, product_id in self.session.execute(stmt)
        ]

    def inventory(self, location_id: UUID, product_id: UUID) -> InventoryInfo | None:
        """One product's inventory at one location, or None if it holds none."""
        total = self.session.execute(
            select(Inventory.total_pallets).where(
                Inventory.location_id == location_id,
                Inventory.product_id == product_id,
            )
        ).scalar_one_or_none()
        if total is None:
            return None
        batches = self._batch_rows(
            Inventory.location_id == location_id,
            Inventory.product_id == product_id,
        )
        return InventoryInfo(
            location_id=location_id,
            product_id=product_id,
            total_pallets=total,
            batches=tuple(sorted(batches, key=_batch_sort_key)),
        )

    def occupied(self, location_id: UUID) -> int:
        return self.session.execute(
            select(func.coalesce(func.sum(Inventory.total_pallets), 0)).where(
                Inventory.location_id == location_id
            )
        ).scalar_one()

    def location_summary(self, location_id: UUID) -> LocationSummary:
        """
        Capacity, occupancy, and per-product breakdown of one location.

        Trucks additionally report reserved vs loaded pallets and the tasks
        that still hold reservations.
        """
        location = self.session.get(Location, location_id)
        if location is None:
            raise LocationNotFoundError(str(location_id))

        totals = self.session.execute(
            select(Inventory.product_id, Product.name, Inventory.total_pallets)
            .join(Product, Product.id == Inventory.product_id)
            .where(Inventory.location_id == location_id)
            .order_by(Product.name)
        ).all()

        by_status: dict[UUID, dict[BatchStatus, int]] = defaultdict(
            lambda: defaultdict(int)
        )
        reserving: list[UUID] = []
        for batch in self._batch_rows(Inventory.location_id == location_id):
            if batch.status is not None:
                by_status[batch.product_id][batch.status] += batch.pallet_quantity
            if batch.status is BatchStatus.RESERVED and batch.task_id is not None:
                reserving.append(batch.task_id)

        products = tuple(
            ProductBreakdown(
                product_id=product_id,
                product_name=name,
                pallets=total,
                reserved_pallets=by_status[product_id][BatchStatus.RESERVED],
                loaded_pallets=by_status[product_id][BatchStatus.LOADED],
            )
            for product_id, name, total in totals
        )
        occupied = sum(p.pallets for p in products)
        return LocationSummary(
            location_id=location.id,
            kind=location.kind,
            name=location.name,
            capacity=location.capacity,
            occupied=occupied,
            available=available_space(location.capacity, occupied),
            usage_percentage=usage_percentage(location.capacity, occupied),
            products=products,
            reserved_pallets=sum(p.reserved_pallets for p in products),
            loaded_pallets=sum(p.loaded_pallets for p in products),
            reserving_task_ids=tuple(sorted(reserving, key=str)),
        )

    def product_inventory(self, product_id: UUID) -> list[BatchInfo]:
        """Every batch of a product across all locations, FEFO ordered."""
        return sorted(
            self._batch_rows(Inventory.product_id == product_id),
            key=_batch_sort_key,
        )

    def expiring_batches(self, within_days: int | None = None) -> list[BatchInfo]:
        """Batches whose expiration date falls within ``within_days`` from now.

        The window defaults to ``expiring_soon_days``.  Already expired
        batches are included.
        """
        if within_days is None:
            within_days = self.expiring_soon_days
        cutoff = self._clock.now() + timedelta(days=within_days)
        return sorted(
            self._batch_rows(
                InventoryBatch.expiration_date.is_not(None),
                InventoryBatch.expiration_date <= cutoff,
            ),
            key=_batch_sort_key,
        )

    def verify_inventory_invariants(self) -> list[InvariantViolation]:
        """Audit every inventory.  An empty list means consistent."""
        violations: list[InvariantViolation] = []

        batch_sums = (
            select(
                InventoryBatch.inventory_id,
                func.sum(InventoryBatch.pallet_quantity).label("batch_total"),
            )
            .group_by(InventoryBatch.inventory_id)
            .subquery()
        )
        rows = self.session.execute(
            select(
                Inventory.location_id,
                Inventory.product_id,
                Inventory.total_pallets,
                func.coalesce(batch_sums.c.batch_total, 0),
            ).outerjoin(batch_sums, batch_sums.c.inventory_id == Inventory.id)
        ).all()

        occupied: dict[UUID, int] = defaultdict(int)
        for location_id, product_id, total, batch_total in rows:
            occupied[location_id] += total
            if total != batch_total:
                violations.append(
                    InvariantViolation(
                        rule=RULE_TOTAL_MATCHES_BATCHES,
                        location_id=location_id,
                        product_id=product_id,
                        detail=f"total_pallets={total} but batches sum to {batch_total}",
                    )
                )
            if total == 0:
                violations.append(
                    InvariantViolation(
                        rule=RULE_NO_EMPTY_INVENTORY,
                        location_id=location_id,
                        product_id=product_id,
                        detail="inventory row with zero pallets",
                    )
                )

        if occupied:
            locations = self.session.execute(
                select(Location).where(Location.id.in_(list(occupied)))
            ).scalars()
            for location in locations:
                if not location.kind.requires_capacity or not location.capacity:
                    continue
                if occupied[location.id] > location.capacity:
                    violations.append(
                        InvariantViolation(
                            rule=RULE_WITHIN_CAPACITY,
                            location_id=location.id,
                            detail=(
                                f"occupied={occupied[location.id]} exceeds "
                                f"capacity={location.capacity}"
                            ),
                        )
                    )

        return violations
