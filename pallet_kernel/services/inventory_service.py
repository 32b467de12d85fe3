"""
InventoryService -- per-location inventory mutation under a location lock.

Responsibility:
    Applies pallet deltas to one location's inventory sub-tree (inventory
    row + batches) and performs FEFO withdrawals from warehouses.  This is
    the only code path that writes ``inventories`` or ``inventory_batches``.

Architecture position:
    Kernel > Services -- imperative shell around the pure capacity policy
    (``domain/capacity.py``) and FEFO allocator (``domain/fefo.py``).

Invariants enforced:
    - Check-and-apply is serialized per location: the location row is
      locked (``SELECT ... FOR UPDATE``) before occupancy is read, and the
      lock is held until the caller's transaction ends.
    - total_pallets == sum(batch.pallet_quantity); totals move with SQL
      increment expressions, never by writing back a read snapshot.
    - No zero-quantity batch and no zero-total inventory survives a flush.
    - Warehouses are locked in ascending id order so two withdrawals
      never deadlock against each other.

Failure modes:
    - LocationNotFoundError: location id does not resolve.
    - CapacityExceededError: positive delta larger than available space.
    - InsufficientStockError: FEFO cannot cover the requested quantity.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import case, func, select

from pallet_kernel.domain import capacity as capacity_policy
from pallet_kernel.domain.fefo import BatchCandidate, BatchSlice, allocate_fefo
from pallet_kernel.domain.values import BatchStatus, LocationKind
from pallet_kernel.exceptions import LocationNotFoundError
from pallet_kernel.logging_config import get_logger
from pallet_kernel.models.inventory import Inventory, InventoryBatch
from pallet_kernel.models.location import Location
from pallet_kernel.services.base import BaseService

logger = get_logger("services.inventory")


class InventoryService(BaseService):
    """
    Service for location inventory deltas and FEFO withdrawal.

    Non-goals:
        - Does NOT decide *when* a delta applies; the TaskOrchestrator owns
          that mapping from task lifecycle to inventory effect.
        - Does NOT commit.
    """

    # =========================================================================
    # Locking and occupancy
    # =========================================================================

    def lock_location(self, location_id: UUID) -> Location:
        """Lock and return the location row."""
        location = self.session.execute(
            select(Location)
            .where(Location.id == location_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if location is None:
            raise LocationNotFoundError(str(location_id))
        return location

    def occupied_pallets(self, location_id: UUID) -> int:
        return self.session.execute(
            select(func.coalesce(func.sum(Inventory.total_pallets), 0)).where(
                Inventory.location_id == location_id
            )
        ).scalar_one()

    def available_space(self, location_id: UUID) -> int | None:
        """Free slots at the location, or None when it is unlimited."""
        location = self.session.get(Location, location_id)
        if location is None:
            raise LocationNotFoundError(str(location_id))
        return capacity_policy.available_space(
            location.capacity, self.occupied_pallets(location_id)
        )

    def ensure_space(self, location: Location, requested: int) -> None:
        """
        Raise CapacityExceededError unless ``requested`` pallets fit.

        Preconditions:
            ``location`` was returned by lock_location() in this transaction.
        """
        if not location.kind.requires_capacity:
            return
        capacity_policy.ensure_capacity(
            location.id,
            location.capacity,
            self.occupied_pallets(location.id),
            requested,
        )

    # =========================================================================
    # Deltas
    # =========================================================================

    def _find_inventory(self, location_id: UUID, product_id: UUID) -> Inventory | None:
        return self.session.execute(
            select(Inventory)
            .where(
                Inventory.location_id == location_id,
                Inventory.product_id == product_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _find_batch(self, inventory: Inventory, batch_key: str) -> InventoryBatch | None:
        return self.session.execute(
            select(InventoryBatch)
            .where(
                InventoryBatch.inventory_id == inventory.id,
                InventoryBatch.batch_key == batch_key,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def apply_delta(
        self,
        location_id: UUID,
        product_id: UUID,
        batch_key: str,
        quantity_delta: int,
        *,
        production_number: int | None = None,
        expiration_date: datetime | None = None,
        status: BatchStatus | None = None,
        task_id: UUID | None = None,
    ) -> int:
        """
        Add or remove pallets in one batch of one location's inventory.

        A positive delta is checked against the location's available space,
        creates the inventory and batch when absent, and otherwise merges
        into the existing batch (keeping the earlier expiration date).

        A negative delta removes at most what the batch holds, deletes the
        batch when it reaches zero, and deletes the inventory when its total
        reaches zero.  A missing batch or inventory is logged and skipped.

        Returns:
            The number of pallets actually added or removed (absolute).
        """
        if quantity_delta == 0:
            return 0

        location = self.lock_location(location_id)
        if quantity_delta > 0:
            applied = self._increment(
                location,
                product_id,
                batch_key,
                quantity_delta,
                production_number=production_number,
                expiration_date=expiration_date,
                status=status,
                task_id=task_id,
            )
        else:
            applied = self._decrement(location, product_id, batch_key, -quantity_delta)

        logger.info(
            "inventory_delta_applied",
            extra={
                "location_id": str(location_id),
                "product_id": str(product_id),
                "batch_key": batch_key,
                "quantity_delta": quantity_delta,
                "applied": applied,
            },
        )
        return applied

    def _increment(
        self,
        location: Location,
        product_id: UUID,
        batch_key: str,
        quantity: int,
        *,
        production_number: int | None,
        expiration_date: datetime | None,
        status: BatchStatus | None,
        task_id: UUID | None,
    ) -> int:
        self.ensure_space(location, quantity)

        inventory = self._find_inventory(location.id, product_id)
        if inventory is None:
            inventory = Inventory(
                location_id=location.id,
                product_id=product_id,
                total_pallets=0,
            )
            self.session.add(inventory)
            self.session.flush()

        batch = self._find_batch(inventory, batch_key)
        if batch is None:
            if production_number is None:
                raise ValueError(f"production_number required for new batch {batch_key}")
            self.session.add(
                InventoryBatch(
                    inventory_id=inventory.id,
                    batch_key=batch_key,
                    production_number=production_number,
                    pallet_quantity=quantity,
                    expiration_date=expiration_date,
                    status=status,
                    task_id=task_id,
                )
            )
        else:
            batch.pallet_quantity = InventoryBatch.pallet_quantity + quantity
            if expiration_date is not None and (
                batch.expiration_date is None or expiration_date < batch.expiration_date
            ):
                batch.expiration_date = expiration_date

        inventory.total_pallets = Inventory.total_pallets + quantity
        self.session.flush()
        self.session.expire(inventory, ["batches"])
        return quantity

    def _decrement(
        self,
        location: Location,
        product_id: UUID,
        batch_key: str,
        quantity: int,
    ) -> int:
        inventory = self._find_inventory(location.id, product_id)
        if inventory is None:
            logger.warning(
                "inventory_missing_on_decrement",
                extra={
                    "location_id": str(location.id),
                    "product_id": str(product_id),
                    "batch_key": batch_key,
                },
            )
            return 0

        batch = self._find_batch(inventory, batch_key)
        if batch is None:
            logger.warning(
                "batch_missing_on_decrement",
                extra={
                    "location_id": str(location.id),
                    "product_id": str(product_id),
                    "batch_key": batch_key,
                },
            )
            return 0

        removed = min(batch.pallet_quantity, quantity)
        if removed < quantity:
            logger.warning(
                "batch_decrement_floored",
                extra={
                    "batch_key": batch_key,
                    "requested": quantity,
                    "available": batch.pallet_quantity,
                },
            )

        if batch.pallet_quantity <= quantity:
            self.session.delete(batch)
        else:
            batch.pallet_quantity = InventoryBatch.pallet_quantity - quantity

        inventory.total_pallets = case(
            (Inventory.total_pallets < removed, 0),
            else_=Inventory.total_pallets - removed,
        )
        self.session.flush()
        self.session.refresh(inventory)
        self.session.expire(inventory, ["batches"])

        if inventory.total_pallets == 0:
            self.session.delete(inventory)
            self.session.flush()
        return removed

    # =========================================================================
    # FEFO withdrawal
    # =========================================================================

    def withdraw_fefo(
        self,
        product_id: UUID,
        quantity: int,
        warehouse_id: UUID | None = None,
    ) -> list[BatchSlice]:
        """
        Remove ``quantity`` pallets of a product from warehouses, earliest
        expiration first.

        Args:
            product_id: Product to withdraw.
            quantity: Pallets requested (>= 1).
            warehouse_id: Restrict the withdrawal to one warehouse.

        Returns:
            The slices taken, in FEFO order.  The first slice names the
            source warehouse and production number for the task.

        Raises:
            InvalidQuantityError: quantity < 1.
            InsufficientStockError: all warehouses together hold less.
        """
        stmt = (
            select(Inventory.location_id)
            .join(Location, Location.id == Inventory.location_id)
            .where(
                Inventory.product_id == product_id,
                Location.kind == LocationKind.WAREHOUSE,
            )
        )
        if warehouse_id is not None:
            stmt = stmt.where(Location.id == warehouse_id)

        warehouse_ids = sorted(set(self.session.execute(stmt).scalars()), key=str)
        for location_id in warehouse_ids:
            self.lock_location(location_id)

        candidates: list[BatchCandidate] = []
        if warehouse_ids:
            rows = self.session.execute(
                select(InventoryBatch, Inventory.location_id)
                .join(Inventory, Inventory.id == InventoryBatch.inventory_id)
                .where(
                    Inventory.product_id == product_id,
                    Inventory.location_id.in_(warehouse_ids),
                )
                .execution_options(populate_existing=True)
            ).all()
            candidates = [
                BatchCandidate(
                    batch_id=batch.id,
                    location_id=location_id,
                    batch_key=batch.batch_key,
                    production_number=batch.production_number,
                    pallet_quantity=batch.pallet_quantity,
                    expiration_date=batch.expiration_date,
                )
                for batch, location_id in rows
            ]

        slices = allocate_fefo(product_id, candidates, quantity)
        for piece in slices:
            self.apply_delta(
                piece.location_id, product_id, piece.batch_key, -piece.quantity
            )

        logger.info(
            "fefo_withdrawal",
            extra={
                "product_id": str(product_id),
                "quantity": quantity,
                "slices": [
                    {
                        "location_id": str(s.location_id),
                        "batch_key": s.batch_key,
                        "quantity": s.quantity,
                    }
                    for s in slices
                ],
            },
        )
        return slices

    # =========================================================================
    # Truck reservations
    # =========================================================================

    def find_task_batch(
        self,
        location_id: UUID,
        product_id: UUID,
        task_id: UUID,
    ) -> InventoryBatch | None:
        return self.session.execute(
            select(InventoryBatch)
            .join(Inventory, Inventory.id == InventoryBatch.inventory_id)
            .where(
                Inventory.location_id == location_id,
                Inventory.product_id == product_id,
                InventoryBatch.task_id == task_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def mark_loaded(self, location_id: UUID, product_id: UUID, task_id: UUID) -> bool:
        """
        Flip the task's reserved truck batch to loaded.

        Returns:
            True if a reserved batch was flipped; False if none was found or
            it was already loaded.  totalPallets is not changed.
        """
        self.lock_location(location_id)
        batch = self.find_task_batch(location_id, product_id, task_id)
        if batch is None:
            logger.warning(
                "reservation_missing_on_completion",
                extra={"location_id": str(location_id), "task_id": str(task_id)},
            )
            return False
        if batch.status == BatchStatus.LOADED:
            return False

        batch.status = BatchStatus.LOADED
        self.session.flush()
        logger.info(
            "reservation_loaded",
            extra={
                "location_id": str(location_id),
                "task_id": str(task_id),
                "pallet_quantity": batch.pallet_quantity,
            },
        )
        return True

    def remove_task_batch(self, location_id: UUID, product_id: UUID, task_id: UUID) -> int:
        """
        Remove the truck batch owned by a task, reserved or loaded.

        Returns:
            Pallets removed (0 when the task held no batch there).
        """
        self.lock_location(location_id)
        batch = self.find_task_batch(location_id, product_id, task_id)
        if batch is None:
            return 0
        return self.apply_delta(
            location_id, product_id, batch.batch_key, -batch.pallet_quantity
        )
