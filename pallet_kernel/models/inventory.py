"""
Module: pallet_kernel.models.inventory
Responsibility: ORM persistence for per-location, per-product inventory and
    the batches inside it.
Architecture position: Kernel > Models.

Invariants enforced:
    I1 -- total_pallets == sum(batch.pallet_quantity) for every inventory.
          Maintained by InventoryService; checked by InventorySelector.
    I2 -- An inventory with total_pallets == 0 does not exist (deleted, not
          kept as a zero row).
    I3 -- A batch with pallet_quantity == 0 does not exist
          (ck_batch_quantity_positive).
    I4 -- One batch per (inventory, batch_key).  Completion batches are keyed
          by production number, truck reservations by owning task id.

Failure modes:
    - IntegrityError if a batch would reach zero without being deleted.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Enum as SAEnum,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pallet_kernel.db.base import Base, UUIDString
from pallet_kernel.domain.values import BatchStatus


class Inventory(Base):
    """
    Aggregate stock of one product at one location.

    ``total_pallets`` is a cached sum of the batches, updated only with SQL
    increment expressions while the owning location row is locked.
    """

    __tablename__ = "inventories"

    __table_args__ = (
        UniqueConstraint("location_id", "product_id", name="uq_inventory_location_product"),
        CheckConstraint("total_pallets >= 0", name="ck_inventory_total_non_negative"),
        Index("idx_inventory_product", "product_id"),
    )

    location_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("locations.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    total_pallets: Mapped[int] = mapped_column(nullable=False, default=0)

    batches: Mapped[list[InventoryBatch]] = relationship(
        back_populates="inventory",
        cascade="all, delete-orphan",
        order_by="InventoryBatch.expiration_date",
    )

    def __repr__(self) -> str:
        return (
            f"<Inventory location={self.location_id} product={self.product_id} "
            f"total={self.total_pallets}>"
        )


class InventoryBatch(Base):
    """
    A quantity of pallets sharing a production number and expiration date.

    Truck batches also carry ``status`` (reserved -> loaded, exactly once)
    and the ``task_id`` that owns the reservation.
    """

    __tablename__ = "inventory_batches"

    __table_args__ = (
        UniqueConstraint("inventory_id", "batch_key", name="uq_batch_inventory_key"),
        CheckConstraint("pallet_quantity > 0", name="ck_batch_quantity_positive"),
        Index("idx_batch_task", "task_id"),
        Index("idx_batch_expiration", "expiration_date"),
    )

    inventory_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventories.id", ondelete="CASCADE"),
        nullable=False,
    )

    batch_key: Mapped[str] = mapped_column(String(100), nullable=False)

    production_number: Mapped[int] = mapped_column(nullable=False)

    pallet_quantity: Mapped[int] = mapped_column(nullable=False)

    expiration_date: Mapped[datetime | None] = mapped_column(nullable=True)

    status: Mapped[BatchStatus | None] = mapped_column(
        SAEnum(
            BatchStatus,
            native_enum=False,
            length=16,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=True,
    )

    task_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    inventory: Mapped[Inventory] = relationship(back_populates="batches")

    def __repr__(self) -> str:
        return (
            f"<InventoryBatch {self.batch_key} pn={self.production_number} "
            f"qty={self.pallet_quantity} status={self.status}>"
        )
