"""
Module: pallet_kernel.models.location
Responsibility: ORM persistence for warehouses, trucks, delivery points, and
    production lines (single table, ``kind`` discriminator).
Architecture position: Kernel > Models.

Invariants enforced:
    - qr_code is unique across all location kinds, so a scanned code names
      exactly one place.
    - capacity, when present, is positive.  Warehouses and trucks must have
      one (enforced by CatalogService at creation).

Concurrency:
    The location row is the lock target for its whole inventory sub-tree.
    InventoryService takes ``SELECT ... FOR UPDATE`` on it before reading
    available space and applying a delta.
"""

from sqlalchemy import CheckConstraint, Enum as SAEnum, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pallet_kernel.db.base import TrackedBase
from pallet_kernel.domain.values import LocationKind


class Location(TrackedBase):
    __tablename__ = "locations"

    __table_args__ = (
        UniqueConstraint("qr_code", name="uq_location_qr_code"),
        CheckConstraint(
            "capacity IS NULL OR capacity > 0", name="ck_location_capacity_positive"
        ),
        Index("idx_location_kind", "kind"),
    )

    kind: Mapped[LocationKind] = mapped_column(
        SAEnum(
            LocationKind,
            native_enum=False,
            length=32,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    qr_code: Mapped[str] = mapped_column(String(255), nullable=False)

    # Pallets; None means unlimited
    capacity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<Location {self.kind.value} {self.name} cap={self.capacity}>"
