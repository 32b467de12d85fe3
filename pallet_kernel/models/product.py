"""
Module: pallet_kernel.models.product
Responsibility: ORM persistence for products.
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.

Invariants enforced:
    - Product names are unique case-insensitively after trimming.  The
      normalized form is stored in ``name_key`` under a unique constraint,
      so the rule also holds under concurrent creation.
    - expiry_days > 0 (check constraint).
    - stock is a coarse reporting counter, changed only by SQL increment.
"""

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pallet_kernel.db.base import TrackedBase


def normalize_product_name(name: str) -> str:
    return name.strip().lower()


class Product(TrackedBase):
    """
    A perishable good moved on pallets.

    Guarantees:
        - name_key is globally unique (uq_product_name_key).
        - qr_code is globally unique (uq_product_qr_code).

    Non-goals:
        - Stock per location lives in Inventory; ``stock`` here is only the
          free-floating figure incremented by completed delivery scans.
    """

    __tablename__ = "products"

    __table_args__ = (
        UniqueConstraint("name_key", name="uq_product_name_key"),
        UniqueConstraint("qr_code", name="uq_product_qr_code"),
        CheckConstraint("expiry_days > 0", name="ck_product_expiry_days_positive"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    name_key: Mapped[str] = mapped_column(String(255), nullable=False)

    qr_code: Mapped[str] = mapped_column(String(255), nullable=False)

    expiry_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)

    stock: Mapped[int] = mapped_column(nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<Product {self.name} ({self.qr_code})>"
