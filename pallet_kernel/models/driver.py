"""
Module: pallet_kernel.models.driver
Responsibility: Registry of drivers tasks can be assigned to.

Authentication lives outside the kernel; the identity provider hands the
kernel a driver id, and this table lets the kernel check that the id is
real before assigning work to it.
"""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from pallet_kernel.db.base import TrackedBase


class Driver(TrackedBase):
    __tablename__ = "drivers"

    __table_args__ = (UniqueConstraint("email", name="uq_driver_email"),)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    email: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<Driver {self.name} <{self.email}>>"
