"""
Module: pallet_kernel.models.task
Responsibility: ORM persistence for tasks and the pallet set each task owns.
Architecture position: Kernel > Models.

Invariants enforced:
    T1 -- Product, source, and destination names and codes are snapshots
          taken at creation (or at edit, for reassigned locations).  They do
          not follow later edits to the product or location.
    T2 -- A task owns its pallets exclusively; deleting the task deletes
          its pallet set (cascade).
    T3 -- Pallet codes are globally unique (uq_task_pallet_code).
    T4 -- Pallet status only moves forward.  Services change it with
          compare-and-swap updates (``WHERE status = :expected``).
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pallet_kernel.db.base import Base, TrackedBase, UUIDString
from pallet_kernel.domain.dtos import PalletInfo, TaskInfo
from pallet_kernel.domain.values import PalletStatus, TaskStatus, TaskType


def _values(enum_cls):
    return [m.value for m in enum_cls]


class Task(TrackedBase):
    """
    One driver assignment moving a quantity of a product between locations.

    Guarantees:
        - status is one of TaskStatus and only moves along the linear path
          (validated by the orchestrator before any write).
        - pallet_quantity == len(pallets) after every orchestrator operation.
    """

    __tablename__ = "tasks"

    __table_args__ = (
        CheckConstraint("pallet_quantity >= 1", name="ck_task_quantity_positive"),
        Index("idx_task_assigned_status", "assigned_to", "status"),
        Index("idx_task_status", "status"),
        Index("idx_task_to", "to_id"),
    )

    task_type: Mapped[TaskType] = mapped_column(
        SAEnum(TaskType, native_enum=False, length=32, values_callable=_values),
        nullable=False,
    )

    status: Mapped[TaskStatus] = mapped_column(
        SAEnum(TaskStatus, native_enum=False, length=32, values_callable=_values),
        nullable=False,
        default=TaskStatus.PENDING_PICKUP,
    )

    # Product snapshot
    product_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("products.id"), nullable=False
    )
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    product_qr_code: Mapped[str] = mapped_column(String(255), nullable=False)

    production_number: Mapped[int] = mapped_column(nullable=False)

    pallet_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    assigned_to: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("drivers.id"), nullable=False
    )

    # Source snapshot
    from_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False
    )
    from_name: Mapped[str] = mapped_column(String(255), nullable=False)
    from_qr_code: Mapped[str] = mapped_column(String(255), nullable=False)

    # Destination snapshot
    to_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("locations.id"), nullable=False
    )
    to_name: Mapped[str] = mapped_column(String(255), nullable=False)
    to_qr_code: Mapped[str] = mapped_column(String(255), nullable=False)

    expiration_date: Mapped[datetime] = mapped_column(nullable=False)

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    pallets: Mapped[list[TaskPallet]] = relationship(
        back_populates="task",
        cascade="all, delete-orphan",
        order_by="TaskPallet.sequence",
    )

    def to_info(self) -> TaskInfo:
        """Immutable snapshot of the task and its pallet set."""
        return TaskInfo(
            id=self.id,
            task_type=self.task_type,
            status=self.status,
            product_id=self.product_id,
            product_name=self.product_name,
            product_qr_code=self.product_qr_code,
            production_number=self.production_number,
            pallet_quantity=self.pallet_quantity,
            assigned_to=self.assigned_to,
            from_id=self.from_id,
            from_name=self.from_name,
            from_qr_code=self.from_qr_code,
            to_id=self.to_id,
            to_name=self.to_name,
            to_qr_code=self.to_qr_code,
            created_at=self.created_at,
            expiration_date=self.expiration_date,
            completed_at=self.completed_at,
            pallets=tuple(
                PalletInfo(sequence=p.sequence, code=p.code, status=p.status)
                for p in self.pallets
            ),
        )

    def __repr__(self) -> str:
        return (
            f"<Task {self.id} {self.task_type.value} {self.status.value} "
            f"qty={self.pallet_quantity}>"
        )


class TaskPallet(Base):
    """One individually coded pallet of a task."""

    __tablename__ = "task_pallets"

    __table_args__ = (
        UniqueConstraint("code", name="uq_task_pallet_code"),
        UniqueConstraint("task_id", "sequence", name="uq_task_pallet_sequence"),
        Index("idx_task_pallet_task_status", "task_id", "status"),
    )

    task_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    code: Mapped[str] = mapped_column(String(512), nullable=False)

    status: Mapped[PalletStatus] = mapped_column(
        SAEnum(PalletStatus, native_enum=False, length=32, values_callable=_values),
        nullable=False,
        default=PalletStatus.WAITING,
    )

    task: Mapped[Task] = relationship(back_populates="pallets")

    def __repr__(self) -> str:
        return f"<TaskPallet {self.code} {self.status.value}>"
