"""
Module: pallet_kernel.selectors.task_selector
Responsibility: Read-only task queries for the driver app and admin lists.
Architecture position: Kernel > Selectors.
"""

from uuid import UUID

from sqlalchemy import case, select
from sqlalchemy.orm import selectinload

from pallet_kernel.domain.dtos import TaskInfo
from pallet_kernel.domain.task_lifecycle import STATUS_PRIORITY
from pallet_kernel.domain.values import TaskStatus
from pallet_kernel.exceptions import TaskNotFoundError
from pallet_kernel.models.task import Task
from pallet_kernel.selectors.base import BaseSelector

_priority = case(
    *((Task.status == status, rank) for status, rank in STATUS_PRIORITY.items()),
    else_=len(STATUS_PRIORITY) + 1,
)


class TaskSelector(BaseSelector):
    """Read-only task views returning TaskInfo DTOs."""

    def _query(self):
        return select(Task).options(selectinload(Task.pallets))

    def task_detail(self, task_id: UUID) -> TaskInfo:
        task = self.session.execute(
            self._query().where(Task.id == task_id)
        ).scalar_one_or_none()
        if task is None:
            raise TaskNotFoundError(str(task_id))
        return task.to_info()

    def tasks_for_driver(self, driver_id: UUID) -> list[TaskInfo]:
        """
        A driver's tasks: pending pickup first, then in progress, then
        completed; oldest first within each status.
        """
        stmt = (
            self._query()
            .where(Task.assigned_to == driver_id)
            .order_by(_priority, Task.created_at, Task.id)
        )
        return [t.to_info() for t in self.session.execute(stmt).scalars()]

    def list_tasks(self, status: TaskStatus | None = None) -> list[TaskInfo]:
        stmt = self._query().order_by(Task.created_at, Task.id)
        if status is not None:
            stmt = stmt.where(Task.status == TaskStatus(status))
        return [t.to_info() for t in self.session.execute(stmt).scalars()]
