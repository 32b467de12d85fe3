"""
ScanVerifier -- driver-side QR scan verification.

Responsibility:
    Checks a scanned code against what the task expects in its current
    state and advances the task or its pallets.  Completion and its
    inventory effects are delegated to TaskOrchestrator.

Scan modes:

    Mode     | Task status     | Expected code             | Effect
    ---------|-----------------|---------------------------|------------------------------
    pickup   | PENDING_PICKUP  | task.from_qr_code         | task -> IN_PROGRESS
    pallet   | IN_PROGRESS     | a WAITING pallet's code   | pallet -> ON_FORKLIFT
    delivery | IN_PROGRESS     | task.to_qr_code           | ON_FORKLIFT -> DELIVERED;
             |                 |                           | all delivered -> COMPLETED
             |                 |                           | and product.stock += qty

Invariants enforced:
    - Only the assigned driver can scan a task.
    - Pallet status changes are compare-and-swap updates
      (``WHERE status = :expected``); an already-scanned pallet is
      rejected, never silently accepted.
    - A rejected scan changes nothing.

Failure modes:
    - TaskNotFoundError: unknown task id.
    - DriverMismatchError: scanning driver is not the assignee.
    - ScanModeError: mode does not fit the task's status.
    - VerificationFailedError: wrong code, pallet already scanned, or no
      pallet on the forklift at delivery.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from pallet_kernel.domain.clock import Clock, SystemClock
from pallet_kernel.domain.dtos import ScanResult
from pallet_kernel.domain.task_lifecycle import next_pallet_status
from pallet_kernel.domain.values import PalletStatus, ScanMode, TaskStatus
from pallet_kernel.exceptions import (
    DriverMismatchError,
    ScanModeError,
    TaskNotFoundError,
    VerificationFailedError,
)
from pallet_kernel.logging_config import LogContext, get_logger
from pallet_kernel.models.task import Task, TaskPallet
from pallet_kernel.services.base import BaseService
from pallet_kernel.services.task_orchestrator import TaskOrchestrator

logger = get_logger("services.scan_verifier")

_MODE_STATUS = {
    ScanMode.PICKUP: TaskStatus.PENDING_PICKUP,
    ScanMode.PALLET: TaskStatus.IN_PROGRESS,
    ScanMode.DELIVERY: TaskStatus.IN_PROGRESS,
}

# Pallet status each scan mode acts on.
_MODE_PALLET_STATUS = {
    ScanMode.PALLET: PalletStatus.WAITING,
    ScanMode.DELIVERY: PalletStatus.ON_FORKLIFT,
}


class ScanVerifier(BaseService):
    """
    Verifies driver scans.

    Every scan runs in a SAVEPOINT and locks the task row, so scans of the
    same task from several devices apply one at a time.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        orchestrator: TaskOrchestrator | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._orchestrator = orchestrator or TaskOrchestrator(session, clock=self._clock)

    def scan(
        self,
        mode: ScanMode,
        task_id: UUID,
        scanned_code: str,
        driver_id: UUID,
    ) -> ScanResult:
        """Dispatch to the scan handler for ``mode``."""
        mode = ScanMode(mode)
        handlers = {
            ScanMode.PICKUP: self.scan_pickup,
            ScanMode.PALLET: self.scan_pallet,
            ScanMode.DELIVERY: self.scan_delivery,
        }
        return handlers[mode](task_id, scanned_code, driver_id)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _lock_for_scan(
        self,
        mode: ScanMode,
        task_id: UUID,
        scanned_code: str,
        driver_id: UUID,
    ) -> Task:
        task = self.session.execute(
            select(Task)
            .where(Task.id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if task is None:
            raise TaskNotFoundError(str(task_id))

        if str(task.assigned_to) != str(driver_id):
            self._reject(
                DriverMismatchError(
                    str(task_id), scanned_code, str(driver_id), str(task.assigned_to)
                ),
                mode,
            )
        if task.status is not _MODE_STATUS[mode]:
            self._reject(
                ScanModeError(str(task_id), scanned_code, mode.value, task.status.value),
                mode,
            )
        return task

    @staticmethod
    def _reject(error: VerificationFailedError, mode: ScanMode) -> None:
        logger.warning(
            "scan_rejected",
            extra={
                "mode": mode.value,
                "scanned_code": error.scanned_code,
                "reason": error.reason,
                "error_code": error.code,
            },
        )
        raise error

    def _advance_pallets(self, mode: ScanMode, scanned_code: str, *criteria):
        """Compare-and-swap every matching pallet one step along its lifecycle."""
        expected = _MODE_PALLET_STATUS[mode]
        return self.session.execute(
            update(TaskPallet)
            .where(*criteria, TaskPallet.status == expected)
            .values(status=next_pallet_status(scanned_code, expected))
        )

    def _count(self, task_id: UUID, status: PalletStatus) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(TaskPallet)
            .where(TaskPallet.task_id == task_id, TaskPallet.status == status)
        ).scalar_one()

    def _undelivered(self, task_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(TaskPallet)
            .where(
                TaskPallet.task_id == task_id,
                TaskPallet.status != PalletStatus.DELIVERED,
            )
        ).scalar_one()

    # =========================================================================
    # Modes
    # =========================================================================

    def scan_pickup(self, task_id: UUID, scanned_code: str, driver_id: UUID) -> ScanResult:
        """Source code scanned: start the task."""
        with LogContext.bind(task_id=task_id, driver_id=driver_id), self.session.begin_nested():
            task = self._lock_for_scan(ScanMode.PICKUP, task_id, scanned_code, driver_id)
            if scanned_code != task.from_qr_code:
                self._reject(
                    VerificationFailedError(
                        str(task_id), scanned_code, "code does not match the pickup location"
                    ),
                    ScanMode.PICKUP,
                )
            info = self._orchestrator.transition_status(task.id, TaskStatus.IN_PROGRESS)

        logger.info("scan_accepted", extra={"mode": ScanMode.PICKUP.value})
        return ScanResult(
            mode=ScanMode.PICKUP,
            task_id=info.id,
            scanned_code=scanned_code,
            task_status=info.status,
            pallets_affected=0,
            remaining_pallets=len(info.pallets_in(PalletStatus.WAITING)),
        )

    def scan_pallet(self, task_id: UUID, scanned_code: str, driver_id: UUID) -> ScanResult:
        """Pallet code scanned: load it onto the forklift."""
        with LogContext.bind(task_id=task_id, driver_id=driver_id), self.session.begin_nested():
            task = self._lock_for_scan(ScanMode.PALLET, task_id, scanned_code, driver_id)
            result = self._advance_pallets(
                ScanMode.PALLET,
                scanned_code,
                TaskPallet.task_id == task.id,
                TaskPallet.code == scanned_code,
            )
            if result.rowcount != 1:
                known = self.session.execute(
                    select(TaskPallet.status).where(
                        TaskPallet.task_id == task.id,
                        TaskPallet.code == scanned_code,
                    )
                ).scalar_one_or_none()
                reason = (
                    "code does not belong to this task"
                    if known is None
                    else f"pallet already scanned ({known.value})"
                )
                self._reject(
                    VerificationFailedError(str(task_id), scanned_code, reason),
                    ScanMode.PALLET,
                )
            waiting = self._count(task.id, PalletStatus.WAITING)
            status = task.status

        logger.info(
            "scan_accepted",
            extra={"mode": ScanMode.PALLET.value, "remaining_pallets": waiting},
        )
        return ScanResult(
            mode=ScanMode.PALLET,
            task_id=task.id,
            scanned_code=scanned_code,
            task_status=status,
            pallets_affected=1,
            remaining_pallets=waiting,
        )

    def scan_delivery(self, task_id: UUID, scanned_code: str, driver_id: UUID) -> ScanResult:
        """
        Destination code scanned: deliver every pallet on the forklift.

        Pallets still WAITING are not affected.  When no undelivered pallet
        remains, the task completes and the product's stock counter grows
        by the task quantity.
        """
        with LogContext.bind(task_id=task_id, driver_id=driver_id), self.session.begin_nested():
            task = self._lock_for_scan(ScanMode.DELIVERY, task_id, scanned_code, driver_id)
            if scanned_code != task.to_qr_code:
                self._reject(
                    VerificationFailedError(
                        str(task_id), scanned_code, "code does not match the destination"
                    ),
                    ScanMode.DELIVERY,
                )

            result = self._advance_pallets(
                ScanMode.DELIVERY, scanned_code, TaskPallet.task_id == task.id
            )
            delivered = result.rowcount
            if delivered == 0:
                self._reject(
                    VerificationFailedError(
                        str(task_id), scanned_code, "no pallet is on the forklift"
                    ),
                    ScanMode.DELIVERY,
                )

            remaining = self._undelivered(task.id)
            completed = False
            if remaining == 0:
                completed = self._orchestrator.complete_delivered(task.id)
            self.session.refresh(task)
            status = task.status

        logger.info(
            "scan_accepted",
            extra={
                "mode": ScanMode.DELIVERY.value,
                "pallets_delivered": delivered,
                "remaining_pallets": remaining,
                "completed": completed,
            },
        )
        return ScanResult(
            mode=ScanMode.DELIVERY,
            task_id=task.id,
            scanned_code=scanned_code,
            task_status=status,
            pallets_affected=delivered,
            remaining_pallets=remaining,
            completed=completed,
        )
