"""
TaskOrchestrator -- the task lifecycle and the inventory effects it drives.

Responsibility:
    Creates, advances, edits, and deletes tasks, and applies the matching
    inventory deltas through InventoryService.  This is the only module
    that maps task lifecycle events to inventory mutations.

Architecture position:
    Kernel > Services -- imperative shell.  Pure rules come from
    ``domain/task_lifecycle.py``; persistence and locking from
    InventoryService and SequenceService.

Inventory effects by task type:

    Event       | productionToWarehouse        | productionToTruck / warehouseToTruck
    ------------|------------------------------|--------------------------------------
    create      | capacity check only          | reserve truck batch (task-<id>)
                |                              | warehouseToTruck: FEFO withdrawal
    complete    | +qty into batch pn-<number>  | reserved -> loaded
    edit        | completed: revert + reapply  | move/resize the task batch
    delete      | completed: -qty from pn-<n>  | remove the task batch
                |                              | (FEFO withdrawal is not restored)

Invariants enforced:
    - Every public operation runs in its own SAVEPOINT: an error leaves
      no partial state even when the caller keeps its transaction open.
    - Status moves only along PENDING_PICKUP -> IN_PROGRESS -> COMPLETED.
    - The task row is locked before any change to it, so completion
      effects apply at most once.
    - Lock order: task row, destination location(s) by id, then source
      warehouses by id.

Failure modes:
    - InvalidReferenceError family: unknown product, location, driver, or task.
    - LocationKindError: location kind not valid for the task type.
    - CapacityExceededError: destination cannot hold the quantity.
    - InsufficientStockError: warehouses cannot cover a warehouseToTruck task.
    - InvalidTransitionError: status change off the linear path.
    - PalletAlreadyScannedError: edit would drop scanned pallets.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from pallet_kernel.domain.clock import Clock, SystemClock
from pallet_kernel.domain.dtos import TaskInfo
from pallet_kernel.domain.pallet_codes import PalletCodeGenerator
from pallet_kernel.domain.task_lifecycle import (
    VALID_TASK_TRANSITIONS,
    allowed_destination_kinds,
    allowed_source_kinds,
    validate_task_transition,
)
from pallet_kernel.domain.values import (
    BatchStatus,
    LocationKind,
    PalletStatus,
    TaskStatus,
    TaskType,
    production_batch_key,
    reservation_batch_key,
)
from pallet_kernel.exceptions import (
    DriverNotFoundError,
    InvalidQuantityError,
    InvalidReferenceError,
    InvalidTransitionError,
    LocationKindError,
    LocationNotFoundError,
    PalletAlreadyScannedError,
    ProductNotFoundError,
    TaskNotFoundError,
    ValidationError,
)
from pallet_kernel.logging_config import LogContext, get_logger
from pallet_kernel.models.driver import Driver
from pallet_kernel.models.location import Location
from pallet_kernel.models.product import Product
from pallet_kernel.models.task import Task, TaskPallet
from pallet_kernel.services.base import BaseService
from pallet_kernel.services.inventory_service import InventoryService
from pallet_kernel.services.sequence_service import SequenceService

logger = get_logger("services.task_orchestrator")


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(quantity)
    return quantity


class TaskOrchestrator(BaseService):
    """
    Task lifecycle operations.

    Contract:
        Each method flushes but never commits.  Returns TaskInfo DTOs.

    Non-goals:
        - Does NOT verify scanned codes; ScanVerifier does that and calls
          back into complete_delivered().
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        code_generator: PalletCodeGenerator | None = None,
        inventory: InventoryService | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._codes = code_generator or PalletCodeGenerator(self._clock)
        self._inventory = inventory or InventoryService(session)
        self._sequences = sequences or SequenceService(session)

    # =========================================================================
    # Lookups
    # =========================================================================

    def _get_product(self, product_id: UUID) -> Product:
        product = self.session.get(Product, product_id)
        if product is None:
            raise ProductNotFoundError(str(product_id))
        return product

    def _get_location(self, location_id: UUID) -> Location:
        location = self.session.get(Location, location_id)
        if location is None:
            raise LocationNotFoundError(str(location_id))
        return location

    def _get_driver(self, driver_id: UUID) -> Driver:
        driver = self.session.get(Driver, driver_id)
        if driver is None or not driver.is_active:
            raise DriverNotFoundError(str(driver_id))
        return driver

    @staticmethod
    def _check_kind(location: Location, allowed: tuple[LocationKind, ...]) -> None:
        if location.kind not in allowed:
            raise LocationKindError(
                str(location.id), location.kind.value, [k.value for k in allowed]
            )

    def _lock_task(self, task_id: UUID) -> Task | None:
        return self.session.execute(
            select(Task)
            .where(Task.id == task_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _require_task(self, task_id: UUID) -> Task:
        task = self._lock_task(task_id)
        if task is None:
            raise TaskNotFoundError(str(task_id))
        return task

    def get_task(self, task_id: UUID) -> TaskInfo:
        task = self.session.get(Task, task_id)
        if task is None:
            raise TaskNotFoundError(str(task_id))
        return task.to_info()

    # =========================================================================
    # Create
    # =========================================================================

    def create_task(
        self,
        *,
        product_id: UUID,
        task_type: TaskType,
        to_id: UUID,
        assigned_to: UUID,
        pallet_quantity: int,
        from_id: UUID | None = None,
        production_number: int | None = None,
    ) -> TaskInfo:
        """
        Create a task with a fully populated pallet set.

        Args:
            product_id: Product being moved.
            task_type: Route type; fixes the allowed source/destination kinds.
            to_id: Destination location.
            assigned_to: Driver who will scan the task.
            pallet_quantity: Number of pallets (>= 1).
            from_id: Source location.  Required for production-origin tasks;
                optional for warehouseToTruck, where it restricts FEFO to
                one warehouse.
            production_number: Explicit number for production-origin tasks.
                Omitted: the next value of the global counter.

        Returns:
            The new task, status PENDING_PICKUP, all pallets WAITING.
        """
        task_type = TaskType(task_type)
        pallet_quantity = _validate_quantity(pallet_quantity)

        with self.session.begin_nested():
            task = self._create(
                product_id=product_id,
                task_type=task_type,
                to_id=to_id,
                assigned_to=assigned_to,
                pallet_quantity=pallet_quantity,
                from_id=from_id,
                production_number=production_number,
            )

        logger.info(
            "task_created",
            extra={
                "task_id": str(task.id),
                "task_type": task.task_type.value,
                "product_id": str(task.product_id),
                "production_number": task.production_number,
                "pallet_quantity": task.pallet_quantity,
                "from_id": str(task.from_id),
                "to_id": str(task.to_id),
                "assigned_to": str(task.assigned_to),
            },
        )
        return task.to_info()

    def _create(
        self,
        *,
        product_id: UUID,
        task_type: TaskType,
        to_id: UUID,
        assigned_to: UUID,
        pallet_quantity: int,
        from_id: UUID | None,
        production_number: int | None,
    ) -> Task:
        product = self._get_product(product_id)
        destination = self._get_location(to_id)
        self._check_kind(destination, allowed_destination_kinds(task_type))
        self._get_driver(assigned_to)

        now = self._clock.now()
        expiration_date = now + timedelta(days=product.expiry_days)

        source: Location | None = None
        if from_id is not None:
            source = self._get_location(from_id)
            self._check_kind(source, allowed_source_kinds(task_type))
        elif task_type.is_production_origin:
            raise InvalidReferenceError(
                "location", "None", "A production task requires a source production line"
            )

        # Destination first, then source warehouses.
        locked_destination = self._inventory.lock_location(destination.id)
        self._inventory.ensure_space(locked_destination, pallet_quantity)

        if task_type.is_production_origin:
            if production_number is None:
                production_number = self._sequences.next_value(
                    SequenceService.PRODUCTION_NUMBER
                )
            else:
                production_number = _validate_production_number(production_number)
                self._sequences.advance_to(
                    SequenceService.PRODUCTION_NUMBER, production_number
                )
        else:
            if production_number is not None:
                raise ValidationError(
                    "warehouseToTruck tasks inherit the production number of the "
                    "withdrawn batch"
                )
            slices = self._inventory.withdraw_fefo(
                product.id, pallet_quantity, warehouse_id=from_id
            )
            first = slices[0]
            production_number = first.production_number
            source = self._get_location(first.location_id)
            if len({s.production_number for s in slices}) > 1:
                logger.warning(
                    "mixed_batch_withdrawal",
                    extra={
                        "product_id": str(product.id),
                        "production_numbers": [s.production_number for s in slices],
                        "assigned_production_number": production_number,
                    },
                )

        task = Task(
            task_type=task_type,
            status=TaskStatus.PENDING_PICKUP,
            product_id=product.id,
            product_name=product.name,
            product_qr_code=product.qr_code,
            production_number=production_number,
            pallet_quantity=pallet_quantity,
            assigned_to=assigned_to,
            from_id=source.id,
            from_name=source.name,
            from_qr_code=source.qr_code,
            to_id=destination.id,
            to_name=destination.name,
            to_qr_code=destination.qr_code,
            expiration_date=expiration_date,
            created_at=now,
        )
        task.pallets = [
            TaskPallet(sequence=seq, code=code, status=PalletStatus.WAITING)
            for seq, code in self._codes.generate(
                product.qr_code, production_number, destination.name, pallet_quantity
            )
        ]
        self.session.add(task)
        self.session.flush()

        if destination.kind is LocationKind.TRUCK:
            self._reserve(task, destination.id, pallet_quantity, BatchStatus.RESERVED)

        return task

    def _reserve(self, task: Task, truck_id: UUID, quantity: int, status: BatchStatus) -> None:
        self._inventory.apply_delta(
            truck_id,
            task.product_id,
            reservation_batch_key(task.id),
            quantity,
            production_number=task.production_number,
            expiration_date=task.expiration_date,
            status=status,
            task_id=task.id,
        )

    # =========================================================================
    # Status transitions
    # =========================================================================

    def transition_status(self, task_id: UUID, new_status: TaskStatus) -> TaskInfo:
        """
        Move a task one step along its lifecycle.

        PENDING_PICKUP -> IN_PROGRESS has no inventory effect.
        IN_PROGRESS -> COMPLETED applies the completion effect for the
        task type (see module docstring).  Pallet statuses are not touched.

        Raises:
            InvalidTransitionError: any other status change.
        """
        new_status = TaskStatus(new_status)
        with LogContext.bind(task_id=task_id), self.session.begin_nested():
            task = self._require_task(task_id)
            old_status = task.status
            validate_task_transition(task.id, old_status, new_status)
            if new_status is TaskStatus.COMPLETED:
                self._complete(task)
            else:
                task.status = new_status
            self.session.flush()

        logger.info(
            "task_status_changed",
            extra={
                "task_id": str(task.id),
                "from_status": old_status.value,
                "to_status": new_status.value,
            },
        )
        return task.to_info()

    def advance(self, task_id: UUID) -> TaskInfo:
        """Move a task to its next status."""
        task = self.session.get(Task, task_id)
        if task is None:
            raise TaskNotFoundError(str(task_id))
        next_statuses = VALID_TASK_TRANSITIONS[task.status]
        if not next_statuses:
            raise InvalidTransitionError(
                str(task_id), task.status.value, task.status.value,
                f"Task {task_id} is already {task.status.value}",
            )
        (next_status,) = next_statuses
        return self.transition_status(task_id, next_status)

    def complete_delivered(self, task_id: UUID) -> bool:
        """
        Complete an in-progress task whose pallets are all delivered, and
        add its quantity to the product's stock counter.

        Called by ScanVerifier after a delivery scan.  Safe under concurrent
        delivery scans: the task row is locked and the status re-checked.

        Returns:
            True if this call completed the task.
        """
        with LogContext.bind(task_id=task_id), self.session.begin_nested():
            task = self._require_task(task_id)
            if task.status is not TaskStatus.IN_PROGRESS:
                return False
            if self._undelivered_count(task.id):
                return False

            self._complete(task)
            product = self.session.get(Product, task.product_id)
            if product is not None:
                product.stock = Product.stock + task.pallet_quantity
            self.session.flush()

        logger.info(
            "task_completed_by_delivery",
            extra={
                "task_id": str(task.id),
                "product_id": str(task.product_id),
                "pallet_quantity": task.pallet_quantity,
            },
        )
        return True

    def _undelivered_count(self, task_id: UUID) -> int:
        return self.session.execute(
            select(func.count())
            .select_from(TaskPallet)
            .where(
                TaskPallet.task_id == task_id,
                TaskPallet.status != PalletStatus.DELIVERED,
            )
        ).scalar_one()

    def _complete(self, task: Task) -> None:
        task.status = TaskStatus.COMPLETED
        task.completed_at = self._clock.now()
        if task.task_type.targets_truck:
            self._inventory.mark_loaded(task.to_id, task.product_id, task.id)
        else:
            self._add_completion_stock(task, task.to_id, task.pallet_quantity)

    def _add_completion_stock(self, task: Task, location_id: UUID, quantity: int) -> None:
        self._inventory.apply_delta(
            location_id,
            task.product_id,
            production_batch_key(task.production_number),
            quantity,
            production_number=task.production_number,
            expiration_date=task.expiration_date,
        )

    def _remove_completion_stock(self, task: Task, location_id: UUID, quantity: int) -> None:
        self._inventory.apply_delta(
            location_id,
            task.product_id,
            production_batch_key(task.production_number),
            -quantity,
        )

    # =========================================================================
    # Edit
    # =========================================================================

    def edit_task(
        self,
        task_id: UUID,
        *,
        to_id: UUID | None = None,
        pallet_quantity: int | None = None,
        assigned_to: UUID | None = None,
        from_id: UUID | None = None,
    ) -> TaskInfo:
        """
        Change a task's destination, quantity, driver, or source.

        A completed task has its completion effect reverted and re-applied
        with the new values.  A truck task's batch moves and resizes with
        it whatever its status.  Other open tasks only re-check capacity.
        The task's own prior contribution counts as freed.  Growing a
        warehouseToTruck task withdraws the extra pallets from its pickup
        warehouse only.

        Raises:
            CapacityExceededError: new destination cannot hold the quantity.
            PalletAlreadyScannedError: shrinking an open task would drop
                pallets that were already scanned.
            ValidationError: from_id given for a warehouseToTruck task.
            InsufficientStockError: the pickup warehouse cannot cover a
                warehouseToTruck increase.
        """
        with LogContext.bind(task_id=task_id), self.session.begin_nested():
            task = self._require_task(task_id)
            changes = self._edit(
                task,
                to_id=to_id,
                pallet_quantity=pallet_quantity,
                assigned_to=assigned_to,
                from_id=from_id,
            )

        logger.info("task_edited", extra={"task_id": str(task.id), "changes": changes})
        return task.to_info()

    def _edit(
        self,
        task: Task,
        *,
        to_id: UUID | None,
        pallet_quantity: int | None,
        assigned_to: UUID | None,
        from_id: UUID | None,
    ) -> dict:
        changes: dict = {}
        old_to_id = task.to_id
        old_qty = task.pallet_quantity
        completed = task.status is TaskStatus.COMPLETED

        # Validate everything before the first write.
        destination = self._get_location(to_id) if to_id is not None else None
        if destination is not None:
            self._check_kind(destination, allowed_destination_kinds(task.task_type))
        new_qty = _validate_quantity(pallet_quantity) if pallet_quantity is not None else old_qty
        if assigned_to is not None:
            self._get_driver(assigned_to)
        source = None
        if from_id is not None:
            if not task.task_type.is_production_origin:
                raise ValidationError(
                    "The source of a warehouseToTruck task is fixed by its withdrawal"
                )
            source = self._get_location(from_id)
            self._check_kind(source, allowed_source_kinds(task.task_type))

        dropped = self._pallets_to_drop(task, old_qty - new_qty, completed)
        new_to_id = destination.id if destination is not None else old_to_id

        for location_id in sorted({old_to_id, new_to_id}, key=str):
            self._inventory.lock_location(location_id)

        if task.task_type.targets_truck:
            self._inventory.remove_task_batch(old_to_id, task.product_id, task.id)
            self._reserve(
                task,
                new_to_id,
                new_qty,
                BatchStatus.LOADED if completed else BatchStatus.RESERVED,
            )
        elif completed:
            self._remove_completion_stock(task, old_to_id, old_qty)
            self._add_completion_stock(task, new_to_id, new_qty)
        else:
            locked = self._inventory.lock_location(new_to_id)
            self._inventory.ensure_space(locked, new_qty)

        if task.task_type is TaskType.WAREHOUSE_TO_TRUCK and new_qty > old_qty:
            slices = self._inventory.withdraw_fefo(
                task.product_id, new_qty - old_qty, warehouse_id=task.from_id
            )
            changes["withdrawn"] = new_qty - old_qty
            changes["withdrawn_from"] = [str(s.location_id) for s in slices]

        if destination is not None and destination.id != old_to_id:
            task.to_id = destination.id
            task.to_name = destination.name
            task.to_qr_code = destination.qr_code
            changes["to_id"] = str(destination.id)
        if source is not None and source.id != task.from_id:
            task.from_id = source.id
            task.from_name = source.name
            task.from_qr_code = source.qr_code
            changes["from_id"] = str(source.id)
        if assigned_to is not None and assigned_to != task.assigned_to:
            task.assigned_to = assigned_to
            changes["assigned_to"] = str(assigned_to)

        if new_qty != old_qty:
            for pallet in dropped:
                task.pallets.remove(pallet)
            if new_qty > old_qty:
                self._add_pallets(task, new_qty - old_qty, completed)
            task.pallet_quantity = new_qty
            changes["pallet_quantity"] = {"from": old_qty, "to": new_qty}

        self.session.flush()
        return changes

    @staticmethod
    def _pallets_to_drop(task: Task, count: int, completed: bool) -> list[TaskPallet]:
        """Highest-sequence pallets removed when shrinking by ``count``."""
        if count <= 0:
            return []
        pool = [
            p for p in task.pallets
            if completed or p.status is PalletStatus.WAITING
        ]
        if len(pool) < count:
            raise PalletAlreadyScannedError(
                str(task.id), task.pallet_quantity - count, len(pool)
            )
        return sorted(pool, key=lambda p: p.sequence, reverse=True)[:count]

    def _add_pallets(self, task: Task, count: int, completed: bool) -> None:
        start = max((p.sequence for p in task.pallets), default=0) + 1
        status = PalletStatus.DELIVERED if completed else PalletStatus.WAITING
        for seq, code in self._codes.generate(
            task.product_qr_code,
            task.production_number,
            task.to_name,
            count,
            start_sequence=start,
        ):
            task.pallets.append(TaskPallet(sequence=seq, code=code, status=status))

    # =========================================================================
    # Delete
    # =========================================================================

    def delete_task(self, task_id: UUID) -> bool:
        """
        Revert the task's inventory effects and delete it with its pallets.

        Truck tasks lose their batch (reserved or loaded).  Completed
        warehouse / delivery-point tasks give back their completion stock.
        A warehouseToTruck withdrawal is not restored.

        Returns:
            True if a task was deleted; False if it no longer exists.
        """
        with LogContext.bind(task_id=task_id), self.session.begin_nested():
            task = self._lock_task(task_id)
            if task is None:
                logger.debug("task_delete_noop", extra={"task_id": str(task_id)})
                return False

            if task.task_type.targets_truck:
                self._inventory.remove_task_batch(task.to_id, task.product_id, task.id)
            elif task.status is TaskStatus.COMPLETED:
                self._remove_completion_stock(task, task.to_id, task.pallet_quantity)

            status = task.status
            self.session.delete(task)
            self.session.flush()

        logger.info(
            "task_deleted",
            extra={"task_id": str(task_id), "status": status.value},
        )
        return True


def _validate_production_number(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValidationError(f"production_number must be a positive integer, got {value}")
    return value
