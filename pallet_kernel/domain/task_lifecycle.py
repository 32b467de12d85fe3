"""
Task and pallet state machines.

Responsibility:
    Pure transition rules for Task.status and Pallet.status, and the route
    rules that tie a TaskType to the location kinds it may connect.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Task status is linear: PENDING_PICKUP -> IN_PROGRESS -> COMPLETED.
      No skipping, no regression.
    - Pallet status is forward-only and never skips a level:
      WAITING -> ON_FORKLIFT -> DELIVERED.
"""

from types import MappingProxyType

from pallet_kernel.domain.values import LocationKind, PalletStatus, TaskStatus, TaskType
from pallet_kernel.exceptions import InvalidTransitionError

VALID_TASK_TRANSITIONS = MappingProxyType({
    TaskStatus.PENDING_PICKUP: frozenset({TaskStatus.IN_PROGRESS}),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED}),
    TaskStatus.COMPLETED: frozenset(),
})

VALID_PALLET_TRANSITIONS = MappingProxyType({
    PalletStatus.WAITING: frozenset({PalletStatus.ON_FORKLIFT}),
    PalletStatus.ON_FORKLIFT: frozenset({PalletStatus.DELIVERED}),
    PalletStatus.DELIVERED: frozenset(),
})

# Ordering used when listing a driver's tasks.
STATUS_PRIORITY = MappingProxyType({
    TaskStatus.PENDING_PICKUP: 1,
    TaskStatus.IN_PROGRESS: 2,
    TaskStatus.COMPLETED: 3,
})

SOURCE_KINDS = MappingProxyType({
    TaskType.PRODUCTION_TO_WAREHOUSE: (LocationKind.PRODUCTION_LINE,),
    TaskType.PRODUCTION_TO_TRUCK: (LocationKind.PRODUCTION_LINE,),
    TaskType.WAREHOUSE_TO_TRUCK: (LocationKind.WAREHOUSE,),
})

DESTINATION_KINDS = MappingProxyType({
    TaskType.PRODUCTION_TO_WAREHOUSE: (LocationKind.WAREHOUSE, LocationKind.DELIVERY_POINT),
    TaskType.PRODUCTION_TO_TRUCK: (LocationKind.TRUCK,),
    TaskType.WAREHOUSE_TO_TRUCK: (LocationKind.TRUCK,),
})


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    return TaskStatus(new) in VALID_TASK_TRANSITIONS[TaskStatus(current)]


def validate_task_transition(task_id, current: TaskStatus, new: TaskStatus) -> None:
    """Raise InvalidTransitionError unless current -> new is on the linear path."""
    if not can_transition(current, new):
        raise InvalidTransitionError(
            str(task_id), TaskStatus(current).value, TaskStatus(new).value
        )


def next_pallet_status(code: str, current: PalletStatus) -> PalletStatus:
    """The single status a pallet in ``current`` may move to.

    Raises InvalidTransitionError for a delivered pallet.
    """
    successors = VALID_PALLET_TRANSITIONS[PalletStatus(current)]
    if not successors:
        raise InvalidTransitionError(
            code,
            PalletStatus(current).value,
            "",
            message=f"Pallet {code} is {PalletStatus(current).value} and cannot move further",
        )
    (new,) = successors
    return new


def allowed_source_kinds(task_type: TaskType) -> tuple[LocationKind, ...]:
    return SOURCE_KINDS[TaskType(task_type)]


def allowed_destination_kinds(task_type: TaskType) -> tuple[LocationKind, ...]:
    return DESTINATION_KINDS[TaskType(task_type)]
