"""
Tests for TaskOrchestrator.

Covers:
- Creation per task type: capacity check, truck reservation, FEFO withdrawal
- Linear status transitions and completion effects
- Edit: revert and re-apply for completed tasks, moving truck batches,
  shrinking pallet sets
- Delete: reverting effects, idempotent second delete
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from pallet_kernel.domain.values import (
    BatchStatus,
    LocationKind,
    PalletStatus,
    TaskStatus,
    TaskType,
)
from pallet_kernel.exceptions import (
    CapacityExceededError,
    InsufficientStockError,
    InvalidQuantityError,
    InvalidReferenceError,
    InvalidTransitionError,
    LocationKindError,
    PalletAlreadyScannedError,
    ProductNotFoundError,
    TaskNotFoundError,
    ValidationError,
)


@pytest.fixture
def make_task(orchestrator, product, production_line, driver):
    """Create a task with sensible defaults for a production-origin route."""

    def _make(to_id, quantity, task_type=TaskType.PRODUCTION_TO_WAREHOUSE, **kwargs):
        kwargs.setdefault(
            "from_id",
            None if task_type is TaskType.WAREHOUSE_TO_TRUCK else production_line.id,
        )
        return orchestrator.create_task(
            product_id=product.id,
            task_type=task_type,
            to_id=to_id,
            assigned_to=kwargs.pop("assigned_to", driver.id),
            pallet_quantity=quantity,
            **kwargs,
        )

    return _make


# =============================================================================
# Create
# =============================================================================


class TestCreateProductionToWarehouse:
    def test_pending_with_waiting_pallets_and_no_inventory(
        self, make_task, inventory_selector, warehouse, product, clock
    ):
        task = make_task(warehouse.id, 20)

        assert task.status is TaskStatus.PENDING_PICKUP
        assert task.pallet_quantity == 20
        assert [p.sequence for p in task.pallets] == list(range(1, 21))
        assert all(p.status is PalletStatus.WAITING for p in task.pallets)
        assert inventory_selector.inventory(warehouse.id, product.id) is None
        assert task.expiration_date == clock.now() + timedelta(days=10)

    def test_snapshots_names_and_codes(self, make_task, warehouse, product):
        task = make_task(warehouse.id, 1)

        assert (task.product_name, task.product_qr_code) == ("Sarıyer Kola", "P-KOLA")
        assert (task.from_name, task.from_qr_code) == ("Line 1", "LINE-1")
        assert (task.to_name, task.to_qr_code) == ("Depo A", "WH-A")

    def test_production_numbers_increase(self, make_task, warehouse):
        first = make_task(warehouse.id, 1)
        second = make_task(warehouse.id, 1)
        assert second.production_number == first.production_number + 1

    def test_explicit_production_number_advances_counter(self, make_task, warehouse):
        assert make_task(warehouse.id, 1, production_number=42).production_number == 42
        assert make_task(warehouse.id, 1).production_number == 43

    def test_capacity_checked_at_creation(self, make_task, task_selector, warehouse):
        with pytest.raises(CapacityExceededError):
            make_task(warehouse.id, 101)
        assert task_selector.list_tasks() == []

    def test_missing_source_rejected(self, make_task, warehouse):
        with pytest.raises(InvalidReferenceError):
            make_task(warehouse.id, 1, from_id=None)

    def test_wrong_destination_kind(self, make_task, truck):
        with pytest.raises(LocationKindError):
            make_task(truck.id, 1)

    def test_wrong_source_kind(self, make_task, warehouse, second_warehouse):
        with pytest.raises(LocationKindError):
            make_task(warehouse.id, 1, from_id=second_warehouse.id)

    @pytest.mark.parametrize("quantity", [0, -1, True, 2.5])
    def test_invalid_quantity(self, make_task, warehouse, quantity):
        with pytest.raises(InvalidQuantityError):
            make_task(warehouse.id, quantity)

    def test_unknown_product(self, orchestrator, production_line, warehouse, driver):
        with pytest.raises(ProductNotFoundError):
            orchestrator.create_task(
                product_id=uuid4(),
                task_type=TaskType.PRODUCTION_TO_WAREHOUSE,
                from_id=production_line.id,
                to_id=warehouse.id,
                assigned_to=driver.id,
                pallet_quantity=1,
            )

    def test_delivery_point_destination(self, make_task, delivery_point):
        task = make_task(delivery_point.id, 500)
        assert task.to_qr_code == "DP-1"


class TestCreateTruckTasks:
    def test_reservation_on_creation(self, make_task, inventory_selector, truck, product):
        task = make_task(truck.id, 30, TaskType.PRODUCTION_TO_TRUCK)

        inv = inventory_selector.inventory(truck.id, product.id)
        assert inv.total_pallets == 30
        (batch,) = inv.batches
        assert batch.status is BatchStatus.RESERVED
        assert batch.batch_key == f"task-{task.id}"
        assert batch.task_id == task.id

    def test_second_reservation_over_capacity(self, make_task, inventory_selector, truck, product):
        make_task(truck.id, 30, TaskType.PRODUCTION_TO_TRUCK)

        with pytest.raises(CapacityExceededError) as exc_info:
            make_task(truck.id, 25, TaskType.PRODUCTION_TO_TRUCK)

        assert (exc_info.value.requested, exc_info.value.available) == (25, 20)
        assert inventory_selector.occupied(truck.id) == 30

    def test_warehouse_to_truck_withdraws_fefo(
        self, make_task, stock_warehouse, inventory_selector, warehouse, truck, product,
        captured_logs,
    ):
        first = stock_warehouse(warehouse.id, 5)
        stock_warehouse(warehouse.id, 5, advance_days=1)

        task = make_task(truck.id, 7, TaskType.WAREHOUSE_TO_TRUCK)

        assert task.production_number == first.production_number
        assert task.from_id == warehouse.id
        assert task.from_qr_code == "WH-A"
        assert inventory_selector.occupied(warehouse.id) == 3
        assert inventory_selector.occupied(truck.id) == 7
        assert any(r["message"] == "mixed_batch_withdrawal" for r in captured_logs())

    def test_warehouse_to_truck_from_named_warehouse(
        self, make_task, stock_warehouse, inventory_selector, warehouse, second_warehouse, truck
    ):
        stock_warehouse(warehouse.id, 5)
        stock_warehouse(second_warehouse.id, 5, advance_days=1)

        task = make_task(
            truck.id, 2, TaskType.WAREHOUSE_TO_TRUCK, from_id=second_warehouse.id
        )

        assert task.from_id == second_warehouse.id
        assert inventory_selector.occupied(warehouse.id) == 5
        assert inventory_selector.occupied(second_warehouse.id) == 3

    def test_warehouse_to_truck_insufficient_stock(
        self, make_task, stock_warehouse, inventory_selector, task_selector, warehouse, truck
    ):
        stock_warehouse(warehouse.id, 4)

        with pytest.raises(InsufficientStockError):
            make_task(truck.id, 5, TaskType.WAREHOUSE_TO_TRUCK)

        assert inventory_selector.occupied(warehouse.id) == 4
        assert inventory_selector.occupied(truck.id) == 0
        assert len(task_selector.list_tasks()) == 1

    def test_warehouse_to_truck_rejects_explicit_production_number(
        self, make_task, stock_warehouse, warehouse, truck
    ):
        stock_warehouse(warehouse.id, 4)
        with pytest.raises(ValidationError):
            make_task(truck.id, 1, TaskType.WAREHOUSE_TO_TRUCK, production_number=9)


# =============================================================================
# Transitions
# =============================================================================


class TestTransitions:
    def test_completion_adds_batch(
        self, make_task, complete_task, inventory_selector, warehouse, product, clock
    ):
        task = make_task(warehouse.id, 20)
        clock.advance(60)

        done = complete_task(task.id)

        assert done.status is TaskStatus.COMPLETED
        assert done.completed_at == clock.now()
        inv = inventory_selector.inventory(warehouse.id, product.id)
        assert inv.total_pallets == 20
        (batch,) = inv.batches
        assert batch.batch_key == f"pn-{task.production_number}"
        assert batch.pallet_quantity == 20
        assert batch.expiration_date == task.expiration_date

    def test_same_production_number_merges(
        self, make_task, complete_task, inventory_selector, warehouse, product
    ):
        complete_task(make_task(warehouse.id, 3, production_number=7).id)
        complete_task(make_task(warehouse.id, 4, production_number=7).id)

        (batch,) = inventory_selector.inventory(warehouse.id, product.id).batches
        assert batch.pallet_quantity == 7

    def test_admin_completion_leaves_pallets_and_stock(
        self, make_task, complete_task, catalog, warehouse, product
    ):
        done = complete_task(make_task(warehouse.id, 2).id)

        assert all(p.status is PalletStatus.WAITING for p in done.pallets)
        assert catalog.get_product(product.id).stock == 0

    def test_truck_completion_marks_loaded(
        self, make_task, complete_task, inventory_selector, truck, product
    ):
        task = make_task(truck.id, 10, TaskType.PRODUCTION_TO_TRUCK)

        complete_task(task.id)

        inv = inventory_selector.inventory(truck.id, product.id)
        assert inv.total_pallets == 10
        assert inv.batches[0].status is BatchStatus.LOADED

    def test_completion_rechecks_warehouse_capacity(
        self, make_task, complete_task, orchestrator, task_selector, inventory_selector, warehouse
    ):
        first = make_task(warehouse.id, 60)
        second = make_task(warehouse.id, 60)
        complete_task(first.id)
        orchestrator.transition_status(second.id, TaskStatus.IN_PROGRESS)

        with pytest.raises(CapacityExceededError):
            orchestrator.transition_status(second.id, TaskStatus.COMPLETED)

        assert task_selector.task_detail(second.id).status is TaskStatus.IN_PROGRESS
        assert inventory_selector.occupied(warehouse.id) == 60

    @pytest.mark.parametrize(
        "path",
        [
            [TaskStatus.COMPLETED],
            [TaskStatus.IN_PROGRESS, TaskStatus.PENDING_PICKUP],
            [TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.IN_PROGRESS],
        ],
    )
    def test_invalid_paths(self, make_task, orchestrator, warehouse, path):
        task = make_task(warehouse.id, 1)
        *valid, invalid = path
        for status in valid:
            orchestrator.transition_status(task.id, status)

        with pytest.raises(InvalidTransitionError):
            orchestrator.transition_status(task.id, invalid)

    def test_advance_walks_the_path(self, make_task, orchestrator, warehouse):
        task = make_task(warehouse.id, 1)

        assert orchestrator.advance(task.id).status is TaskStatus.IN_PROGRESS
        assert orchestrator.advance(task.id).status is TaskStatus.COMPLETED
        with pytest.raises(InvalidTransitionError):
            orchestrator.advance(task.id)

    def test_unknown_task(self, orchestrator):
        with pytest.raises(TaskNotFoundError):
            orchestrator.transition_status(uuid4(), TaskStatus.IN_PROGRESS)


# =============================================================================
# Edit
# =============================================================================


class TestEdit:
    def test_completed_quantity_decrease_reverts_and_reapplies(
        self, make_task, complete_task, orchestrator, inventory_selector, warehouse, product
    ):
        task = make_task(warehouse.id, 10)
        complete_task(task.id)

        edited = orchestrator.edit_task(task.id, pallet_quantity=6)

        inv = inventory_selector.inventory(warehouse.id, product.id)
        assert inv.total_pallets == 6
        assert inv.batches[0].pallet_quantity == 6
        assert [p.sequence for p in edited.pallets] == [1, 2, 3, 4, 5, 6]

    def test_completed_quantity_increase_adds_delivered_pallets(
        self, make_task, complete_task, orchestrator, inventory_selector, warehouse
    ):
        task = make_task(warehouse.id, 10)
        complete_task(task.id)

        edited = orchestrator.edit_task(task.id, pallet_quantity=12)

        assert inventory_selector.occupied(warehouse.id) == 12
        assert edited.pallet_quantity == len(edited.pallets) == 12
        assert [p.status for p in edited.pallets if p.sequence > 10] == [
            PalletStatus.DELIVERED,
            PalletStatus.DELIVERED,
        ]

    def test_completed_destination_change_moves_stock(
        self, make_task, complete_task, orchestrator, inventory_selector,
        warehouse, second_warehouse,
    ):
        task = make_task(warehouse.id, 10)
        complete_task(task.id)

        edited = orchestrator.edit_task(task.id, to_id=second_warehouse.id)

        assert inventory_selector.occupied(warehouse.id) == 0
        assert inventory_selector.occupied(second_warehouse.id) == 10
        assert (edited.to_name, edited.to_qr_code) == ("Depo B", "WH-B")

    def test_completed_edit_leaves_other_tasks_stock(
        self, make_task, complete_task, orchestrator, inventory_selector, warehouse, product
    ):
        complete_task(make_task(warehouse.id, 5, production_number=3).id)
        task = make_task(warehouse.id, 4, production_number=3)
        complete_task(task.id)

        orchestrator.edit_task(task.id, pallet_quantity=1)

        (batch,) = inventory_selector.inventory(warehouse.id, product.id).batches
        assert batch.pallet_quantity == 6

    def test_open_task_capacity_recheck(self, make_task, orchestrator, warehouse):
        task = make_task(warehouse.id, 10)

        with pytest.raises(CapacityExceededError):
            orchestrator.edit_task(task.id, pallet_quantity=101)

        assert orchestrator.get_task(task.id).pallet_quantity == 10

    def test_truck_task_resized(self, make_task, orchestrator, inventory_selector, truck):
        task = make_task(truck.id, 30, TaskType.PRODUCTION_TO_TRUCK)

        orchestrator.edit_task(task.id, pallet_quantity=20)
        assert inventory_selector.occupied(truck.id) == 20

        # The task's own reservation counts as free space.
        orchestrator.edit_task(task.id, pallet_quantity=50)
        assert inventory_selector.occupied(truck.id) == 50

    def test_truck_task_over_capacity_keeps_reservation(
        self, make_task, orchestrator, inventory_selector, truck
    ):
        task = make_task(truck.id, 30, TaskType.PRODUCTION_TO_TRUCK)

        with pytest.raises(CapacityExceededError):
            orchestrator.edit_task(task.id, pallet_quantity=51)

        assert inventory_selector.occupied(truck.id) == 30

    def test_truck_task_moved_to_other_truck(
        self, make_task, complete_task, catalog, orchestrator, inventory_selector, truck, product
    ):
        other = catalog.create_location(LocationKind.TRUCK, "Truck 06", "TRK-06", capacity=40)
        task = make_task(truck.id, 12, TaskType.PRODUCTION_TO_TRUCK)
        complete_task(task.id)

        orchestrator.edit_task(task.id, to_id=other.id)

        assert inventory_selector.inventory(truck.id, product.id) is None
        (batch,) = inventory_selector.inventory(other.id, product.id).batches
        assert batch.status is BatchStatus.LOADED
        assert batch.pallet_quantity == 12

    def test_warehouse_to_truck_increase_withdraws_more(
        self, make_task, stock_warehouse, orchestrator, inventory_selector, warehouse, truck
    ):
        stock_warehouse(warehouse.id, 10)
        task = make_task(truck.id, 4, TaskType.WAREHOUSE_TO_TRUCK)

        orchestrator.edit_task(task.id, pallet_quantity=6)

        assert inventory_selector.occupied(warehouse.id) == 4
        assert inventory_selector.occupied(truck.id) == 6

    def test_warehouse_to_truck_increase_stays_in_pickup_warehouse(
        self, make_task, stock_warehouse, orchestrator, inventory_selector,
        warehouse, second_warehouse, truck,
    ):
        stock_warehouse(warehouse.id, 5)
        stock_warehouse(second_warehouse.id, 5, advance_days=1)
        task = make_task(
            truck.id, 2, TaskType.WAREHOUSE_TO_TRUCK, from_id=second_warehouse.id
        )

        edited = orchestrator.edit_task(task.id, pallet_quantity=4)

        assert edited.from_qr_code == "WH-B"
        assert inventory_selector.occupied(warehouse.id) == 5
        assert inventory_selector.occupied(second_warehouse.id) == 1
        assert inventory_selector.occupied(truck.id) == 4

    def test_warehouse_to_truck_increase_short_in_pickup_warehouse(
        self, make_task, stock_warehouse, orchestrator, task_selector, inventory_selector,
        warehouse, second_warehouse, truck,
    ):
        stock_warehouse(warehouse.id, 3)
        stock_warehouse(second_warehouse.id, 10, advance_days=1)
        task = make_task(truck.id, 2, TaskType.WAREHOUSE_TO_TRUCK)
        assert task.from_id == warehouse.id

        with pytest.raises(InsufficientStockError):
            orchestrator.edit_task(task.id, pallet_quantity=5)

        assert task_selector.task_detail(task.id).pallet_quantity == 2
        assert inventory_selector.occupied(warehouse.id) == 1
        assert inventory_selector.occupied(second_warehouse.id) == 10
        assert inventory_selector.occupied(truck.id) == 2

    def test_warehouse_to_truck_source_is_fixed(
        self, make_task, stock_warehouse, orchestrator, warehouse, second_warehouse, truck
    ):
        stock_warehouse(warehouse.id, 10)
        task = make_task(truck.id, 4, TaskType.WAREHOUSE_TO_TRUCK)

        with pytest.raises(ValidationError):
            orchestrator.edit_task(task.id, from_id=second_warehouse.id)

    def test_shrink_drops_waiting_pallets_only(
        self, make_task, orchestrator, scan_verifier, warehouse, driver
    ):
        task = make_task(warehouse.id, 3)
        scan_verifier.scan_pickup(task.id, "LINE-1", driver.id)
        scan_verifier.scan_pallet(task.id, task.pallets[0].code, driver.id)
        scan_verifier.scan_pallet(task.id, task.pallets[1].code, driver.id)

        with pytest.raises(PalletAlreadyScannedError):
            orchestrator.edit_task(task.id, pallet_quantity=1)

        edited = orchestrator.edit_task(task.id, pallet_quantity=2)
        assert [p.code for p in edited.pallets] == [p.code for p in task.pallets[:2]]
        assert all(p.status is PalletStatus.ON_FORKLIFT for p in edited.pallets)

    def test_grow_continues_sequence(self, make_task, orchestrator, warehouse):
        task = make_task(warehouse.id, 3)
        orchestrator.edit_task(task.id, pallet_quantity=2)

        edited = orchestrator.edit_task(task.id, pallet_quantity=4)

        assert [p.sequence for p in edited.pallets] == [1, 2, 3, 4]
        assert all(p.status is PalletStatus.WAITING for p in edited.pallets)

    def test_reassign_driver(self, make_task, orchestrator, warehouse, other_driver):
        task = make_task(warehouse.id, 1)
        assert orchestrator.edit_task(task.id, assigned_to=other_driver.id).assigned_to == other_driver.id

    def test_wrong_destination_kind_changes_nothing(
        self, make_task, orchestrator, warehouse, truck
    ):
        task = make_task(warehouse.id, 2)
        with pytest.raises(LocationKindError):
            orchestrator.edit_task(task.id, to_id=truck.id, pallet_quantity=1)
        assert orchestrator.get_task(task.id).pallet_quantity == 2


# =============================================================================
# Delete
# =============================================================================


class TestDelete:
    def test_completed_delete_removes_exact_quantity(
        self, make_task, complete_task, orchestrator, inventory_selector, warehouse, product
    ):
        task = make_task(warehouse.id, 8, production_number=42)
        complete_task(task.id)

        assert orchestrator.delete_task(task.id) is True

        assert inventory_selector.inventory(warehouse.id, product.id) is None
        assert orchestrator.delete_task(task.id) is False

    def test_completed_delete_keeps_shared_batch_remainder(
        self, make_task, complete_task, orchestrator, inventory_selector, warehouse, product
    ):
        complete_task(make_task(warehouse.id, 5, production_number=42).id)
        task = make_task(warehouse.id, 8, production_number=42)
        complete_task(task.id)

        orchestrator.delete_task(task.id)

        (batch,) = inventory_selector.inventory(warehouse.id, product.id).batches
        assert (batch.batch_key, batch.pallet_quantity) == ("pn-42", 5)

    def test_open_delete_has_no_inventory_effect(
        self, make_task, stock_warehouse, orchestrator, inventory_selector, task_selector, warehouse
    ):
        stock_warehouse(warehouse.id, 5)
        task = make_task(warehouse.id, 3)

        orchestrator.delete_task(task.id)

        assert inventory_selector.occupied(warehouse.id) == 5
        with pytest.raises(TaskNotFoundError):
            task_selector.task_detail(task.id)

    def test_truck_delete_releases_reservation(
        self, make_task, orchestrator, inventory_selector, truck
    ):
        task = make_task(truck.id, 30, TaskType.PRODUCTION_TO_TRUCK)

        orchestrator.delete_task(task.id)

        assert inventory_selector.occupied(truck.id) == 0

    def test_warehouse_to_truck_delete_does_not_restore_warehouse(
        self, make_task, stock_warehouse, orchestrator, inventory_selector, warehouse, truck
    ):
        stock_warehouse(warehouse.id, 10)
        task = make_task(truck.id, 4, TaskType.WAREHOUSE_TO_TRUCK)

        orchestrator.delete_task(task.id)

        assert inventory_selector.occupied(truck.id) == 0
        assert inventory_selector.occupied(warehouse.id) == 6

    def test_unknown_task_is_noop(self, orchestrator):
        assert orchestrator.delete_task(uuid4()) is False
