"""
Pytest fixtures for the pallet kernel test suite.

Provides:
- A fresh database per test (SQLite file under tmp_path, or PostgreSQL
  when DATABASE_URL is set)
- A DeterministicClock and services wired to it
- Builders for products, locations, drivers, and stocked warehouses
- Structured log capture

Environment Variables:
- DATABASE_URL: run against PostgreSQL instead of SQLite.  Tables are
  dropped and recreated around every test.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session

from pallet_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from pallet_kernel.domain.clock import DeterministicClock
from pallet_kernel.domain.values import LocationKind, TaskStatus, TaskType
from pallet_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from pallet_kernel.selectors.inventory_selector import InventorySelector
from pallet_kernel.selectors.task_selector import TaskSelector
from pallet_kernel.services.catalog_service import CatalogService
from pallet_kernel.services.inventory_service import InventoryService
from pallet_kernel.services.scan_verifier import ScanVerifier
from pallet_kernel.services.sequence_service import SequenceService
from pallet_kernel.services.task_orchestrator import TaskOrchestrator


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture pallet_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.create_task(...)
            logs = captured_logs()
            assert any(r["message"] == "task_created" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("pallet_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


def get_database_url(tmp_path) -> str:
    return os.environ.get("DATABASE_URL") or f"sqlite:///{tmp_path / 'pallet_test.db'}"


@pytest.fixture
def db_engine(tmp_path):
    """Engine with freshly created tables, disposed after the test."""
    engine = init_engine_from_url(get_database_url(tmp_path), pool_size=10, busy_timeout=30)
    if engine.dialect.name == "postgresql":
        drop_tables()
    create_tables()
    yield engine
    if engine.dialect.name == "postgresql":
        drop_tables()
    reset_engine()


@pytest.fixture
def session(db_engine) -> Generator[Session, None, None]:
    """Session for the test body.  Rolled back and closed at teardown."""
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture
def session_factory(db_engine):
    """
    Factory for sessions that really commit, for concurrency tests.

    Each thread must create its own session.  All sessions are closed at
    teardown.
    """
    factory = get_session_factory()
    created: list[Session] = []

    def tracked() -> Session:
        s = factory()
        created.append(s)
        return s

    yield tracked

    for s in created:
        s.rollback()
        s.close()


# =============================================================================
# Clock and services
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def catalog(session, clock) -> CatalogService:
    return CatalogService(session, clock=clock)


@pytest.fixture
def inventory_service(session) -> InventoryService:
    return InventoryService(session)


@pytest.fixture
def sequence_service(session) -> SequenceService:
    return SequenceService(session)


@pytest.fixture
def orchestrator(session, clock) -> TaskOrchestrator:
    return TaskOrchestrator(session, clock=clock)


@pytest.fixture
def scan_verifier(session, clock, orchestrator) -> ScanVerifier:
    return ScanVerifier(session, clock=clock, orchestrator=orchestrator)


@pytest.fixture
def inventory_selector(session, clock) -> InventorySelector:
    return InventorySelector(session, clock=clock)


@pytest.fixture
def task_selector(session) -> TaskSelector:
    return TaskSelector(session)


# =============================================================================
# Builders
# =============================================================================


@pytest.fixture
def product(catalog):
    """Product P with a 10-day shelf life."""
    return catalog.create_product("Sarıyer Kola", expiry_days=10, qr_code="P-KOLA")


@pytest.fixture
def production_line(catalog):
    return catalog.create_location(LocationKind.PRODUCTION_LINE, "Line 1", "LINE-1")


@pytest.fixture
def warehouse(catalog):
    """Warehouse W, capacity 100, empty."""
    return catalog.create_location(LocationKind.WAREHOUSE, "Depo A", "WH-A", capacity=100)


@pytest.fixture
def second_warehouse(catalog):
    return catalog.create_location(LocationKind.WAREHOUSE, "Depo B", "WH-B", capacity=100)


@pytest.fixture
def truck(catalog):
    """Truck T, capacity 50, empty."""
    return catalog.create_location(LocationKind.TRUCK, "Truck 34", "TRK-34", capacity=50)


@pytest.fixture
def delivery_point(catalog):
    return catalog.create_location(LocationKind.DELIVERY_POINT, "Market", "DP-1")


@pytest.fixture
def driver(catalog):
    return catalog.register_driver("Ali Yilmaz", "ali@example.com")


@pytest.fixture
def other_driver(catalog):
    return catalog.register_driver("Ayse Demir", "ayse@example.com")


@pytest.fixture
def complete_task(orchestrator):
    """Drive a task through IN_PROGRESS to COMPLETED via admin transitions."""

    def _complete(task_id):
        orchestrator.transition_status(task_id, TaskStatus.IN_PROGRESS)
        return orchestrator.transition_status(task_id, TaskStatus.COMPLETED)

    return _complete


@pytest.fixture
def stock_warehouse(orchestrator, complete_task, clock, product, production_line, driver):
    """
    Put pallets into a warehouse by completing a production task.

    Returns the completed TaskInfo.  The clock advances first when
    ``advance_days`` is given, so later calls get later expiration dates.
    """

    def _stock(warehouse_id, quantity, advance_days=0, production_number=None):
        if advance_days:
            clock.advance_days(advance_days)
        task = orchestrator.create_task(
            product_id=product.id,
            task_type=TaskType.PRODUCTION_TO_WAREHOUSE,
            from_id=production_line.id,
            to_id=warehouse_id,
            assigned_to=driver.id,
            pallet_quantity=quantity,
            production_number=production_number,
        )
        return complete_task(task.id)

    return _stock
