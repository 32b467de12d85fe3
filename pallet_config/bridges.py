"""
Config -> Kernel bridges.

Functions that turn a KernelConfig into configured kernel objects.  They
live in pallet_config (the producer) because the kernel must NEVER import
pallet_config.

Usage:
    from pallet_config import get_active_config
    from pallet_config.bridges import build_services, init_engine_from_config

    config = get_active_config()
    init_engine_from_config(config)
    with session_scope() as session:
        services = build_services(session, config)
        services.orchestrator.create_task(...)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from pallet_config.loader import log_level_number
from pallet_config.schema import KernelConfig
from pallet_kernel.db.engine import init_engine_from_url
from pallet_kernel.domain.clock import Clock, SystemClock
from pallet_kernel.domain.pallet_codes import PalletCodeGenerator
from pallet_kernel.logging_config import configure_logging
from pallet_kernel.selectors.inventory_selector import InventorySelector
from pallet_kernel.selectors.task_selector import TaskSelector
from pallet_kernel.services.catalog_service import CatalogService
from pallet_kernel.services.scan_verifier import ScanVerifier
from pallet_kernel.services.task_orchestrator import TaskOrchestrator


@dataclass(frozen=True)
class KernelServices:
    """Services and selectors bound to one session."""

    catalog: CatalogService
    orchestrator: TaskOrchestrator
    scan_verifier: ScanVerifier
    inventory: InventorySelector
    tasks: TaskSelector


def init_engine_from_config(config: KernelConfig) -> Engine:
    """Configure logging at the configured level, then create the engine."""
    configure_logging(level=log_level_number(config))
    db = config.database
    return init_engine_from_url(
        db.url,
        echo=db.echo,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        busy_timeout=db.busy_timeout,
    )


def build_code_generator(config: KernelConfig, clock: Clock | None = None) -> PalletCodeGenerator:
    return PalletCodeGenerator(clock, suffix_length=config.pallet_code_suffix_length)


def build_services(
    session: Session,
    config: KernelConfig,
    clock: Clock | None = None,
) -> KernelServices:
    """Wire every service and selector to ``session`` with configured values."""
    clock = clock or SystemClock()
    orchestrator = TaskOrchestrator(
        session,
        clock=clock,
        code_generator=build_code_generator(config, clock),
    )
    return KernelServices(
        catalog=CatalogService(
            session, clock=clock, default_expiry_days=config.default_expiry_days
        ),
        orchestrator=orchestrator,
        scan_verifier=ScanVerifier(session, clock=clock, orchestrator=orchestrator),
        inventory=InventorySelector(
            session, clock=clock, expiring_soon_days=config.expiring_soon_days
        ),
        tasks=TaskSelector(session),
    )
