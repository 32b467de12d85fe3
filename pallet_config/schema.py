"""
Kernel configuration schema.

Frozen dataclasses produced by ``pallet_config.loader`` and consumed
through ``pallet_config.bridges``.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class DatabaseConfig:
    url: str
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    busy_timeout: int = 30


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class KernelConfig:
    """Runtime configuration for the pallet kernel."""

    database: DatabaseConfig
    logging: LoggingConfig
    default_expiry_days: int = 30
    pallet_code_suffix_length: int = 8
    expiring_soon_days: int = 7
