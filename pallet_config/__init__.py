"""
pallet_config -- single public entrypoint for kernel configuration.

Responsibility:
    ``get_active_config()`` is the only way runtime code obtains
    configuration.  Services never read files or environment variables;
    they receive plain values through ``pallet_config.bridges``.

Architecture position:
    Configuration sits above ``pallet_kernel``.  The kernel MUST NEVER
    import from ``pallet_config``.

Sources, later wins:
    1. ``pallet_config/defaults.yaml``
    2. the YAML file named by ``PALLET_CONFIG_FILE``
    3. ``DATABASE_URL`` and ``PALLET_LOG_LEVEL``

Failure modes:
    - ``FileNotFoundError`` -- PALLET_CONFIG_FILE names a missing file.
    - ``ValueError`` -- a value is present but invalid.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path

from pallet_config.loader import ENV_CONFIG_FILE, load_config
from pallet_config.schema import DatabaseConfig, KernelConfig, LoggingConfig

_logger = logging.getLogger("pallet_kernel.config")

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_active_config(
    config_file: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelConfig:
    """
    The ONLY public configuration entrypoint.

    Args:
        config_file: Overlay file.  Defaults to ``$PALLET_CONFIG_FILE``.
        environ: Environment mapping.  Defaults to ``os.environ``.

    Returns:
        Frozen KernelConfig.
    """
    environ = os.environ if environ is None else environ
    if config_file is None and environ.get(ENV_CONFIG_FILE):
        config_file = Path(environ[ENV_CONFIG_FILE])

    config = load_config(DEFAULTS_PATH, config_file, environ)
    _logger.info(
        "PALLET_CONFIG_TRACE",
        extra={
            "config_file": str(config_file) if config_file else None,
            "dialect": config.database.url.split(":", 1)[0],
            "log_level": config.logging.level,
            "default_expiry_days": config.default_expiry_days,
        },
    )
    return config


__all__ = [
    "DatabaseConfig",
    "KernelConfig",
    "LoggingConfig",
    "get_active_config",
]
