"""
Configuration loader (``pallet_config.loader``).

Responsibility
--------------
Reads YAML configuration files, merges overlays, applies environment
overrides, and parses the result into the frozen ``KernelConfig``.
Runtime callers use ``pallet_config.get_active_config()`` instead.

Invariants enforced
-------------------
* Later sources win: defaults.yaml < PALLET_CONFIG_FILE < environment.
* Every parse error raises ``ValueError`` naming the offending key; no
  silent fallback for a value that is present but invalid.

Failure modes
-------------
* Missing overlay file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from pallet_config.schema import DatabaseConfig, KernelConfig, LoggingConfig

ENV_CONFIG_FILE = "PALLET_CONFIG_FILE"
ENV_DATABASE_URL = "DATABASE_URL"
ENV_LOG_LEVEL = "PALLET_LOG_LEVEL"

_LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``overlay`` into a copy of ``base``."""
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_environment(data: Mapping[str, Any], environ: Mapping[str, str]) -> dict[str, Any]:
    """Overlay DATABASE_URL and PALLET_LOG_LEVEL when set."""
    overlay: dict[str, Any] = {}
    if environ.get(ENV_DATABASE_URL):
        overlay["database"] = {"url": environ[ENV_DATABASE_URL]}
    if environ.get(ENV_LOG_LEVEL):
        overlay["logging"] = {"level": environ[ENV_LOG_LEVEL]}
    return merge(data, overlay)


def _positive_int(section: Mapping[str, Any], key: str, path: str, minimum: int = 1) -> int:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValueError(f"{path}.{key} must be an integer >= {minimum}, got {value!r}")
    return value


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    section = data.get(key) or {}
    if not isinstance(section, Mapping):
        raise ValueError(f"{key} must be a mapping")
    return section


def parse_database(data: Mapping[str, Any]) -> DatabaseConfig:
    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError("database.url is required")
    echo = data.get("echo", False)
    if not isinstance(echo, bool):
        raise ValueError(f"database.echo must be a boolean, got {echo!r}")
    return DatabaseConfig(
        url=url.strip(),
        echo=echo,
        pool_size=_positive_int(data, "pool_size", "database"),
        max_overflow=_positive_int(data, "max_overflow", "database", minimum=0),
        pool_timeout=_positive_int(data, "pool_timeout", "database"),
        busy_timeout=_positive_int(data, "busy_timeout", "database"),
    )


def parse_logging(data: Mapping[str, Any]) -> LoggingConfig:
    level = str(data.get("level", "INFO")).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {_LOG_LEVELS}, got {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: Mapping[str, Any]) -> KernelConfig:
    """Parse a merged configuration mapping into a KernelConfig."""
    suffix_length = _positive_int(
        _section(data, "pallet_codes"), "suffix_length", "pallet_codes", minimum=4
    )
    expiry_days = _positive_int(_section(data, "products"), "default_expiry_days", "products")
    if expiry_days > 3650:
        raise ValueError(f"products.default_expiry_days must be <= 3650, got {expiry_days}")
    return KernelConfig(
        database=parse_database(_section(data, "database")),
        logging=parse_logging(_section(data, "logging")),
        default_expiry_days=expiry_days,
        pallet_code_suffix_length=suffix_length,
        expiring_soon_days=_positive_int(
            _section(data, "reports"), "expiring_soon_days", "reports"
        ),
    )


def load_config(
    defaults_path: Path,
    overlay_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> KernelConfig:
    """Load defaults, overlay file, and environment, then parse."""
    data = load_yaml_file(defaults_path)
    if overlay_path is not None:
        data = merge(data, load_yaml_file(overlay_path))
    data = apply_environment(data, environ or {})
    return parse_config(data)


def log_level_number(config: KernelConfig) -> int:
    return logging.getLevelNamesMapping()[config.logging.level]
