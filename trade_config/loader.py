"""
Configuration Loader (``trade_config.loader``).

Responsibility
--------------
Loads the YAML configuration file, applies ``TRADE_*`` environment
overrides and parses the result into ``trade_config.schema`` dataclasses.
Callers go through ``trade_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* A relative ``catalog.path`` resolves against the directory of the YAML
  file that named it.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the
  effective (post-override) configuration.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values (unknown log level, empty database url)  -> ``ValueError``.
"""

from __future__ import annotations

import copy
import hashlib
import json
from pathlib import Path
from typing import Any, Mapping

import yaml

from trade_config.schema import (
    CatalogConfig,
    DatabaseConfig,
    ErrorJournalConfig,
    LoggingConfig,
    StockConfig,
    TraderConfig,
)

# Environment variable -> (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "TRADE_DATABASE_URL": ("database", "url"),
    "TRADE_LOG_LEVEL": ("logging", "level"),
    "TRADE_ERROR_LOG": ("error_journal", "path"),
    "TRADE_CATALOG_PATH": ("catalog", "path"),
}

_VALID_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def apply_env_overrides(
    data: dict[str, Any],
    environ: Mapping[str, str],
) -> tuple[dict[str, Any], list[str]]:
    """
    Return a copy of ``data`` with ``TRADE_*`` overrides applied, plus the
    names of the variables that were used.
    """
    result = copy.deepcopy(data)
    applied = []
    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        result.setdefault(section, {})
        if result[section] is None:
            result[section] = {}
        result[section][key] = value
        applied.append(var)
    return result, applied


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in ("true", "yes", "1", "on"):
        return True
    if isinstance(value, str) and value.lower() in ("false", "no", "0", "off"):
        return False
    raise ValueError(f"Cannot parse boolean from {value!r}")


def parse_config(
    data: dict[str, Any],
    base_dir: Path,
    source: Path | None = None,
) -> TraderConfig:
    """
    Parse a configuration mapping into a ``TraderConfig``.

    Raises:
        KeyError: ``database.url`` or ``catalog.path`` is missing.
        ValueError: a value is present but invalid.
    """
    database = data.get("database") or {}
    url = database["url"]
    if not url:
        raise ValueError("database.url must not be empty")

    level = str((data.get("logging") or {}).get("level", "INFO")).upper()
    if level not in _VALID_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    journal_path = (data.get("error_journal") or {}).get("path")

    catalog_path = Path((data.get("catalog") or {})["path"])
    if not catalog_path.is_absolute():
        catalog_path = base_dir / catalog_path

    stock = data.get("stock") or {}

    return TraderConfig(
        database=DatabaseConfig(
            url=url,
            echo=parse_bool(database.get("echo", False)),
        ),
        logging=LoggingConfig(level=level),
        error_journal=ErrorJournalConfig(
            path=Path(journal_path).expanduser() if journal_path else None,
        ),
        catalog=CatalogConfig(path=catalog_path),
        stock=StockConfig(
            default_riven_hidden=parse_bool(stock.get("default_riven_hidden", True)),
        ),
        source=source,
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
