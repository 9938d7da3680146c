"""
TraderConfig schema.

Typed, frozen view of the trader's runtime configuration.  The loader
parses YAML into these types; ``get_active_config()`` is the only way
callers obtain one.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLAlchemy connection settings."""

    url: str
    echo: bool = False


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class ErrorJournalConfig:
    """Location of the JSON-lines error journal.  ``None`` keeps it in memory."""

    path: Path | None = None


@dataclass(frozen=True)
class CatalogConfig:
    path: Path


@dataclass(frozen=True)
class StockConfig:
    """Stock behaviour defaults."""

    default_riven_hidden: bool = True


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TraderConfig:
    """The complete runtime configuration."""

    database: DatabaseConfig
    logging: LoggingConfig
    error_journal: ErrorJournalConfig
    catalog: CatalogConfig
    stock: StockConfig
    source: Path | None = None
    checksum: str = ""
