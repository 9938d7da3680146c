"""
trade_config -- single public entrypoint for runtime configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or ``TRADE_*`` environment variables directly.

Architecture position:
    Configuration.  Sits above ``trade_kernel`` and below
    ``trade_services``.  The kernel MUST NEVER import from ``trade_config``;
    ``trade_services.bootstrap`` translates a ``TraderConfig`` into kernel
    collaborators.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or invalid settings.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``TRADE_CONFIG_TRACE`` log entry with the source file, the overrides
    applied and a checksum of the effective configuration.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Mapping

from trade_config.loader import apply_env_overrides, load_yaml_file, parse_config
from trade_config.schema import TraderConfig

_logger = logging.getLogger("trade_kernel.config")

_DEFAULT_CONFIG = Path(__file__).parent / "defaults" / "trader.yaml"

__all__ = ["TraderConfig", "get_active_config"]


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> TraderConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: YAML file to load.  Defaults to
            ``trade_config/defaults/trader.yaml``.
        environ: Environment mapping for ``TRADE_*`` overrides.  Defaults
            to ``os.environ``.

    Returns:
        A frozen ``TraderConfig``.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required setting is missing.
        ValueError: If a setting is invalid.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG
    raw = load_yaml_file(path)
    data, overrides = apply_env_overrides(
        raw, os.environ if environ is None else environ
    )
    config = parse_config(data, base_dir=path.parent, source=path)

    _logger.info(
        "TRADE_CONFIG_TRACE",
        extra={
            "trace_type": "TRADE_CONFIG_TRACE",
            "config_source": str(path),
            "checksum": config.checksum,
            "env_overrides": overrides,
            "database_dialect": config.database.url.split(":", 1)[0],
            "default_riven_hidden": config.stock.default_riven_hidden,
        },
    )
    return config
