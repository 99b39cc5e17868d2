"""
ledger_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way the application obtains
    configuration.  No other component reads configuration files or
    environment variables directly.

Architecture position:
    Sits above ``ledger_kernel`` and below ``ledger_services``.  The kernel
    never imports from here; ``ledger_config.bridges`` turns a LedgerConfig
    into kernel inputs.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``ValueError`` / ``KeyError`` -- schema violations.
"""

from __future__ import annotations

import logging
import os
from dataclasses import replace
from pathlib import Path

from ledger_config.loader import load_config
from ledger_config.schema import LedgerConfig

_logger = logging.getLogger("ledger_kernel.config")

# Default configuration sets directory
_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"
_DEFAULT_CONFIG_FILE = _DEFAULT_CONFIG_DIR / "default.yaml"

DATABASE_URL_ENV = "LEDGER_DATABASE_URL"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """
    Load and return the active configuration.

    Args:
        path: Configuration file.  Defaults to ledger_config/sets/default.yaml.

    Returns:
        LedgerConfig with ``LEDGER_DATABASE_URL`` applied over database.url
        when that variable is set and non-empty.
    """
    config_path = Path(path) if path is not None else _DEFAULT_CONFIG_FILE
    config = load_config(config_path)

    override = os.environ.get(DATABASE_URL_ENV, "").strip()
    if override:
        config = replace(config, database=replace(config.database, url=override))

    _logger.info(
        "config_loaded",
        extra={
            "config_id": config.config_id,
            "version": config.version,
            "path": str(config_path),
            "database_url_overridden": bool(override),
            "balance_basis": config.ledger.balance_basis,
        },
    )
    return config


__all__ = ["LedgerConfig", "get_active_config"]
