"""
Configuration Loader (``ledger_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen dataclasses
of ``ledger_config.schema``.  Runtime callers go through
``ledger_config.get_active_config()`` instead.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range or mistyped values  -> ``ValueError``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import (
    DatabaseSettings,
    LedgerConfig,
    LedgerSettings,
    LoggingSettings,
    PaginationSettings,
    SerialSettings,
)

BALANCE_BASES = ("gross", "net")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _positive_int(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


def _bool(data: dict[str, Any], key: str, default: bool) -> bool:
    value = data.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be true or false, got {value!r}")
    return value


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    url = data["url"]
    if not isinstance(url, str) or not url.strip():
        raise ValueError("database.url must be a non-empty string")
    return DatabaseSettings(
        url=url.strip(),
        echo=_bool(data, "echo", False),
        pool_size=_positive_int(data, "pool_size", 10),
        max_overflow=_positive_int(data, "max_overflow", 10),
        pool_timeout=_positive_int(data, "pool_timeout", 30),
        pool_recycle=_positive_int(data, "pool_recycle", 1800),
    )


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    level = str(data.get("level", "INFO")).upper()
    if level not in LOG_LEVELS:
        raise ValueError(f"logging.level must be one of {LOG_LEVELS}, got {level!r}")
    return LoggingSettings(level=level)


def parse_ledger(data: dict[str, Any]) -> LedgerSettings:
    basis = str(data.get("balance_basis", "gross")).lower()
    if basis not in BALANCE_BASES:
        raise ValueError(
            f"ledger.balance_basis must be one of {BALANCE_BASES}, got {basis!r}"
        )
    name = str(data.get("cash_in_hand_name", "cashInHand")).strip()
    if not name:
        raise ValueError("ledger.cash_in_hand_name must not be blank")
    return LedgerSettings(
        balance_basis=basis,
        cash_in_hand_name=name,
        allow_negative_subsidiary_balance=_bool(
            data, "allow_negative_subsidiary_balance", False
        ),
    )


def parse_serials(data: dict[str, Any]) -> SerialSettings:
    settings = SerialSettings(
        max_attempts=_positive_int(data, "max_attempts", 5),
        suffix_length=_positive_int(data, "suffix_length", 6),
    )
    if settings.suffix_length < 4:
        raise ValueError("serials.suffix_length must be at least 4")
    return settings


def parse_pagination(data: dict[str, Any]) -> PaginationSettings:
    settings = PaginationSettings(
        default_limit=_positive_int(data, "default_limit", 50),
        max_limit=_positive_int(data, "max_limit", 200),
    )
    if settings.default_limit > settings.max_limit:
        raise ValueError("pagination.default_limit must not exceed max_limit")
    return settings


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a whole configuration document.

    ``config_id``, ``version`` and ``database.url`` are required; every
    other section falls back to its defaults when absent.
    """
    return LedgerConfig(
        config_id=str(data["config_id"]),
        version=int(data["version"]),
        database=parse_database(data["database"]),
        logging=parse_logging(data.get("logging") or {}),
        ledger=parse_ledger(data.get("ledger") or {}),
        serials=parse_serials(data.get("serials") or {}),
        pagination=parse_pagination(data.get("pagination") or {}),
    )


def load_config(path: Path) -> LedgerConfig:
    return parse_config(load_yaml_file(path))
