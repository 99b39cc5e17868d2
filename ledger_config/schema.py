"""
LedgerConfig schema.

Frozen dataclasses the YAML configuration set is parsed into.  The kernel
never sees these; ``ledger_config.bridges`` translates them into
kernel-side inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# ---------------------------------------------------------------------------
# Infrastructure
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    url: str
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 1800


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Ledger behaviour
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerSettings:
    balance_basis: str = "gross"  # gross | net
    cash_in_hand_name: str = "cashInHand"
    allow_negative_subsidiary_balance: bool = False


@dataclass(frozen=True)
class SerialSettings:
    max_attempts: int = 5
    suffix_length: int = 6


@dataclass(frozen=True)
class PaginationSettings:
    default_limit: int = 50
    max_limit: int = 200


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """A complete, parsed configuration set."""

    config_id: str
    version: int
    database: DatabaseSettings
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    serials: SerialSettings = field(default_factory=SerialSettings)
    pagination: PaginationSettings = field(default_factory=PaginationSettings)
