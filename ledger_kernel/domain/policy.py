"""
LedgerPolicy -- kernel-side runtime settings.

The kernel never reads configuration files.  ``ledger_config.bridges``
builds a LedgerPolicy from the active configuration; services fall back to
``DEFAULT_POLICY`` when none is injected.
"""

from dataclasses import dataclass
from enum import Enum


class BalanceBasis(str, Enum):
    """How an invoice moves the ledger balance."""

    GROSS = "gross"  # balance moves by total_amount
    NET = "net"  # balance moves by total_amount - deposited_amount


@dataclass(frozen=True)
class LedgerPolicy:
    balance_basis: BalanceBasis = BalanceBasis.GROSS
    cash_in_hand_name: str = "cashInHand"
    allow_negative_subsidiary_balance: bool = False
    serial_max_attempts: int = 5
    serial_suffix_length: int = 6
    default_page_limit: int = 50
    max_page_limit: int = 200

    def __post_init__(self) -> None:
        if self.serial_max_attempts < 1:
            raise ValueError("serial_max_attempts must be at least 1")
        if self.serial_suffix_length < 4:
            raise ValueError("serial_suffix_length must be at least 4")
        if not 1 <= self.default_page_limit <= self.max_page_limit:
            raise ValueError(
                "default_page_limit must be between 1 and max_page_limit"
            )
        if not self.cash_in_hand_name.strip():
            raise ValueError("cash_in_hand_name must not be blank")


DEFAULT_POLICY = LedgerPolicy()
