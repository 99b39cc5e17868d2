"""
Config -> Kernel Bridges.

The kernel must never import ledger_config, so the translation from a
parsed configuration to kernel inputs lives here.

Usage:
    from ledger_config.bridges import build_ledger_policy

    config = get_active_config()
    policy = build_ledger_policy(config)
"""

from __future__ import annotations

from ledger_config.schema import LedgerConfig
from ledger_kernel.domain.policy import BalanceBasis, LedgerPolicy


def build_ledger_policy(config: LedgerConfig) -> LedgerPolicy:
    return LedgerPolicy(
        balance_basis=BalanceBasis(config.ledger.balance_basis),
        cash_in_hand_name=config.ledger.cash_in_hand_name,
        allow_negative_subsidiary_balance=config.ledger.allow_negative_subsidiary_balance,
        serial_max_attempts=config.serials.max_attempts,
        serial_suffix_length=config.serials.suffix_length,
        default_page_limit=config.pagination.default_limit,
        max_page_limit=config.pagination.max_limit,
    )
