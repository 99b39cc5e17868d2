"""
Value enums shared by the domain core, the ORM models and the services.

Columns store the enum ``.value``; rows loaded from the database hold plain
strings, so compare through the enum constructor (``TransactionKind(row.kind)``)
before using set membership.
"""

from enum import Enum


class AccountCategory(str, Enum):
    """Which store an account belongs to."""

    LEDGER = "ledger"
    BANK = "bank"
    CASH = "cash"


class LedgerKind(str, Enum):
    """Counterparty type of a ledger account."""

    CUSTOMER = "customer"
    SUPPLIER = "supplier"


class TransactionKind(str, Enum):
    """Billing and cash-movement event types."""

    SALE = "sale"
    PURCHASE = "purchase"
    PAYMENT = "payment"
    RETURN = "return"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"


class FlowDirection(str, Enum):
    """Direction of money on a bank or cash account."""

    IN = "in"
    OUT = "out"


SUBSIDIARY_CATEGORIES = frozenset({AccountCategory.BANK, AccountCategory.CASH})

INVOICE_KINDS = frozenset({TransactionKind.SALE, TransactionKind.PURCHASE})
