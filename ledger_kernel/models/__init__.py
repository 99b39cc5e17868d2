"""ORM models for accounts, the transaction log and payment allocations."""

from ledger_kernel.models.account import (
    SUBSIDIARY_CATEGORIES,
    Account,
    AccountCategory,
    LedgerKind,
)
from ledger_kernel.models.payment_allocation import PaymentAllocation
from ledger_kernel.models.transaction import (
    INVOICE_KINDS,
    LedgerTransaction,
    TransactionKind,
)

__all__ = [
    "Account",
    "AccountCategory",
    "LedgerKind",
    "SUBSIDIARY_CATEGORIES",
    "LedgerTransaction",
    "TransactionKind",
    "INVOICE_KINDS",
    "PaymentAllocation",
]
