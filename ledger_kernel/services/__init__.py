"""
Kernel services -- the imperative shell around the domain.

Services flush within the caller's session; the caller commits.
"""

from ledger_kernel.services.account_store import AccountStore
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.reconciliation_engine import BalanceReconciliationEngine
from ledger_kernel.services.transaction_ledger import TransactionLedger

__all__ = [
    "AccountStore",
    "BalanceReconciliationEngine",
    "BaseService",
    "TransactionLedger",
]
