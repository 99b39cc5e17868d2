"""Read-only selectors."""

from ledger_kernel.selectors.account_selector import AccountRef, AccountSelector
from ledger_kernel.selectors.base import BaseSelector

__all__ = ["AccountRef", "AccountSelector", "BaseSelector"]
