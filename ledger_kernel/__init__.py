"""
Ledger Kernel

Balance-propagation core for a multi-tenant retail ledger:
- Customer/supplier ledger accounts and bank/cash accounts
- Append-only transaction log with generated serials
- Atomic balance updates with row-level locking
- Payment allocation and return caps
- Reconciliation of stored balances against the log
"""

__version__ = "0.1.0"
