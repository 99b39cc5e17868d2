"""
ledger_services -- handlers, commands and application bootstrap.

Sits above ledger_kernel and ledger_config.  Handlers are the only entry
point the transport layer uses.
"""

from ledger_services.application import HealthStatus, LedgerApplication, ServiceState
from ledger_services.context import RequestContext
from ledger_services.handlers import LedgerHandlers, Page, Response
from ledger_services.reconciliation_sweep import SweepResult, run_reconciliation_sweep

__all__ = [
    "HealthStatus",
    "LedgerApplication",
    "LedgerHandlers",
    "Page",
    "RequestContext",
    "Response",
    "ServiceState",
    "SweepResult",
    "run_reconciliation_sweep",
]
