"""
Periodic reconciliation sweep.

Runs ``BalanceReconciliationEngine.reconcile`` over every account of one
tenant (or all tenants) and collects the reports that show drift.  Read
only; drift is reported and logged, never repaired.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import ReconciliationReport
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.reconciliation_engine import BalanceReconciliationEngine

logger = get_logger("services.reconciliation_sweep")


@dataclass
class SweepResult:
    checked: int = 0
    drifted: list[ReconciliationReport] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.drifted


def run_reconciliation_sweep(
    session: Session,
    tenant: str | None = None,
    clock: Clock | None = None,
    policy: LedgerPolicy | None = None,
) -> SweepResult:
    t0 = time.monotonic()
    engine = BalanceReconciliationEngine(session, clock, policy)
    result = SweepResult()

    for ref in AccountSelector(session).list_account_refs(tenant):
        with LogContext.bind(tenant=ref.company_code, account_id=ref.id):
            report = engine.reconcile(ref.id, ref.company_code)
        result.checked += 1
        if not report.ok:
            result.drifted.append(report)

    log = logger.warning if result.drifted else logger.info
    log(
        "reconciliation_sweep_completed",
        extra={
            "scope_tenant": tenant,
            "accounts_checked": result.checked,
            "accounts_drifted": len(result.drifted),
            "duration_ms": round((time.monotonic() - t0) * 1000, 2),
        },
    )
    return result
