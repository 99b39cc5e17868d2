"""
AccountSelector -- read-only per-tenant account summaries.

Summaries read the stored ``current_balance`` column; the balances there
are kept equal to the transaction log by the reconciliation engine, and the
sweep (``ledger_services.reconciliation_sweep``) proves it.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.dtos import FundsSummary, KindSummary, LedgerSummary
from ledger_kernel.domain.values import AccountCategory, LedgerKind
from ledger_kernel.models.account import Account
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountRef:
    """Minimal account identity used by batch jobs."""

    id: UUID
    company_code: str
    name: str


class AccountSelector(BaseSelector):
    def ledger_summary(self, tenant: str) -> LedgerSummary:
        """Count and total balance of customer and supplier ledgers."""
        rows = self.session.execute(
            select(
                Account.ledger_kind,
                func.count(Account.id),
                func.coalesce(func.sum(Account.current_balance), 0),
            )
            .where(
                Account.company_code == tenant,
                Account.category == AccountCategory.LEDGER.value,
            )
            .group_by(Account.ledger_kind)
        ).all()

        by_kind = {
            LedgerKind(kind): KindSummary(count=count, total_balance=_money(total))
            for kind, count, total in rows
        }
        return LedgerSummary(
            company_code=tenant,
            customers=by_kind.get(LedgerKind.CUSTOMER, KindSummary()),
            suppliers=by_kind.get(LedgerKind.SUPPLIER, KindSummary()),
        )

    def funds_summary(self, tenant: str) -> FundsSummary:
        """Bank and cash balances of a tenant."""
        rows = self.session.execute(
            select(
                Account.category,
                func.count(Account.id),
                func.coalesce(func.sum(Account.current_balance), 0),
            )
            .where(
                Account.company_code == tenant,
                Account.category.in_(
                    [AccountCategory.BANK.value, AccountCategory.CASH.value]
                ),
            )
            .group_by(Account.category)
        ).all()

        counts: dict[AccountCategory, int] = {}
        totals: dict[AccountCategory, Decimal] = {}
        for category, count, total in rows:
            counts[AccountCategory(category)] = count
            totals[AccountCategory(category)] = _money(total)

        return FundsSummary(
            company_code=tenant,
            bank_accounts=counts.get(AccountCategory.BANK, 0),
            total_bank_balance=totals.get(AccountCategory.BANK, ZERO),
            cash_balance=totals.get(AccountCategory.CASH, ZERO),
        )

    def list_account_refs(self, tenant: str | None = None) -> list[AccountRef]:
        """All accounts (of one tenant, or every tenant), in a stable order."""
        stmt = select(Account.id, Account.company_code, Account.name).order_by(
            Account.company_code, Account.created_at, Account.name
        )
        if tenant is not None:
            stmt = stmt.where(Account.company_code == tenant)
        return [
            AccountRef(id=row.id, company_code=row.company_code, name=row.name)
            for row in self.session.execute(stmt)
        ]


def _money(value) -> Decimal:
    return round_money(Decimal(str(value)))
