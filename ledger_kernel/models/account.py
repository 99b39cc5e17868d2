"""
Module: ledger_kernel.models.account
Responsibility: ORM model for ledger (customer/supplier), bank and cash
    accounts.  One table holds all three categories; they share the balance
    shape and differ only in semantics.
Architecture position: Kernel > Models.  May import from db/base.py and
    db/types.py only.

Invariants enforced:
    - (company_code, category, name) is unique (uq_account_tenant_category_name).
    - ledger_kind is set for ledger accounts and NULL for bank/cash
      (ck_account_ledger_kind).
    - opening_balance, company_code, category and ledger_kind never change
      after insert (db/immutability.py).
    - current_balance == opening_balance + sum(balance_change) over the
      account's transactions.  Only services/reconciliation_engine.py
      writes current_balance and the aggregate counters.

Failure modes:
    - IntegrityError on duplicate name within tenant + category.
    - ImmutabilityViolationError on structural field change.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import AuditedBase
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.values import (
    SUBSIDIARY_CATEGORIES,
    AccountCategory,
    LedgerKind,
)


class Account(AuditedBase):
    """
    Ledger or subsidiary (bank/cash) account with a running balance.

    Guarantees:
        - company_code scopes every read and write.
        - sale_total / purchase_total / deposited_* are denormalized running
          sums of the transaction log, maintained by the reconciliation
          engine in the same unit of work as the transaction append.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint(
            "company_code", "category", "name",
            name="uq_account_tenant_category_name",
        ),
        CheckConstraint(
            "(category = 'ledger' AND ledger_kind IS NOT NULL) OR "
            "(category <> 'ledger' AND ledger_kind IS NULL)",
            name="ck_account_ledger_kind",
        ),
        Index("idx_account_tenant_created", "company_code", "created_at"),
    )

    company_code: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[AccountCategory] = mapped_column(String(16), nullable=False)

    ledger_kind: Mapped[LedgerKind | None] = mapped_column(
        String(16),
        nullable=True,
    )

    # Contact metadata (ledger accounts)
    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Instrument metadata (bank accounts)
    bank_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    account_number: Mapped[str | None] = mapped_column(String(64), nullable=True)

    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    sale_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    purchase_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    deposited_sale_total: Mapped[Decimal] = mapped_column(
        nullable=False, default=ZERO
    )
    deposited_purchase_total: Mapped[Decimal] = mapped_column(
        nullable=False, default=ZERO
    )

    @property
    def is_subsidiary(self) -> bool:
        return AccountCategory(self.category) in SUBSIDIARY_CATEGORIES

    @property
    def is_ledger(self) -> bool:
        return AccountCategory(self.category) == AccountCategory.LEDGER

    def __repr__(self) -> str:
        return f"<Account {self.category}:{self.name} [{self.company_code}]>"
