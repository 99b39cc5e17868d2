"""
Module: ledger_kernel.models.transaction
Responsibility: ORM model for the append-only transaction log.
Architecture position: Kernel > Models.

Invariants enforced:
    - serial is unique (uq_transaction_serial).
    - Rows are never deleted.  The only permitted update is payment
      bookkeeping on sale/purchase rows: deposited_amount and
      remaining_amount (db/immutability.py).
    - deposited_amount + remaining_amount == total_amount on every row.
    - balance_change is the signed delta that was applied to the owning
      account's current_balance when the row was written.

Row shapes by kind:
    sale / purchase   total=T, deposited=D, remaining=T-D (0 <= remaining <= T)
    payment           total=0, deposited=A, remaining=-A
    return            total=0, deposited=A, remaining=-A
    deposit/withdrawal total=A, deposited=A, remaining=0
"""

import datetime as dt
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString
from ledger_kernel.domain.values import INVOICE_KINDS, TransactionKind


class LedgerTransaction(Base):
    """
    One entry of the append-only transaction log.

    Guarantees:
        - id is an auto-increment integer; serial is the human-readable key.
        - date is the business event date, created_at the record time.
        - linked_transaction_id on a bank/cash mirror row points at the
          ledger row that caused it.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        UniqueConstraint("serial", name="uq_transaction_serial"),
        Index("idx_transaction_account_date", "account_id", "date", "created_at"),
        Index("idx_transaction_original", "original_transaction_id"),
        Index("idx_transaction_tenant", "company_code"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )

    serial: Mapped[str] = mapped_column(String(40), nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    company_code: Mapped[str] = mapped_column(String(64), nullable=False)

    kind: Mapped[TransactionKind] = mapped_column(String(16), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    deposited_amount: Mapped[Decimal] = mapped_column(nullable=False)
    remaining_amount: Mapped[Decimal] = mapped_column(nullable=False)
    balance_change: Mapped[Decimal] = mapped_column(nullable=False)

    # Originating sale/purchase document in the billing collaborator
    source_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Invoice a return reverses
    original_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("ledger_transactions.id"),
        nullable=True,
    )

    linked_transaction_id: Mapped[int | None] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        nullable=True,
    )

    description: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    date: Mapped[dt.date] = mapped_column(Date, nullable=False)

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)

    @property
    def is_invoice(self) -> bool:
        return TransactionKind(self.kind) in INVOICE_KINDS

    def __repr__(self) -> str:
        return f"<LedgerTransaction {self.serial} {self.kind} {self.balance_change}>"
