"""
Module: ledger_kernel.models.payment_allocation
Responsibility: Audit record of how much of a payment was applied to which
    invoice.  Written in the same unit of work as the invoice update.
Architecture position: Kernel > Models.

Invariants enforced:
    - Fully immutable after insert (db/immutability.py).
    - For one payment, sum(amount_applied) == the payment's deposited_amount.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class PaymentAllocation(Base):
    """(payment, invoice, amount) triple produced by apply_payment."""

    __tablename__ = "payment_allocations"

    __table_args__ = (
        Index("idx_allocation_payment", "payment_transaction_id"),
        Index("idx_allocation_invoice", "invoice_transaction_id"),
    )

    company_code: Mapped[str] = mapped_column(String(64), nullable=False)

    payment_transaction_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("ledger_transactions.id"),
        nullable=False,
    )

    invoice_transaction_id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        ForeignKey("ledger_transactions.id"),
        nullable=False,
    )

    amount_applied: Mapped[Decimal] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
