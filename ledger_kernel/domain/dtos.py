"""
DTOs -- immutable data returned by the kernel services and selectors.

Responsibility:
    Services never hand ORM instances to callers; they return these frozen
    dataclasses.  ``from_model()`` class methods are boundary converters used
    only by the service and selector layers.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.values import AccountCategory, LedgerKind, TransactionKind
from ledger_kernel.exceptions import ValidationError

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.transaction import LedgerTransaction


@dataclass(frozen=True)
class AccountInfo:
    id: UUID
    company_code: str
    name: str
    category: AccountCategory
    ledger_kind: LedgerKind | None
    opening_balance: Decimal
    current_balance: Decimal
    sale_total: Decimal
    purchase_total: Decimal
    deposited_sale_total: Decimal
    deposited_purchase_total: Decimal
    created_at: datetime
    updated_at: datetime
    created_by: str
    address: str | None = None
    region: str | None = None
    phone: str | None = None
    email: str | None = None
    bank_name: str | None = None
    account_number: str | None = None

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            company_code=model.company_code,
            name=model.name,
            category=AccountCategory(model.category),
            ledger_kind=LedgerKind(model.ledger_kind) if model.ledger_kind else None,
            opening_balance=model.opening_balance,
            current_balance=model.current_balance,
            sale_total=model.sale_total,
            purchase_total=model.purchase_total,
            deposited_sale_total=model.deposited_sale_total,
            deposited_purchase_total=model.deposited_purchase_total,
            created_at=model.created_at,
            updated_at=model.updated_at,
            created_by=model.created_by,
            address=model.address,
            region=model.region,
            phone=model.phone,
            email=model.email,
            bank_name=model.bank_name,
            account_number=model.account_number,
        )


@dataclass(frozen=True)
class TransactionInfo:
    id: int
    serial: str
    account_id: UUID
    company_code: str
    kind: TransactionKind
    total_amount: Decimal
    deposited_amount: Decimal
    remaining_amount: Decimal
    balance_change: Decimal
    date: date
    created_at: datetime
    created_by: str
    source_id: str | None = None
    original_transaction_id: int | None = None
    linked_transaction_id: int | None = None
    description: str | None = None

    @classmethod
    def from_model(cls, model: LedgerTransaction) -> TransactionInfo:
        return cls(
            id=model.id,
            serial=model.serial,
            account_id=model.account_id,
            company_code=model.company_code,
            kind=TransactionKind(model.kind),
            total_amount=model.total_amount,
            deposited_amount=model.deposited_amount,
            remaining_amount=model.remaining_amount,
            balance_change=model.balance_change,
            date=model.date,
            created_at=model.created_at,
            created_by=model.created_by,
            source_id=model.source_id,
            original_transaction_id=model.original_transaction_id,
            linked_transaction_id=model.linked_transaction_id,
            description=model.description,
        )


@dataclass(frozen=True)
class TransactionMeta:
    """Caller-supplied context for a new transaction row."""

    actor_id: str = "system"
    date: date | None = None
    description: str | None = None
    source_id: str | None = None


@dataclass(frozen=True)
class AppliedAllocation:
    """One (invoice, amount applied) pair of a payment."""

    invoice_id: int
    invoice_serial: str
    amount_applied: Decimal
    remaining_after: Decimal


@dataclass(frozen=True)
class PostingResult:
    """
    What an Engine operation changed.

    ``settlement_*`` are set when the event also moved money on a bank or
    cash account in the same unit of work.
    """

    account: AccountInfo
    transaction: TransactionInfo
    allocations: tuple[AppliedAllocation, ...] = ()
    settlement_account: AccountInfo | None = None
    settlement_transaction: TransactionInfo | None = None


@dataclass(frozen=True)
class ReconciliationReport:
    account_id: UUID
    company_code: str
    opening_balance: Decimal
    transaction_sum: Decimal
    expected_balance: Decimal
    current_balance: Decimal
    transaction_count: int
    counter_drift: dict[str, Decimal] = field(default_factory=dict)

    @property
    def drift(self) -> Decimal:
        return self.current_balance - self.expected_balance

    @property
    def ok(self) -> bool:
        return self.drift == ZERO and not self.counter_drift


@dataclass(frozen=True)
class AccountFilter:
    category: AccountCategory | None = None
    ledger_kind: LedgerKind | None = None
    search: str | None = None


@dataclass(frozen=True)
class TransactionFilter:
    """Optional narrowing of an account's transaction listing; dates are inclusive."""

    kind: TransactionKind | None = None
    date_from: date | None = None
    date_to: date | None = None

    def __post_init__(self) -> None:
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValidationError(
                f"date_from {self.date_from} is after date_to {self.date_to}",
                field="date_from",
            )


@dataclass(frozen=True)
class KindSummary:
    count: int = 0
    total_balance: Decimal = ZERO


@dataclass(frozen=True)
class LedgerSummary:
    company_code: str
    customers: KindSummary
    suppliers: KindSummary


@dataclass(frozen=True)
class FundsSummary:
    company_code: str
    bank_accounts: int
    total_bank_balance: Decimal
    cash_balance: Decimal

    @property
    def total_balance(self) -> Decimal:
        return self.total_bank_balance + self.cash_balance
