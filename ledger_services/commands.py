"""
Typed command objects, one per handler operation.

Commands carry raw inbound values (amounts may be strings or numbers);
``LedgerHandlers`` coerces them.  Structural rules that do not need the
database are checked at construction.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import date
from typing import Any
from uuid import UUID

from ledger_kernel.exceptions import ValidationError

PAYMENT_METHODS = ("cash", "bank")

AccountId = UUID | str
Amount = Any


def _check_payment_method(method: str | None, bank_account_id: AccountId | None) -> None:
    if method is None:
        return
    if method not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {PAYMENT_METHODS}, got {method!r}",
            field="payment_method",
        )
    if method == "bank" and bank_account_id is None:
        raise ValidationError(
            "payment_method 'bank' requires bank_account_id", field="bank_account_id"
        )
    if method == "cash" and bank_account_id is not None:
        raise ValidationError(
            "bank_account_id is not allowed with payment_method 'cash'",
            field="bank_account_id",
        )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CreateAccountCommand:
    category: str
    name: str
    opening_balance: Amount = "0"
    ledger_kind: str | None = None
    metadata: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class GetAccountCommand:
    account_id: AccountId


@dataclass(frozen=True)
class DeleteAccountCommand:
    account_id: AccountId


@dataclass(frozen=True)
class UpdateAccountCommand:
    account_id: AccountId
    fields: Mapping[str, Any]


@dataclass(frozen=True)
class ListAccountsCommand:
    category: str | None = None
    ledger_kind: str | None = None
    search: str | None = None
    page: int = 1
    limit: int | None = None


# ---------------------------------------------------------------------------
# Billing events
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BillingLine:
    """One sale/purchase line as supplied by the billing collaborator."""

    item_id: str
    quantity: Amount
    unit_price: Amount
    total_price: Amount
    paid_amount: Amount = "0"


@dataclass(frozen=True)
class RecordInvoiceCommand:
    """
    A sale or purchase.

    Either explicit ``total_amount``/``deposited_amount`` or billing
    ``lines`` (aggregated by the handler), never both.
    """

    account_id: AccountId
    total_amount: Amount | None = None
    deposited_amount: Amount | None = None
    lines: Sequence[BillingLine] = ()
    payment_method: str | None = None
    bank_account_id: AccountId | None = None
    date: date | str | None = None
    description: str | None = None
    source_id: str | None = None

    def __post_init__(self) -> None:
        if self.lines and (
            self.total_amount is not None or self.deposited_amount is not None
        ):
            raise ValidationError(
                "give either billing lines or total_amount/deposited_amount, not both",
                field="lines",
            )
        if not self.lines and self.total_amount is None:
            raise ValidationError("total_amount is required", field="total_amount")
        _check_payment_method(self.payment_method, self.bank_account_id)


@dataclass(frozen=True)
class RecordPaymentCommand:
    account_id: AccountId
    amount: Amount
    target_serials: Sequence[str] = ()
    payment_method: str | None = None
    bank_account_id: AccountId | None = None
    date: date | str | None = None
    description: str | None = None
    source_id: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.target_serials, str):
            raise ValidationError(
                "target_serials must be a list of serials, not a single string",
                field="target_serials",
            )
        _check_payment_method(self.payment_method, self.bank_account_id)


@dataclass(frozen=True)
class RecordReturnCommand:
    account_id: AccountId
    amount: Amount
    original_serial: str | None = None
    payment_method: str | None = None
    bank_account_id: AccountId | None = None
    date: date | str | None = None
    description: str | None = None
    source_id: str | None = None

    def __post_init__(self) -> None:
        _check_payment_method(self.payment_method, self.bank_account_id)


@dataclass(frozen=True)
class CashMovementCommand:
    """Deposit into or withdrawal from a bank/cash account (None = cash in hand)."""

    amount: Amount
    account_id: AccountId | None = None
    date: date | str | None = None
    description: str | None = None
    source_id: str | None = None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ListTransactionsCommand:
    account_id: AccountId
    page: int = 1
    limit: int | None = None
    kind: str | None = None
    date_from: date | str | None = None
    date_to: date | str | None = None


@dataclass(frozen=True)
class GetTransactionCommand:
    serial: str


@dataclass(frozen=True)
class ReconcileCommand:
    account_id: AccountId
