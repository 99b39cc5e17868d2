"""
Sign convention -- how each billing event moves a balance.

Responsibility:
    The single table that maps (event kind, counterparty kind) to the signed
    ``balance_change`` applied to a ledger account, and the direction of the
    matching bank/cash movement.  Positive ledger balances are receivables,
    negative balances are payables.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

    ledger (customer)           ledger (supplier)
    ------------------------    ------------------------
    sale            +           purchase            -
    return of sale  -           return of purchase  +
    payment in      -           payment out         +

    bank / cash: money in +, money out -

Failure modes:
    - ValueError for combinations that have no defined effect.
"""

from decimal import Decimal

from ledger_kernel.domain.policy import BalanceBasis
from ledger_kernel.domain.values import FlowDirection, LedgerKind, TransactionKind


def invoice_balance_change(
    kind: TransactionKind,
    total_amount: Decimal,
    deposited_amount: Decimal,
    basis: BalanceBasis = BalanceBasis.GROSS,
) -> Decimal:
    """Signed ledger delta for a sale or purchase invoice."""
    kind = TransactionKind(kind)
    magnitude = total_amount
    if BalanceBasis(basis) == BalanceBasis.NET:
        magnitude = total_amount - deposited_amount
    if kind == TransactionKind.SALE:
        return magnitude
    if kind == TransactionKind.PURCHASE:
        return -magnitude
    raise ValueError(f"Not an invoice kind: {kind}")


def invoice_kind_for(ledger_kind: LedgerKind) -> TransactionKind:
    """Invoice kind a payment or unreferenced return settles on this ledger."""
    if LedgerKind(ledger_kind) == LedgerKind.CUSTOMER:
        return TransactionKind.SALE
    return TransactionKind.PURCHASE


def payment_balance_change(ledger_kind: LedgerKind, amount: Decimal) -> Decimal:
    """Payment received reduces a receivable; payment made reduces a payable."""
    if LedgerKind(ledger_kind) == LedgerKind.CUSTOMER:
        return -amount
    return amount


def return_balance_change(
    original_kind: TransactionKind,
    amount: Decimal,
    refunded_amount: Decimal = Decimal("0"),
    basis: BalanceBasis = BalanceBasis.GROSS,
) -> Decimal:
    """
    A return carries the inverse sign of the invoice it reverses.

    On the net basis the money refunded through a bank or cash account was
    never part of the ledger balance, so only the unrefunded part moves it.
    """
    original_kind = TransactionKind(original_kind)
    magnitude = amount
    if BalanceBasis(basis) == BalanceBasis.NET:
        magnitude = amount - refunded_amount
    if original_kind == TransactionKind.SALE:
        return -magnitude
    if original_kind == TransactionKind.PURCHASE:
        return magnitude
    raise ValueError(f"Returns only reverse invoices, not {original_kind}")


def settlement_direction(
    kind: TransactionKind,
    invoice_kind: TransactionKind | None = None,
) -> FlowDirection:
    """
    Direction of the bank/cash movement that settles a ledger event.

    ``invoice_kind`` is the invoice kind a payment settles or a return
    reverses; it is ignored for other kinds.
    """
    kind = TransactionKind(kind)
    if kind in (TransactionKind.SALE, TransactionKind.DEPOSIT):
        return FlowDirection.IN
    if kind in (TransactionKind.PURCHASE, TransactionKind.WITHDRAWAL):
        return FlowDirection.OUT
    if invoice_kind is None:
        raise ValueError(f"{kind} settlement needs the invoice kind")
    inbound = TransactionKind(invoice_kind) == TransactionKind.SALE
    if kind == TransactionKind.RETURN:
        inbound = not inbound
    return FlowDirection.IN if inbound else FlowDirection.OUT


def subsidiary_balance_change(direction: FlowDirection, amount: Decimal) -> Decimal:
    return amount if FlowDirection(direction) == FlowDirection.IN else -amount
