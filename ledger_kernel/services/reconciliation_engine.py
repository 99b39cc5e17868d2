"""
BalanceReconciliationEngine -- the single writer of account balances.

Responsibility:
    Every billing event (sale, purchase, payment, return) and every bank or
    cash movement (deposit, withdrawal) goes through this engine.  For each
    event it computes the signed balance delta, appends the transaction row
    and updates the account balance and aggregate counters as one atomic
    unit.  ``reconcile`` recomputes the balance from the log and reports
    drift.

Architecture position:
    Kernel > Services -- imperative shell.  Composes AccountStore (locking)
    and TransactionLedger (append, payment allocation).  Sign rules come
    from domain/sign_convention.py.

Invariants enforced:
    - current_balance == opening_balance + sum(balance_change) after every
      operation.
    - Each operation runs inside one SAVEPOINT with the affected account
      rows locked (ascending id order).  Any failure rolls back the
      transaction row, the invoice allocations, the bank/cash mirror row
      and every balance update together.
    - A settlement account (bank or cash) named on an event is updated in
      the same unit as the ledger account.
    - Bank/cash balances never go negative unless the policy allows it.
    - Errors propagate unmodified; nothing is retried here.

Failure modes:
    - InvalidAmountError, UnsupportedAccountError, InsufficientFundsError,
      OverReturnError (ValidationError family).
    - OverpaymentError from apply_payment.
    - AccountNotFoundError, TransactionNotFoundError, TenantMismatchError.

Audit relevance:
    Every applied delta is recorded as the transaction row's
    balance_change; reconcile() proves the stored balance against it.
"""

import time
from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select
from sqlalchemy.orm import Session, aliased

from ledger_kernel.db.types import ZERO, money_from_value, round_money
from ledger_kernel.domain.allocation import AllocationEngine
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    AccountInfo,
    PostingResult,
    ReconciliationReport,
    TransactionInfo,
    TransactionMeta,
)
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.domain.serials import SerialGenerator
from ledger_kernel.domain.sign_convention import (
    invoice_balance_change,
    invoice_kind_for,
    payment_balance_change,
    return_balance_change,
    settlement_direction,
    subsidiary_balance_change,
)
from ledger_kernel.domain.values import TransactionKind
from ledger_kernel.exceptions import (
    InsufficientFundsError,
    InvalidAmountError,
    OverReturnError,
    UnsupportedAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.transaction import LedgerTransaction
from ledger_kernel.services.account_store import AccountStore, coerce_account_id
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.transaction_ledger import TransactionLedger

logger = get_logger("services.reconciliation_engine")


class BalanceReconciliationEngine(BaseService):
    """
    The only component permitted to mutate balances and counters.

    Usage:
        with session_scope() as session:
            engine = BalanceReconciliationEngine(session, clock, policy)
            result = engine.record_sale(account_id, "ACME",
                                        Decimal("1000"), Decimal("300"))
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
        serial_generator: SerialGenerator | None = None,
        allocation_engine: AllocationEngine | None = None,
    ):
        super().__init__(session, clock, policy)
        self.accounts = AccountStore(session, self.clock, self.policy)
        self.ledger = TransactionLedger(
            session,
            self.clock,
            self.policy,
            serial_generator=serial_generator,
            allocation_engine=allocation_engine,
        )

    # =========================================================================
    # Invoices
    # =========================================================================

    def record_sale(
        self,
        account_id: UUID | str,
        tenant: str,
        total_amount: Decimal,
        deposited_amount: Decimal = ZERO,
        meta: TransactionMeta | None = None,
        settlement_account_id: UUID | str | None = None,
    ) -> PostingResult:
        """
        Record a sale invoice.

        The ledger balance moves by +total_amount (gross basis) or
        +(total_amount - deposited_amount) (net basis).  sale_total and
        deposited_sale_total grow by the invoice amounts.  A settlement
        account receives the deposited amount.
        """
        return self._record_invoice(
            TransactionKind.SALE, account_id, tenant, total_amount,
            deposited_amount, meta, settlement_account_id,
        )

    def record_purchase(
        self,
        account_id: UUID | str,
        tenant: str,
        total_amount: Decimal,
        deposited_amount: Decimal = ZERO,
        meta: TransactionMeta | None = None,
        settlement_account_id: UUID | str | None = None,
    ) -> PostingResult:
        """Mirror of record_sale with the payable sign; money leaves the settlement account."""
        return self._record_invoice(
            TransactionKind.PURCHASE, account_id, tenant, total_amount,
            deposited_amount, meta, settlement_account_id,
        )

    def _record_invoice(
        self,
        kind: TransactionKind,
        account_id: UUID | str,
        tenant: str,
        total_amount: Decimal,
        deposited_amount: Decimal,
        meta: TransactionMeta | None,
        settlement_account_id: UUID | str | None,
    ) -> PostingResult:
        total = self._amount("total_amount", total_amount, allow_zero=True)
        deposited = self._amount("deposited_amount", deposited_amount, allow_zero=True)
        if deposited > total:
            raise InvalidAmountError(
                "deposited_amount", deposited, f"exceeds total_amount {total}"
            )
        meta = meta or TransactionMeta()
        t0 = time.monotonic()

        with self.session.begin_nested():
            account, settlement = self._lock(tenant, account_id, settlement_account_id)
            self._require_ledger(account, f"record a {kind.value}")

            change = invoice_balance_change(
                kind, total, deposited, self.policy.balance_basis
            )
            row = self.ledger.append_row(
                account.id, tenant, kind, total, deposited, change, meta
            )
            settlement_row = self._settle(
                settlement, kind, kind, deposited, row, meta
            )

            self._apply_delta(account, change, meta)
            if kind == TransactionKind.SALE:
                account.sale_total = account.sale_total + total
                account.deposited_sale_total = account.deposited_sale_total + deposited
            else:
                account.purchase_total = account.purchase_total + total
                account.deposited_purchase_total = (
                    account.deposited_purchase_total + deposited
                )
            self.session.flush()

        return self._posted(
            f"{kind.value}_recorded", t0, account, row,
            settlement=settlement, settlement_row=settlement_row,
        )

    # =========================================================================
    # Payments
    # =========================================================================

    def record_payment(
        self,
        account_id: UUID | str,
        tenant: str,
        amount: Decimal,
        target_serials: Sequence[str] = (),
        meta: TransactionMeta | None = None,
        settlement_account_id: UUID | str | None = None,
    ) -> PostingResult:
        """
        Record a payment and allocate it across open invoices.

        Customer accounts settle sale invoices (receivable down, balance
        -amount); supplier accounts settle purchase invoices (payable down,
        balance +amount).  The payment row has total_amount 0.

        Raises:
            InvalidAmountError: If amount <= 0.
            OverpaymentError: If the target invoices cannot absorb the whole
                amount.  Nothing is written.
        """
        amount = self._amount("amount", amount)
        meta = meta or TransactionMeta()
        t0 = time.monotonic()

        with self.session.begin_nested():
            account, settlement = self._lock(tenant, account_id, settlement_account_id)
            self._require_ledger(account, "record a payment")
            invoice_kind = invoice_kind_for(account.ledger_kind)

            change = payment_balance_change(account.ledger_kind, amount)
            row = self.ledger.append_row(
                account.id, tenant, TransactionKind.PAYMENT, ZERO, amount, change, meta
            )
            allocations = self.ledger.apply_payment(
                account.id, tenant, row, target_serials
            )

            settlement_row = self._settle(
                settlement, TransactionKind.PAYMENT, invoice_kind, amount, row, meta
            )

            self._apply_delta(account, change, meta)
            if invoice_kind == TransactionKind.SALE:
                account.deposited_sale_total = account.deposited_sale_total + amount
            else:
                account.deposited_purchase_total = (
                    account.deposited_purchase_total + amount
                )
            self.session.flush()

        return self._posted(
            "payment_recorded", t0, account, row,
            allocations=tuple(allocations),
            settlement=settlement, settlement_row=settlement_row,
        )

    # =========================================================================
    # Returns
    # =========================================================================

    def record_return(
        self,
        account_id: UUID | str,
        tenant: str,
        amount: Decimal,
        original_serial: str | None = None,
        meta: TransactionMeta | None = None,
        settlement_account_id: UUID | str | None = None,
    ) -> PostingResult:
        """
        Record a return, reversing part or all of an invoice.

        With ``original_serial`` the return reverses that invoice: the sign
        is the inverse of its kind and the cumulative returned amount may
        not exceed its total_amount.  Without it, the account's own invoice
        kind is reversed (sale for customers, purchase for suppliers).

        Raises:
            OverReturnError: If the cap would be exceeded.
        """
        amount = self._amount("amount", amount)
        meta = meta or TransactionMeta()
        t0 = time.monotonic()

        with self.session.begin_nested():
            account, settlement = self._lock(tenant, account_id, settlement_account_id)
            self._require_ledger(account, "record a return")

            original = None
            if original_serial:
                original = self.ledger.get_row_by_serial(
                    tenant, original_serial, for_update=True
                )
                if original.account_id != account.id:
                    raise ValidationError(
                        f"Invoice {original_serial} belongs to another account",
                        field="original_serial",
                    )
                if not original.is_invoice:
                    raise ValidationError(
                        f"{original_serial} is a {original.kind}; only sales and "
                        "purchases can be returned",
                        field="original_serial",
                    )
                already = self.ledger.returned_total(original.id)
                if already + amount > original.total_amount:
                    logger.warning(
                        "return_cap_rejected",
                        extra={
                            "original_serial": original_serial,
                            "original_total": str(original.total_amount),
                            "already_returned": str(already),
                            "requested": str(amount),
                        },
                    )
                    raise OverReturnError(
                        original_serial, original.total_amount, already, amount
                    )
                reversed_kind = TransactionKind(original.kind)
            else:
                reversed_kind = invoice_kind_for(account.ledger_kind)

            refunded = amount if settlement is not None else ZERO
            change = return_balance_change(
                reversed_kind, amount, refunded, self.policy.balance_basis
            )
            row = self.ledger.append_row(
                account.id, tenant, TransactionKind.RETURN, ZERO, amount, change, meta,
                original_transaction_id=original.id if original is not None else None,
            )
            settlement_row = self._settle(
                settlement, TransactionKind.RETURN, reversed_kind, amount, row, meta
            )

            self._apply_delta(account, change, meta)
            if reversed_kind == TransactionKind.SALE:
                account.sale_total = account.sale_total - amount
            else:
                account.purchase_total = account.purchase_total - amount
            self.session.flush()

        return self._posted(
            "return_recorded", t0, account, row,
            settlement=settlement, settlement_row=settlement_row,
        )

    # =========================================================================
    # Bank / cash movements
    # =========================================================================

    def record_deposit(
        self,
        account_id: UUID | str,
        tenant: str,
        amount: Decimal,
        meta: TransactionMeta | None = None,
    ) -> PostingResult:
        """Add money to a bank or cash account."""
        return self._record_movement(TransactionKind.DEPOSIT, account_id, tenant, amount, meta)

    def record_withdrawal(
        self,
        account_id: UUID | str,
        tenant: str,
        amount: Decimal,
        meta: TransactionMeta | None = None,
    ) -> PostingResult:
        """
        Take money out of a bank or cash account.

        Raises:
            InsufficientFundsError: If the balance would go negative and the
                policy does not allow it.
        """
        return self._record_movement(
            TransactionKind.WITHDRAWAL, account_id, tenant, amount, meta
        )

    def _record_movement(
        self,
        kind: TransactionKind,
        account_id: UUID | str,
        tenant: str,
        amount: Decimal,
        meta: TransactionMeta | None,
    ) -> PostingResult:
        amount = self._amount("amount", amount)
        meta = meta or TransactionMeta()
        t0 = time.monotonic()

        with self.session.begin_nested():
            account, _ = self._lock(tenant, account_id, None)
            if not account.is_subsidiary:
                raise UnsupportedAccountError(
                    str(account.id), f"record a {kind.value}", account.category
                )
            change = subsidiary_balance_change(settlement_direction(kind), amount)
            self._check_funds(account, change)
            row = self.ledger.append_row(
                account.id, tenant, kind, amount, amount, change, meta
            )
            self._apply_delta(account, change, meta)
            self.session.flush()

        return self._posted(f"{kind.value}_recorded", t0, account, row)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile(self, account_id: UUID | str, tenant: str) -> ReconciliationReport:
        """
        Recompute the balance (and, for ledger accounts, the aggregate
        counters) from the transaction log and compare with stored values.

        Read-only.  Intended for the periodic sweep and for tests, not for
        the write path.
        """
        account = self.accounts.load(tenant, account_id)
        T = LedgerTransaction

        def _sum(column, *conditions):
            if conditions:
                column = case((and_(*conditions), column), else_=0)
            return func.coalesce(func.sum(column), 0)

        is_sale = T.kind == TransactionKind.SALE.value
        is_purchase = T.kind == TransactionKind.PURCHASE.value
        is_return = T.kind == TransactionKind.RETURN.value

        # Returns count against the kind of invoice they reverse; unreferenced
        # returns reverse the account's own invoice kind.
        original = aliased(LedgerTransaction)
        own_kind = invoice_kind_for(account.ledger_kind) if account.is_ledger else None

        def _reverses(kind: TransactionKind):
            condition = original.kind == kind.value
            if own_kind == kind:
                condition = or_(condition, T.original_transaction_id.is_(None))
            return condition

        (
            balance_sum,
            count,
            sale_total,
            sale_deposited,
            purchase_total,
            purchase_deposited,
            sale_returns,
            purchase_returns,
        ) = self.session.execute(
            select(
                _sum(T.balance_change),
                func.count(T.id),
                _sum(T.total_amount, is_sale),
                _sum(T.deposited_amount, is_sale),
                _sum(T.total_amount, is_purchase),
                _sum(T.deposited_amount, is_purchase),
                _sum(T.deposited_amount, is_return, _reverses(TransactionKind.SALE)),
                _sum(T.deposited_amount, is_return, _reverses(TransactionKind.PURCHASE)),
            )
            .select_from(T)
            .outerjoin(original, T.original_transaction_id == original.id)
            .where(T.account_id == account.id)
        ).one()

        balance_sum = round_money(Decimal(balance_sum))
        counter_drift: dict[str, Decimal] = {}
        if account.is_ledger:
            expected_counters = {
                "sale_total": Decimal(sale_total) - Decimal(sale_returns),
                "deposited_sale_total": Decimal(sale_deposited),
                "purchase_total": Decimal(purchase_total) - Decimal(purchase_returns),
                "deposited_purchase_total": Decimal(purchase_deposited),
            }
            for name, expected in expected_counters.items():
                drift = getattr(account, name) - round_money(expected)
                if drift != ZERO:
                    counter_drift[name] = drift

        report = ReconciliationReport(
            account_id=account.id,
            company_code=account.company_code,
            opening_balance=account.opening_balance,
            transaction_sum=balance_sum,
            expected_balance=account.opening_balance + balance_sum,
            current_balance=account.current_balance,
            transaction_count=count,
            counter_drift=counter_drift,
        )

        if report.ok:
            logger.info(
                "reconciliation_ok",
                extra={
                    "account_id": str(account.id),
                    "balance": str(account.current_balance),
                    "transaction_count": count,
                },
            )
        else:
            logger.warning(
                "balance_drift_detected",
                extra={
                    "account_id": str(account.id),
                    "expected_balance": str(report.expected_balance),
                    "current_balance": str(report.current_balance),
                    "drift": str(report.drift),
                    "counter_drift": {k: str(v) for k, v in counter_drift.items()},
                },
            )
        return report

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _amount(field: str, value: Decimal, allow_zero: bool = False) -> Decimal:
        try:
            amount = money_from_value(value)
        except ValueError:
            raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None
        if amount < ZERO:
            raise InvalidAmountError(field, amount, "must not be negative")
        if amount == ZERO and not allow_zero:
            raise InvalidAmountError(field, amount, "must be greater than zero")
        return amount

    def _lock(
        self,
        tenant: str,
        account_id: UUID | str,
        settlement_account_id: UUID | str | None,
    ) -> tuple[Account, Account | None]:
        account_id = coerce_account_id(account_id)
        if settlement_account_id is None:
            return self.accounts.lock_for_update(tenant, account_id), None

        settlement_id = coerce_account_id(settlement_account_id)
        if settlement_id == account_id:
            raise ValidationError(
                "settlement account must differ from the ledger account",
                field="settlement_account_id",
            )
        locked = self.accounts.lock_many_for_update(tenant, [account_id, settlement_id])
        settlement = locked[settlement_id]
        if not settlement.is_subsidiary:
            raise UnsupportedAccountError(
                str(settlement.id), "settle through", settlement.category
            )
        return locked[account_id], settlement

    @staticmethod
    def _require_ledger(account: Account, operation: str) -> None:
        if not account.is_ledger:
            raise UnsupportedAccountError(str(account.id), operation, account.category)

    def _settle(
        self,
        settlement: Account | None,
        kind: TransactionKind,
        invoice_kind: TransactionKind,
        amount: Decimal,
        ledger_row: LedgerTransaction,
        meta: TransactionMeta,
    ) -> LedgerTransaction | None:
        """Mirror the money movement of a ledger event on a bank/cash account."""
        if settlement is None or amount == ZERO:
            return None
        change = subsidiary_balance_change(settlement_direction(kind, invoice_kind), amount)
        self._check_funds(settlement, change)
        row = self.ledger.append_row(
            settlement.id, settlement.company_code, kind, amount, amount, change, meta,
            linked_transaction_id=ledger_row.id,
        )
        self._apply_delta(settlement, change, meta)
        return row

    def _check_funds(self, account: Account, change: Decimal) -> None:
        if change >= ZERO or self.policy.allow_negative_subsidiary_balance:
            return
        if account.current_balance + change < ZERO:
            raise InsufficientFundsError(str(account.id), account.current_balance, -change)

    def _apply_delta(self, account: Account, change: Decimal, meta: TransactionMeta) -> None:
        account.current_balance = round_money(account.current_balance + change)
        account.updated_at = self.clock.now()
        account.updated_by = str(meta.actor_id)

    def _posted(
        self,
        event: str,
        t0: float,
        account: Account,
        row: LedgerTransaction,
        allocations: tuple = (),
        settlement: Account | None = None,
        settlement_row: LedgerTransaction | None = None,
    ) -> PostingResult:
        logger.info(
            event,
            extra={
                "account_id": str(account.id),
                "serial": row.serial,
                "balance_change": str(row.balance_change),
                "current_balance": str(account.current_balance),
                "settlement_account_id": str(settlement.id) if settlement else None,
                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
            },
        )
        return PostingResult(
            account=AccountInfo.from_model(account),
            transaction=TransactionInfo.from_model(row),
            allocations=allocations,
            settlement_account=AccountInfo.from_model(settlement) if settlement else None,
            settlement_transaction=(
                TransactionInfo.from_model(settlement_row) if settlement_row else None
            ),
        )
