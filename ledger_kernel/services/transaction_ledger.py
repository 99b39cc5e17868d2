"""
TransactionLedger -- the append-only transaction log.

Responsibility:
    Appends transaction rows with generated serials, applies payments to
    open invoices, and answers the log queries used for listing and for
    reconciliation.  Never moves account balances; that is the
    reconciliation engine's job.

Architecture position:
    Kernel > Services -- imperative shell.  Uses the pure AllocationEngine
    for the greedy invoice walk.

Invariants enforced:
    - remaining_amount = total_amount - deposited_amount on every row.
    - Serials are unique.  A collision is retried inside a SAVEPOINT up to
      ``policy.serial_max_attempts`` times, then SerialCollisionError.
    - apply_payment allocates exactly the payment amount or fails with
      OverpaymentError, rolling back every tentative invoice update.
    - No invoice's remaining_amount is driven below zero.

Failure modes:
    - InvalidAmountError on negative amounts or deposited > total.
    - OverpaymentError, TransactionNotFoundError, TenantMismatchError.
"""

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.allocation import (
    AllocationEngine,
    AllocationMethod,
    AllocationTarget,
)
from ledger_kernel.domain.clock import Clock
from ledger_kernel.domain.dtos import (
    AppliedAllocation,
    TransactionFilter,
    TransactionInfo,
    TransactionMeta,
)
from ledger_kernel.domain.policy import LedgerPolicy
from ledger_kernel.domain.serials import RandomSerialGenerator, SerialGenerator
from ledger_kernel.domain.sign_convention import invoice_kind_for
from ledger_kernel.domain.values import INVOICE_KINDS, TransactionKind
from ledger_kernel.exceptions import (
    InvalidAmountError,
    OverpaymentError,
    SerialCollisionError,
    TenantMismatchError,
    TransactionNotFoundError,
    UnsupportedAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.payment_allocation import PaymentAllocation
from ledger_kernel.models.transaction import LedgerTransaction
from ledger_kernel.services.account_store import AccountStore, require_tenant
from ledger_kernel.services.base import BaseService

logger = get_logger("services.transaction_ledger")


class TransactionLedger(BaseService):
    """
    Service over the transaction log.

    Usage:
        ledger = TransactionLedger(session, clock)
        row = ledger.append_row(account_id, tenant, TransactionKind.SALE,
                                Decimal("100"), Decimal("0"), Decimal("100"))
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
        self._serials = serial_generator or RandomSerialGenerator(
            self.policy.serial_suffix_length
        )
        self._allocation = allocation_engine or AllocationEngine()
        self._accounts = AccountStore(session, self.clock, self.policy)

    # =========================================================================
    # Append
    # =========================================================================

    def append(
        self,
        account_id: UUID | str,
        tenant: str,
        kind: TransactionKind | str,
        total_amount: Decimal,
        deposited_amount: Decimal,
        balance_change: Decimal,
        meta: TransactionMeta | None = None,
    ) -> TransactionInfo:
        """DTO-returning form of ``append_row``."""
        return TransactionInfo.from_model(
            self.append_row(
                account_id, tenant, kind, total_amount, deposited_amount,
                balance_change, meta,
            )
        )

    def append_row(
        self,
        account_id: UUID | str,
        tenant: str,
        kind: TransactionKind | str,
        total_amount: Decimal,
        deposited_amount: Decimal,
        balance_change: Decimal,
        meta: TransactionMeta | None = None,
        original_transaction_id: int | None = None,
        linked_transaction_id: int | None = None,
    ) -> LedgerTransaction:
        """
        Append one row to the log.

        Preconditions:
            - total_amount >= 0 and deposited_amount >= 0.
            - For invoices, deposited_amount <= total_amount.
        Postconditions:
            - Row is flushed with a unique serial and created_at from the clock.

        Raises:
            InvalidAmountError: On sign/ordering violations.
            SerialCollisionError: If every serial attempt collided.
        """
        meta = meta or TransactionMeta()
        kind = TransactionKind(kind)
        account = self._accounts.load(tenant, account_id)
        total = round_money(Decimal(total_amount))
        deposited = round_money(Decimal(deposited_amount))
        change = round_money(Decimal(balance_change))

        if total < ZERO:
            raise InvalidAmountError("total_amount", total, "must be >= 0")
        if deposited < ZERO:
            raise InvalidAmountError("deposited_amount", deposited, "must be >= 0")
        if kind in INVOICE_KINDS and deposited > total:
            raise InvalidAmountError(
                "deposited_amount", deposited, f"exceeds total_amount {total}"
            )

        now = self.clock.now()
        for attempt in range(1, self.policy.serial_max_attempts + 1):
            serial = self._serials(kind, now)
            row = LedgerTransaction(
                serial=serial,
                account_id=account.id,
                company_code=account.company_code,
                kind=kind.value,
                total_amount=total,
                deposited_amount=deposited,
                remaining_amount=total - deposited,
                balance_change=change,
                source_id=meta.source_id,
                original_transaction_id=original_transaction_id,
                linked_transaction_id=linked_transaction_id,
                description=meta.description,
                date=meta.date or self.clock.today(),
                created_at=now,
                created_by=str(meta.actor_id),
            )
            savepoint = self.session.begin_nested()
            try:
                self.session.add(row)
                self.session.flush()
                savepoint.commit()
            except IntegrityError:
                savepoint.rollback()
                if not self._serial_exists(serial):
                    raise
                logger.warning(
                    "serial_collision_retry",
                    extra={"serial": serial, "attempt": attempt, "kind": kind.value},
                )
                continue

            logger.debug(
                "transaction_appended",
                extra={
                    "serial": serial,
                    "kind": kind.value,
                    "account_id": str(account.id),
                    "balance_change": str(change),
                },
            )
            return row

        logger.error(
            "serial_collision_exhausted",
            extra={"kind": kind.value, "attempts": self.policy.serial_max_attempts},
        )
        raise SerialCollisionError(kind.value, self.policy.serial_max_attempts)

    # =========================================================================
    # Payment application
    # =========================================================================

    def apply_payment(
        self,
        account_id: UUID | str,
        tenant: str,
        payment: LedgerTransaction,
        target_serials: Sequence[str] = (),
    ) -> list[AppliedAllocation]:
        """
        Allocate a payment row across open invoices of its account.

        With ``target_serials`` the invoices are walked in the given order;
        otherwise every open invoice of the account's invoice kind is walked
        oldest date first.  Each receives ``min(open, still_to_allocate)``,
        where open is remaining_amount less what has been returned against
        the invoice.

        Postconditions:
            - sum(amount_applied) == payment.deposited_amount.
            - One PaymentAllocation row per touched invoice.

        Raises:
            OverpaymentError: If funds remain after the target set is
                exhausted.  Nothing allocated in this call is kept.
            TransactionNotFoundError / TenantMismatchError /
            ValidationError: On a bad explicit target.
        """
        account = self._accounts.load(tenant, account_id)
        if not account.is_ledger:
            raise UnsupportedAccountError(str(account.id), "apply a payment", account.category)
        if TransactionKind(payment.kind) != TransactionKind.PAYMENT:
            raise ValidationError(
                f"{payment.serial} is a {payment.kind}, not a payment", field="payment"
            )
        if payment.account_id != account.id:
            raise ValidationError(
                f"Payment {payment.serial} belongs to another account", field="payment"
            )

        invoice_kind = invoice_kind_for(account.ledger_kind)
        amount = payment.deposited_amount

        with self.session.begin_nested():
            if target_serials:
                invoices = self._lock_explicit_invoices(
                    account.id, account.company_code, invoice_kind, target_serials
                )
                method = AllocationMethod.SPECIFIC
            else:
                invoices = self._lock_open_invoices(account.id, invoice_kind)
                method = AllocationMethod.FIFO

            returned = self._returned_totals([inv.id for inv in invoices])
            result = self._allocation.allocate(
                amount,
                [
                    AllocationTarget(
                        target_id=inv.id,
                        open_amount=max(inv.remaining_amount - returned.get(inv.id, ZERO), ZERO),
                        serial=inv.serial,
                        date=inv.date,
                        created_at=inv.created_at,
                    )
                    for inv in invoices
                ],
                method,
            )

            if not result.is_fully_allocated:
                logger.warning(
                    "payment_overpayment_rejected",
                    extra={
                        "account_id": str(account.id),
                        "amount": str(amount),
                        "allocatable": str(result.total_allocated),
                        "unallocated": str(result.unallocated),
                    },
                )
                raise OverpaymentError(
                    str(account.id), amount, result.total_allocated, result.unallocated
                )

            by_id = {inv.id: inv for inv in invoices}
            now = self.clock.now()
            applied: list[AppliedAllocation] = []
            for line in result.lines:
                invoice = by_id[line.target_id]
                invoice.deposited_amount = invoice.deposited_amount + line.allocated
                invoice.remaining_amount = invoice.remaining_amount - line.allocated
                self.session.add(
                    PaymentAllocation(
                        company_code=account.company_code,
                        payment_transaction_id=payment.id,
                        invoice_transaction_id=invoice.id,
                        amount_applied=line.allocated,
                        created_at=now,
                    )
                )
                applied.append(
                    AppliedAllocation(
                        invoice_id=invoice.id,
                        invoice_serial=invoice.serial,
                        amount_applied=line.allocated,
                        remaining_after=invoice.remaining_amount,
                    )
                )
            self.session.flush()

        logger.info(
            "payment_allocated",
            extra={
                "payment_serial": payment.serial,
                "amount": str(amount),
                "method": result.method.value,
                "invoice_count": len(applied),
            },
        )
        return applied

    def _lock_explicit_invoices(
        self,
        account_id: UUID,
        tenant: str,
        invoice_kind: TransactionKind,
        serials: Sequence[str],
    ) -> list[LedgerTransaction]:
        if len(set(serials)) != len(serials):
            raise ValidationError("target invoice serials must be distinct", field="target_serials")
        invoices = []
        for serial in serials:
            row = self.session.execute(
                select(LedgerTransaction)
                .where(LedgerTransaction.serial == serial)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if row is None:
                raise TransactionNotFoundError(serial)
            if row.company_code != tenant:
                raise TenantMismatchError("Transaction", serial, tenant)
            if row.account_id != account_id:
                raise ValidationError(
                    f"Invoice {serial} belongs to another account", field="target_serials"
                )
            if TransactionKind(row.kind) != invoice_kind:
                raise ValidationError(
                    f"{serial} is a {row.kind}; payments on this account settle "
                    f"{invoice_kind.value} invoices",
                    field="target_serials",
                )
            invoices.append(row)
        return invoices

    def _lock_open_invoices(
        self, account_id: UUID, invoice_kind: TransactionKind
    ) -> list[LedgerTransaction]:
        return list(
            self.session.scalars(
                select(LedgerTransaction)
                .where(
                    LedgerTransaction.account_id == account_id,
                    LedgerTransaction.kind == invoice_kind.value,
                    LedgerTransaction.remaining_amount > 0,
                )
                .order_by(
                    LedgerTransaction.date.asc(),
                    LedgerTransaction.created_at.asc(),
                    LedgerTransaction.id.asc(),
                )
                .with_for_update()
                .execution_options(populate_existing=True)
            )
        )

    # =========================================================================
    # Queries
    # =========================================================================

    def list_by_account(
        self,
        account_id: UUID | str,
        tenant: str,
        page: int = 1,
        limit: int | None = None,
        transaction_filter: TransactionFilter | None = None,
    ) -> list[TransactionInfo]:
        """
        Transactions of one account, date desc then created_at desc.

        ``transaction_filter`` narrows by kind and by an inclusive range of
        business dates.
        """
        account = self._accounts.load(tenant, account_id)
        limit, offset = self._page_bounds(page, limit)
        rows = self.session.scalars(
            _filtered(select(LedgerTransaction), account.id, transaction_filter)
            .order_by(
                LedgerTransaction.date.desc(),
                LedgerTransaction.created_at.desc(),
                LedgerTransaction.id.desc(),
            )
            .limit(limit)
            .offset(offset)
        )
        return [TransactionInfo.from_model(r) for r in rows]

    def count_by_account(
        self,
        account_id: UUID | str,
        tenant: str,
        transaction_filter: TransactionFilter | None = None,
    ) -> int:
        account = self._accounts.load(tenant, account_id)
        return self.session.execute(
            _filtered(
                select(func.count(LedgerTransaction.id)), account.id, transaction_filter
            )
        ).scalar_one()

    def get_by_serial(self, tenant: str, serial: str) -> TransactionInfo:
        return TransactionInfo.from_model(self.get_row_by_serial(tenant, serial))

    def get_row_by_serial(
        self, tenant: str, serial: str, for_update: bool = False
    ) -> LedgerTransaction:
        """
        Raises:
            TransactionNotFoundError: Unknown serial.
            TenantMismatchError: Serial belongs to another tenant.
        """
        tenant = require_tenant(tenant)
        stmt = select(LedgerTransaction).where(LedgerTransaction.serial == serial)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        row = self.session.execute(stmt).scalar_one_or_none()
        if row is None:
            raise TransactionNotFoundError(serial)
        if row.company_code != tenant:
            raise TenantMismatchError("Transaction", serial, tenant)
        return row

    def sum_balance_change(self, account_id: UUID | str, tenant: str) -> Decimal:
        """Signed sum of balance_change over the account's log."""
        account = self._accounts.load(tenant, account_id)
        total = self.session.execute(
            select(func.coalesce(func.sum(LedgerTransaction.balance_change), 0)).where(
                LedgerTransaction.account_id == account.id
            )
        ).scalar_one()
        return round_money(Decimal(total))

    def _returned_totals(self, invoice_ids: Sequence[int]) -> dict[int, Decimal]:
        if not invoice_ids:
            return {}
        rows = self.session.execute(
            select(
                LedgerTransaction.original_transaction_id,
                func.sum(LedgerTransaction.deposited_amount),
            )
            .where(
                LedgerTransaction.original_transaction_id.in_(invoice_ids),
                LedgerTransaction.kind == TransactionKind.RETURN.value,
            )
            .group_by(LedgerTransaction.original_transaction_id)
        )
        return {invoice_id: round_money(Decimal(total)) for invoice_id, total in rows}

    def returned_total(self, original_transaction_id: int) -> Decimal:
        """Cumulative amount already returned against one invoice."""
        total = self.session.execute(
            select(func.coalesce(func.sum(LedgerTransaction.deposited_amount), 0)).where(
                LedgerTransaction.original_transaction_id == original_transaction_id,
                LedgerTransaction.kind == TransactionKind.RETURN.value,
            )
        ).scalar_one()
        return round_money(Decimal(total))

    def _serial_exists(self, serial: str) -> bool:
        return (
            self.session.execute(
                select(func.count(LedgerTransaction.id)).where(
                    LedgerTransaction.serial == serial
                )
            ).scalar_one()
            > 0
        )


def _filtered(stmt, account_id: UUID, transaction_filter: TransactionFilter | None):
    stmt = stmt.where(LedgerTransaction.account_id == account_id)
    if transaction_filter is None:
        return stmt
    if transaction_filter.kind is not None:
        stmt = stmt.where(
            LedgerTransaction.kind == TransactionKind(transaction_filter.kind).value
        )
    if transaction_filter.date_from is not None:
        stmt = stmt.where(LedgerTransaction.date >= transaction_filter.date_from)
    if transaction_filter.date_to is not None:
        stmt = stmt.where(LedgerTransaction.date <= transaction_filter.date_to)
    return stmt
