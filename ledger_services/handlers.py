"""
ledger_services.handlers -- request handlers over the kernel services.

Responsibility:
    One method per operation.  Each method normalizes its command (numeric
    coercion, payment-method resolution, billing-line aggregation), runs
    the kernel call in a single unit of work and returns a ``Response``.

    Kernel errors are mapped to a transport status and an error body
    ``{kind, code, message}``.  Handlers never retry, never recover and
    never write balances themselves.

Status mapping:
    ValidationError (incl. OverReturnError)   400
    ForbiddenError                            403
    NotFoundError                             404
    ConflictError, ImmutabilityViolationError 409
    OverpaymentError                          422
    ServiceNotReadyError                      503
"""

from __future__ import annotations

import math
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from ledger_kernel.db.engine import session_scope
from ledger_kernel.db.types import ZERO, money_from_value
from ledger_kernel.domain.dtos import AccountFilter, TransactionFilter, TransactionMeta
from ledger_kernel.domain.values import AccountCategory, LedgerKind, TransactionKind
from ledger_kernel.exceptions import (
    ConflictError,
    ForbiddenError,
    ImmutabilityViolationError,
    LedgerKernelError,
    NotFoundError,
    OverpaymentError,
    OverReturnError,
    ServiceNotReadyError,
    UnsupportedAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.application import LedgerApplication
from ledger_services.commands import (
    BillingLine,
    CashMovementCommand,
    CreateAccountCommand,
    DeleteAccountCommand,
    GetAccountCommand,
    GetTransactionCommand,
    ListAccountsCommand,
    ListTransactionsCommand,
    ReconcileCommand,
    RecordInvoiceCommand,
    RecordPaymentCommand,
    RecordReturnCommand,
    UpdateAccountCommand,
)
from ledger_services.context import RequestContext

logger = get_logger("services.handlers")

# Most specific first.
_ERROR_TABLE: tuple[tuple[type[LedgerKernelError], int, str], ...] = (
    (OverReturnError, 400, "OverReturnError"),
    (ValidationError, 400, "ValidationError"),
    (ForbiddenError, 403, "ForbiddenError"),
    (NotFoundError, 404, "NotFound"),
    (ConflictError, 409, "ConflictError"),
    (ImmutabilityViolationError, 409, "ConflictError"),
    (OverpaymentError, 422, "OverpaymentError"),
    (ServiceNotReadyError, 503, "ServiceNotReady"),
)


def classify_error(exc: LedgerKernelError) -> tuple[int, str]:
    """Return (status, kind) for a kernel error."""
    for error_type, status, kind in _ERROR_TABLE:
        if isinstance(exc, error_type):
            return status, kind
    return 500, "InternalError"


@dataclass(frozen=True)
class Response:
    ok: bool
    status: int
    data: Any = None
    error: dict[str, str] | None = None


@dataclass(frozen=True)
class Page:
    items: list[Any]
    total: int
    page: int
    limit: int
    total_pages: int

    @classmethod
    def build(cls, items: list[Any], total: int, page: int, limit: int) -> Page:
        return cls(
            items=items,
            total=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit) if total else 0,
        )


# ---------------------------------------------------------------------------
# Input normalization
# ---------------------------------------------------------------------------


def _money(field: str, value: Any) -> Decimal:
    try:
        return money_from_value(value)
    except ValueError:
        raise ValidationError(f"{field} must be a number, got {value!r}", field=field) from None


def _date(value: date | str | None, field: str = "date") -> date | None:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be YYYY-MM-DD, got {value!r}", field=field) from None


def aggregate_lines(lines: Sequence[BillingLine]) -> tuple[Decimal, Decimal]:
    """Sum billing lines into (total_amount, deposited_amount)."""
    total = ZERO
    paid = ZERO
    for index, line in enumerate(lines):
        line_total = _money(f"lines[{index}].total_price", line.total_price)
        line_paid = _money(f"lines[{index}].paid_amount", line.paid_amount)
        if line_total < ZERO or line_paid < ZERO:
            raise ValidationError(
                f"line {line.item_id}: amounts must not be negative",
                field=f"lines[{index}]",
            )
        if line_paid > line_total:
            raise ValidationError(
                f"line {line.item_id}: paid_amount exceeds total_price",
                field=f"lines[{index}].paid_amount",
            )
        total += line_total
        paid += line_paid
    return total, paid


class LedgerHandlers:
    """
    Entry points for the transport layer.

    Usage:
        handlers = LedgerHandlers(app)
        ctx = RequestContext(tenant="ACME", actor_id="u-1")
        response = handlers.record_sale(ctx, RecordInvoiceCommand(
            account_id=customer_id, total_amount="1000", deposited_amount="300"))
    """

    def __init__(self, app: LedgerApplication):
        self._app = app

    # -- accounts ------------------------------------------------------------

    def create_account(self, ctx: RequestContext, cmd: CreateAccountCommand) -> Response:
        def run(session: Session):
            return self._app.account_store(session).create_account(
                ctx.tenant,
                cmd.category,
                cmd.name,
                opening_balance=_money("opening_balance", cmd.opening_balance),
                ledger_kind=cmd.ledger_kind,
                actor_id=ctx.actor_id,
                **dict(cmd.metadata),
            )

        return self._dispatch("create_account", ctx, run, status=201)

    def get_account(self, ctx: RequestContext, cmd: GetAccountCommand) -> Response:
        return self._dispatch(
            "get_account",
            ctx,
            lambda s: self._app.account_store(s).get_account(ctx.tenant, cmd.account_id),
            account_id=cmd.account_id,
        )

    def list_accounts(self, ctx: RequestContext, cmd: ListAccountsCommand) -> Response:
        def run(session: Session):
            store = self._app.account_store(session)
            account_filter = AccountFilter(
                category=_enum(AccountCategory, "category", cmd.category),
                ledger_kind=_enum(LedgerKind, "ledger_kind", cmd.ledger_kind),
                search=cmd.search,
            )
            limit = self._limit(cmd.limit)
            items = store.list_accounts(ctx.tenant, account_filter, cmd.page, limit)
            total = store.count_accounts(ctx.tenant, account_filter)
            return Page.build(items, total, cmd.page, limit)

        return self._dispatch("list_accounts", ctx, run)

    def update_account(self, ctx: RequestContext, cmd: UpdateAccountCommand) -> Response:
        return self._dispatch(
            "update_account",
            ctx,
            lambda s: self._app.account_store(s).update_account_metadata(
                ctx.tenant, cmd.account_id, dict(cmd.fields), actor_id=ctx.actor_id
            ),
            account_id=cmd.account_id,
        )

    def delete_account(self, ctx: RequestContext, cmd: DeleteAccountCommand) -> Response:
        return self._dispatch(
            "delete_account",
            ctx,
            lambda s: self._app.account_store(s).delete_account(ctx.tenant, cmd.account_id),
            account_id=cmd.account_id,
        )

    def cash_in_hand(self, ctx: RequestContext) -> Response:
        return self._dispatch(
            "cash_in_hand",
            ctx,
            lambda s: self._app.account_store(s).get_or_create_cash_in_hand(
                ctx.tenant, actor_id=ctx.actor_id
            ),
        )

    # -- billing events ------------------------------------------------------

    def record_sale(self, ctx: RequestContext, cmd: RecordInvoiceCommand) -> Response:
        return self._record_invoice("record_sale", ctx, cmd)

    def record_purchase(self, ctx: RequestContext, cmd: RecordInvoiceCommand) -> Response:
        return self._record_invoice("record_purchase", ctx, cmd)

    def _record_invoice(
        self, operation: str, ctx: RequestContext, cmd: RecordInvoiceCommand
    ) -> Response:
        def run(session: Session):
            if cmd.lines:
                total, deposited = aggregate_lines(cmd.lines)
            else:
                total = _money("total_amount", cmd.total_amount)
                deposited = _money("deposited_amount", cmd.deposited_amount or ZERO)
            settlement = self._settlement_account(
                session, ctx, cmd.payment_method, cmd.bank_account_id
            )
            engine = self._app.engine(session)
            record = engine.record_sale if operation == "record_sale" else engine.record_purchase
            return record(
                cmd.account_id,
                ctx.tenant,
                total,
                deposited,
                meta=self._meta(ctx, cmd),
                settlement_account_id=settlement,
            )

        return self._dispatch(operation, ctx, run, status=201, account_id=cmd.account_id)

    def record_payment(self, ctx: RequestContext, cmd: RecordPaymentCommand) -> Response:
        def run(session: Session):
            amount = _money("amount", cmd.amount)
            settlement = self._settlement_account(
                session, ctx, cmd.payment_method, cmd.bank_account_id
            )
            return self._app.engine(session).record_payment(
                cmd.account_id,
                ctx.tenant,
                amount,
                target_serials=tuple(cmd.target_serials),
                meta=self._meta(ctx, cmd),
                settlement_account_id=settlement,
            )

        return self._dispatch(
            "record_payment", ctx, run, status=201, account_id=cmd.account_id
        )

    def record_return(self, ctx: RequestContext, cmd: RecordReturnCommand) -> Response:
        def run(session: Session):
            amount = _money("amount", cmd.amount)
            settlement = self._settlement_account(
                session, ctx, cmd.payment_method, cmd.bank_account_id
            )
            return self._app.engine(session).record_return(
                cmd.account_id,
                ctx.tenant,
                amount,
                original_serial=cmd.original_serial,
                meta=self._meta(ctx, cmd),
                settlement_account_id=settlement,
            )

        return self._dispatch(
            "record_return",
            ctx,
            run,
            status=201,
            account_id=cmd.account_id,
            serial=cmd.original_serial,
        )

    def record_deposit(self, ctx: RequestContext, cmd: CashMovementCommand) -> Response:
        return self._cash_movement("record_deposit", ctx, cmd)

    def record_withdrawal(self, ctx: RequestContext, cmd: CashMovementCommand) -> Response:
        return self._cash_movement("record_withdrawal", ctx, cmd)

    def _cash_movement(
        self, operation: str, ctx: RequestContext, cmd: CashMovementCommand
    ) -> Response:
        def run(session: Session):
            amount = _money("amount", cmd.amount)
            account_id = cmd.account_id
            if account_id is None:
                account_id = (
                    self._app.account_store(session)
                    .get_or_create_cash_in_hand(ctx.tenant, actor_id=ctx.actor_id)
                    .id
                )
            engine = self._app.engine(session)
            record = (
                engine.record_deposit
                if operation == "record_deposit"
                else engine.record_withdrawal
            )
            return record(account_id, ctx.tenant, amount, meta=self._meta(ctx, cmd))

        return self._dispatch(operation, ctx, run, status=201, account_id=cmd.account_id)

    # -- queries -------------------------------------------------------------

    def list_transactions(
        self, ctx: RequestContext, cmd: ListTransactionsCommand
    ) -> Response:
        def run(session: Session):
            ledger = self._app.transaction_ledger(session)
            limit = self._limit(cmd.limit)
            transaction_filter = TransactionFilter(
                kind=_enum(TransactionKind, "kind", cmd.kind),
                date_from=_date(cmd.date_from, "date_from"),
                date_to=_date(cmd.date_to, "date_to"),
            )
            items = ledger.list_by_account(
                cmd.account_id, ctx.tenant, cmd.page, limit, transaction_filter
            )
            total = ledger.count_by_account(cmd.account_id, ctx.tenant, transaction_filter)
            return Page.build(items, total, cmd.page, limit)

        return self._dispatch("list_transactions", ctx, run, account_id=cmd.account_id)

    def get_transaction(self, ctx: RequestContext, cmd: GetTransactionCommand) -> Response:
        return self._dispatch(
            "get_transaction",
            ctx,
            lambda s: self._app.transaction_ledger(s).get_by_serial(ctx.tenant, cmd.serial),
            serial=cmd.serial,
        )

    def reconcile(self, ctx: RequestContext, cmd: ReconcileCommand) -> Response:
        return self._dispatch(
            "reconcile",
            ctx,
            lambda s: self._app.engine(s).reconcile(cmd.account_id, ctx.tenant),
            account_id=cmd.account_id,
        )

    def ledger_summary(self, ctx: RequestContext) -> Response:
        return self._dispatch(
            "ledger_summary",
            ctx,
            lambda s: self._app.account_selector(s).ledger_summary(ctx.tenant),
        )

    def funds_summary(self, ctx: RequestContext) -> Response:
        return self._dispatch(
            "funds_summary",
            ctx,
            lambda s: self._app.account_selector(s).funds_summary(ctx.tenant),
        )

    # -- plumbing ------------------------------------------------------------

    def _settlement_account(
        self,
        session: Session,
        ctx: RequestContext,
        payment_method: str | None,
        bank_account_id: Any,
    ) -> Any:
        """Resolve the bank/cash account an event settles through, if any."""
        store = self._app.account_store(session)
        if payment_method == "cash":
            return store.get_or_create_cash_in_hand(ctx.tenant, actor_id=ctx.actor_id).id
        if bank_account_id is None:
            return None
        account = store.get_account(ctx.tenant, bank_account_id)
        if account.category != AccountCategory.BANK:
            raise UnsupportedAccountError(
                str(account.id), "settle a bank payment through", account.category.value
            )
        return account.id

    def _limit(self, limit: int | None) -> int:
        # None means the default page size; 0 is left for paging to reject.
        return self._app.policy.default_page_limit if limit is None else limit

    @staticmethod
    def _meta(ctx: RequestContext, cmd: Any) -> TransactionMeta:
        return TransactionMeta(
            actor_id=ctx.actor_id,
            date=_date(cmd.date),
            description=cmd.description,
            source_id=cmd.source_id,
        )

    def _dispatch(
        self,
        operation: str,
        ctx: RequestContext,
        fn: Callable[[Session], Any],
        status: int = 200,
        account_id: Any = None,
        serial: str | None = None,
    ) -> Response:
        t0 = time.monotonic()
        with LogContext.bind(
            correlation_id=ctx.correlation_id,
            tenant=ctx.tenant,
            actor_id=ctx.actor_id,
            account_id=account_id,
            serial=serial,
        ):
            try:
                self._app.require_ready()
                with session_scope() as session:
                    data = fn(session)
            except LedgerKernelError as exc:
                error_status, kind = classify_error(exc)
                logger.warning(
                    "request_failed",
                    extra={
                        "operation": operation,
                        "status": error_status,
                        "error_code": exc.code,
                        "error_kind": kind,
                        "actor_role": ctx.actor_role,
                    },
                )
                return Response(
                    ok=False,
                    status=error_status,
                    error={"kind": kind, "code": exc.code, "message": str(exc)},
                )

            logger.info(
                "request_completed",
                extra={
                    "operation": operation,
                    "status": status,
                    "actor_role": ctx.actor_role,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return Response(ok=True, status=status, data=data)


def _enum(enum_type, field: str, value: Any):
    if value is None:
        return None
    try:
        return enum_type(value)
    except ValueError:
        raise ValidationError(f"Unknown {field}: {value!r}", field=field) from None
