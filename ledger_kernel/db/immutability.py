"""
ORM listeners that keep the transaction log append-only.

Account balances are reconciled against the log, so logged rows must not
change underneath them.  The checks run during flush, before any SQL is
sent, and raise ImmutabilityViolationError:

    session.flush()
         |
         +-- before_flush   account deletion with history -> AccountReferencedError
         +-- before_update  protected field changed       -> ImmutabilityViolationError
         +-- before_delete  log row deleted                -> ImmutabilityViolationError

Rules:

Entity              | Rule
--------------------|----------------------------------------------------------
LedgerTransaction   | Never deleted.  Only deposited_amount/remaining_amount
                    | may change, and only on sale/purchase rows (payment
                    | bookkeeping).
PaymentAllocation   | Never updated or deleted.
Account             | opening_balance, company_code, category, ledger_kind
                    | never change.  Cannot be deleted while transactions
                    | reference it.

``LedgerApplication.start()`` registers the listeners once.  Bulk
``update()``/``delete()`` statements do not pass through mapper events and
are not covered.
"""

from sqlalchemy import event, func, inspect, select
from sqlalchemy.orm import Session

from ledger_kernel.exceptions import (
    AccountReferencedError,
    ImmutabilityViolationError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

TRANSACTION_MUTABLE_FIELDS = frozenset({"deposited_amount", "remaining_amount"})

ACCOUNT_IMMUTABLE_FIELDS = frozenset(
    {"opening_balance", "company_code", "category", "ledger_kind"}
)


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field=None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _changed_fields(target) -> list[str]:
    return [attr.key for attr in inspect(target).attrs if attr.history.has_changes()]


def _check_account_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete an account that transactions still reference.

    Runs in SessionEvents.before_flush, before the flush plan is fixed.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.transaction import LedgerTransaction

    for obj in list(session.deleted):
        if not isinstance(obj, Account):
            continue

        with session.no_autoflush:
            referenced = session.execute(
                select(func.count(LedgerTransaction.id)).where(
                    LedgerTransaction.account_id == obj.id
                )
            ).scalar_one()

        if referenced:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "Account",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "account_has_transactions",
                },
            )
            raise AccountReferencedError(account_id=str(obj.id))


def _check_transaction_immutability(mapper, connection, target):
    """Only payment bookkeeping on invoice rows may change."""
    for key in _changed_fields(target):
        if key in TRANSACTION_MUTABLE_FIELDS and target.is_invoice:
            continue
        raise _blocked(
            "LedgerTransaction",
            target.serial,
            "UPDATE",
            f"Cannot modify field '{key}' on a logged {target.kind} transaction",
            field=key,
        )


def _check_transaction_delete(mapper, connection, target):
    raise _blocked(
        "LedgerTransaction",
        target.serial,
        "DELETE",
        "Logged transactions cannot be deleted",
    )


def _check_allocation_immutability(mapper, connection, target):
    raise _blocked(
        "PaymentAllocation",
        target.id,
        "UPDATE",
        "Payment allocations are immutable",
    )


def _check_allocation_delete(mapper, connection, target):
    raise _blocked(
        "PaymentAllocation",
        target.id,
        "DELETE",
        "Payment allocations cannot be deleted",
    )


def _check_account_structural_immutability(mapper, connection, target):
    for key in _changed_fields(target):
        if key in ACCOUNT_IMMUTABLE_FIELDS:
            raise _blocked(
                "Account",
                target.id,
                "UPDATE",
                f"Cannot modify structural field '{key}' after creation",
                field=key,
            )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Safe to call more than once.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.payment_allocation import PaymentAllocation
    from ledger_kernel.models.transaction import LedgerTransaction

    listeners = (
        (Session, "before_flush", _check_account_deletion_before_flush),
        (LedgerTransaction, "before_update", _check_transaction_immutability),
        (LedgerTransaction, "before_delete", _check_transaction_delete),
        (PaymentAllocation, "before_update", _check_allocation_immutability),
        (PaymentAllocation, "before_delete", _check_allocation_delete),
        (Account, "before_update", _check_account_structural_immutability),
    )
    for target, event_name, fn in listeners:
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that corrupt data on purpose.
    """
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.payment_allocation import PaymentAllocation
    from ledger_kernel.models.transaction import LedgerTransaction

    _safe_remove_listener(Session, "before_flush", _check_account_deletion_before_flush)
    _safe_remove_listener(LedgerTransaction, "before_update", _check_transaction_immutability)
    _safe_remove_listener(LedgerTransaction, "before_delete", _check_transaction_delete)
    _safe_remove_listener(PaymentAllocation, "before_update", _check_allocation_immutability)
    _safe_remove_listener(PaymentAllocation, "before_delete", _check_allocation_delete)
    _safe_remove_listener(Account, "before_update", _check_account_structural_immutability)
