"""
Exceptions raised by the ledger kernel.

Every class carries a machine-readable ``code`` class attribute and keeps
the values that caused the failure as attributes (``OverpaymentError``
exposes ``unallocated``, ``OverReturnError`` exposes ``already_returned``
and so on).  Callers branch on the class, never on the message text:

    try:
        engine.record_payment(...)
    except OverpaymentError as e:
        respond(code=e.code, unallocated=e.unallocated)

Hierarchy:

    LedgerKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- OverReturnError
    |   +-- InsufficientFundsError
    |   +-- UnsupportedAccountError
    |
    +-- NotFoundError
    |   +-- AccountNotFoundError
    |   +-- TransactionNotFoundError
    |
    +-- ConflictError
    |   +-- AccountNotEmptyError
    |   +-- AccountReferencedError
    |   +-- DuplicateAccountNameError
    |   +-- SerialCollisionError
    |
    +-- OverpaymentError
    |
    +-- ForbiddenError
    |   +-- TenantMismatchError
    |
    +-- ImmutabilityViolationError
    |
    +-- ServiceNotReadyError

Codes:

Category     | Code                    | When Raised
-------------|-------------------------|------------------------------------------
Validation   | VALIDATION_ERROR        | Bad or missing input
             | INVALID_AMOUNT          | Negative amount, deposited > total, ...
             | OVER_RETURN             | Return exceeds original net of returns
             | INSUFFICIENT_FUNDS      | Bank/cash balance would go negative
             | UNSUPPORTED_ACCOUNT     | Operation not valid for account category
-------------|-------------------------|------------------------------------------
Not found    | ACCOUNT_NOT_FOUND       | Unknown account id
             | TRANSACTION_NOT_FOUND   | Unknown transaction serial
-------------|-------------------------|------------------------------------------
Conflict     | ACCOUNT_NOT_EMPTY       | Delete with balance != opening balance
             | ACCOUNT_REFERENCED      | Delete while transactions reference it
             | DUPLICATE_ACCOUNT_NAME  | Name already used in tenant + category
             | SERIAL_COLLISION        | Serial still colliding after retries
-------------|-------------------------|------------------------------------------
Payment      | OVERPAYMENT             | Funds left after exhausting invoices
-------------|-------------------------|------------------------------------------
Forbidden    | TENANT_MISMATCH         | Record belongs to another tenant
-------------|-------------------------|------------------------------------------
Immutability | IMMUTABILITY_VIOLATION  | Modifying an append-only record
-------------|-------------------------|------------------------------------------
Lifecycle    | SERVICE_NOT_READY       | Handler called before start()

Propagation:

Engine-level errors abort the whole atomic unit and propagate unmodified.
Request handlers translate categories to a transport status; they do not
retry or recover.  The only automatic retry in the kernel is the bounded
serial-collision retry in the transaction ledger.
"""

from decimal import Decimal


class LedgerKernelError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses define a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# Validation


class ValidationError(LedgerKernelError):
    """Bad or missing input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidAmountError(ValidationError):
    """Amount violates a sign or ordering precondition."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount: Decimal, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid {field} {amount}: {reason}", field=field)


class OverReturnError(ValidationError):
    """Return would exceed the original invoice total net of prior returns."""

    code: str = "OVER_RETURN"

    def __init__(
        self,
        original_serial: str,
        original_total: Decimal,
        already_returned: Decimal,
        requested: Decimal,
    ):
        self.original_serial = original_serial
        self.original_total = original_total
        self.already_returned = already_returned
        self.requested = requested
        super().__init__(
            f"Return of {requested} against {original_serial} exceeds its total "
            f"{original_total} (already returned {already_returned})",
            field="amount",
        )


class InsufficientFundsError(ValidationError):
    """Outflow would drive a bank or cash account below zero."""

    code: str = "INSUFFICIENT_FUNDS"

    def __init__(self, account_id: str, balance: Decimal, requested: Decimal):
        self.account_id = account_id
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient funds on account {account_id}: "
            f"balance {balance}, requested {requested}",
            field="amount",
        )


class UnsupportedAccountError(ValidationError):
    """Operation is not defined for this account category or kind."""

    code: str = "UNSUPPORTED_ACCOUNT"

    def __init__(self, account_id: str, operation: str, category: str):
        self.account_id = account_id
        self.operation = operation
        self.category = category
        super().__init__(
            f"Cannot {operation} on {category} account {account_id}",
            field="account_id",
        )


# Not found


class NotFoundError(LedgerKernelError):
    """Referenced record does not exist."""

    code: str = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    """Account with given ID was not found."""

    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class TransactionNotFoundError(NotFoundError):
    """Transaction with given serial was not found."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, serial: str):
        self.serial = serial
        super().__init__(f"Transaction not found: {serial}")


# Conflict


class ConflictError(LedgerKernelError):
    """Operation conflicts with current state."""

    code: str = "CONFLICT"


class AccountNotEmptyError(ConflictError):
    """Account balance has moved away from its opening balance."""

    code: str = "ACCOUNT_NOT_EMPTY"

    def __init__(
        self, account_id: str, current_balance: Decimal, opening_balance: Decimal
    ):
        self.account_id = account_id
        self.current_balance = current_balance
        self.opening_balance = opening_balance
        super().__init__(
            f"Account {account_id} cannot be deleted: current balance "
            f"{current_balance} != opening balance {opening_balance}"
        )


class AccountReferencedError(ConflictError):
    """Account cannot be deleted because transactions reference it."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(
            f"Account {account_id} cannot be deleted: referenced by transactions"
        )


class DuplicateAccountNameError(ConflictError):
    """Account name already taken within the tenant and category."""

    code: str = "DUPLICATE_ACCOUNT_NAME"

    def __init__(self, tenant: str, category: str, name: str):
        self.tenant = tenant
        self.category = category
        self.name = name
        super().__init__(
            f"A {category} account named '{name}' already exists for {tenant}"
        )


class SerialCollisionError(ConflictError):
    """Generated serial kept colliding after the bounded retry."""

    code: str = "SERIAL_COLLISION"

    def __init__(self, kind: str, attempts: int):
        self.kind = kind
        self.attempts = attempts
        super().__init__(
            f"Could not allocate a unique {kind} serial after {attempts} attempts"
        )


# Payment allocation


class OverpaymentError(LedgerKernelError):
    """
    Payment leaves funds unallocated after exhausting its target invoices.

    The whole payment operation is rolled back: no invoice keeps a
    tentative allocation and no payment row is written.
    """

    code: str = "OVERPAYMENT"

    def __init__(
        self,
        account_id: str,
        amount: Decimal,
        allocatable: Decimal,
        unallocated: Decimal,
    ):
        self.account_id = account_id
        self.amount = amount
        self.allocatable = allocatable
        self.unallocated = unallocated
        super().__init__(
            f"Payment of {amount} on account {account_id} exceeds the open "
            f"invoice amount {allocatable} by {unallocated}"
        )


# Forbidden


class ForbiddenError(LedgerKernelError):
    """Caller may not access the record."""

    code: str = "FORBIDDEN"


class TenantMismatchError(ForbiddenError):
    """Record exists but belongs to another tenant."""

    code: str = "TENANT_MISMATCH"

    def __init__(self, entity_type: str, entity_id: str, tenant: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.tenant = tenant
        super().__init__(
            f"{entity_type} {entity_id} does not belong to tenant {tenant}"
        )


# Immutability


class ImmutabilityViolationError(LedgerKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Lifecycle


class ServiceNotReadyError(LedgerKernelError):
    """Operations were requested before startup completed."""

    code: str = "SERVICE_NOT_READY"

    def __init__(self, state: str):
        self.state = state
        super().__init__(f"Ledger service is not ready (state: {state})")
