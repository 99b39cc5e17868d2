"""
Module: ledger_kernel.db.types
Responsibility: Annotated column type aliases and the money coercion helpers
    shared by models, domain code and services.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Every monetary column is Money (Numeric(18, 2)).  No floats.
    - round_money() is the only sanctioned rounding function for amounts
      (two places, ROUND_HALF_UP).

Failure modes:
    - ValueError from money_from_value() on non-numeric or non-finite input.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Numeric, String

# Monetary amount, two decimal places
Money = Annotated[Decimal, Numeric(18, 2)]

# Tenant key (company code)
TenantCode = Annotated[str, String(64)]

# Human-readable transaction serial
Serial = Annotated[str, String(40)]

# Short labels and enum-ish strings
ShortCode = Annotated[str, String(32)]

# Names, contact fields
Label = Annotated[str, String(255)]

# Free text
LongText = Annotated[str, String(2000)]


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the ledger precision.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def money_from_value(value: object) -> Decimal:
    """
    Coerce an inbound numeric value (str, int, float, Decimal) to Money.

    Floats are converted through ``str()`` so ``0.1`` becomes ``0.10``
    rather than its binary expansion.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, TypeError) as exc:
        raise ValueError(f"Not a monetary amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return round_money(amount)
