"""
Human-readable transaction serials.

Format: ``{PREFIX}-{YYYYMMDDHHMMSS}-{SUFFIX}``, e.g. ``SAL-20240101120000-7KQ2MX``.
The suffix is random, so two serials generated in the same second collide
only by chance; the transaction ledger retries on a uniqueness violation.
"""

import secrets
import string
from datetime import datetime
from typing import Protocol

from ledger_kernel.domain.values import TransactionKind

SERIAL_PREFIXES: dict[str, str] = {
    TransactionKind.SALE.value: "SAL",
    TransactionKind.PURCHASE.value: "PUR",
    TransactionKind.PAYMENT.value: "PAY",
    TransactionKind.RETURN.value: "RET",
    TransactionKind.DEPOSIT.value: "DEP",
    TransactionKind.WITHDRAWAL.value: "WDR",
}

_ALPHABET = string.ascii_uppercase + string.digits


class SerialGenerator(Protocol):
    def __call__(self, kind: TransactionKind, now: datetime) -> str: ...


class RandomSerialGenerator:
    """Default generator: timestamp plus a random base-36 suffix."""

    def __init__(self, suffix_length: int = 6):
        self._suffix_length = suffix_length

    def __call__(self, kind: TransactionKind, now: datetime) -> str:
        prefix = SERIAL_PREFIXES[TransactionKind(kind).value]
        suffix = "".join(
            secrets.choice(_ALPHABET) for _ in range(self._suffix_length)
        )
        return f"{prefix}-{now:%Y%m%d%H%M%S}-{suffix}"
