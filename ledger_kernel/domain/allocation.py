"""
Module: ledger_kernel.domain.allocation
Responsibility:
    Greedy allocation of a payment across open invoices, either oldest
    first (FIFO) or in a caller-designated order (SPECIFIC).

Architecture position:
    Kernel > Domain -- pure calculation, zero I/O.  The transaction ledger
    loads and locks the invoices, calls ``allocate`` and applies the result.

Invariants enforced:
    - total_allocated + unallocated == source amount.
    - No line allocates more than its target's open amount, so no invoice
      is driven below zero remaining.

Usage:
    engine = AllocationEngine()
    result = engine.allocate(
        amount=Decimal("700.00"),
        targets=[AllocationTarget(target_id=12, open_amount=Decimal("700.00"))],
        method=AllocationMethod.FIFO,
    )
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.allocation")


class AllocationMethod(str, Enum):
    FIFO = "fifo"  # Oldest invoice date first
    SPECIFIC = "specific"  # Caller-designated order


@dataclass(frozen=True)
class AllocationTarget:
    """An invoice that can absorb part of a payment."""

    target_id: int
    open_amount: Decimal
    serial: str = ""
    date: date | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        if self.open_amount < ZERO:
            raise ValueError(
                f"Target {self.target_id} has negative open amount {self.open_amount}"
            )


@dataclass(frozen=True)
class AllocationLine:
    target_id: int
    serial: str
    allocated: Decimal
    remaining: Decimal

    @property
    def is_fully_settled(self) -> bool:
        return self.remaining == ZERO


@dataclass(frozen=True)
class AllocationResult:
    """
    Outcome of one allocation run.

    Guarantees:
        - ``total_allocated + unallocated == source_amount``.
        - ``lines`` only contains targets that received a non-zero amount.
    """

    source_amount: Decimal
    method: AllocationMethod
    lines: tuple[AllocationLine, ...]
    total_allocated: Decimal
    unallocated: Decimal

    @property
    def is_fully_allocated(self) -> bool:
        return self.unallocated == ZERO


class AllocationEngine:
    """Allocate a payment amount across invoice targets."""

    def allocate(
        self,
        amount: Decimal,
        targets: Sequence[AllocationTarget],
        method: AllocationMethod = AllocationMethod.FIFO,
    ) -> AllocationResult:
        """
        Apply ``min(open_amount, still_to_allocate)`` to each target in turn.

        FIFO orders targets by (date, created_at, target_id); SPECIFIC keeps
        the order given.  Stops when the amount is exhausted.

        Raises:
            ValueError: If amount is negative.
        """
        amount = round_money(amount)
        if amount < ZERO:
            raise ValueError(f"Cannot allocate a negative amount: {amount}")

        method = AllocationMethod(method)
        if method == AllocationMethod.FIFO:
            ordered = sorted(targets, key=_fifo_key)
        else:
            ordered = list(targets)

        logger.debug(
            "allocation_started",
            extra={
                "amount": str(amount),
                "method": method.value,
                "target_count": len(ordered),
            },
        )

        to_allocate = amount
        lines: list[AllocationLine] = []
        for target in ordered:
            if to_allocate == ZERO:
                break
            applied = min(target.open_amount, to_allocate)
            if applied == ZERO:
                continue
            to_allocate -= applied
            lines.append(
                AllocationLine(
                    target_id=target.target_id,
                    serial=target.serial,
                    allocated=applied,
                    remaining=target.open_amount - applied,
                )
            )

        total_allocated = amount - to_allocate
        return AllocationResult(
            source_amount=amount,
            method=method,
            lines=tuple(lines),
            total_allocated=total_allocated,
            unallocated=to_allocate,
        )


def _fifo_key(target: AllocationTarget) -> tuple:
    return (
        target.date or date.min,
        target.created_at.timestamp() if target.created_at else 0.0,
        target.target_id,
    )
