"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Common constructor for the write services.  Every service receives a
    SQLAlchemy ``Session`` and uses ``session.flush()`` -- never
    ``session.commit()``.  The caller (request handler, sweep, test) owns
    the unit of work.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Services flush within the caller's transaction and never commit or
      roll back the outer transaction themselves.  Multi-step operations
      use SAVEPOINTs (``session.begin_nested()``) so a failed step leaves
      no partial state in the caller's transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session

from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.policy import DEFAULT_POLICY, LedgerPolicy
from ledger_kernel.exceptions import ValidationError


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - ``clock`` defaults to SystemClock, ``policy`` to DEFAULT_POLICY.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        policy: LedgerPolicy | None = None,
    ):
        self.session = session
        self.clock = clock or SystemClock()
        self.policy = policy or DEFAULT_POLICY

    def _page_bounds(self, page: int, limit: int | None) -> tuple[int, int]:
        """Validate paging input and return (limit, offset)."""
        if limit is None:
            limit = self.policy.default_page_limit
        if page < 1:
            raise ValidationError(f"page must be >= 1, got {page}", field="page")
        if not 1 <= limit <= self.policy.max_page_limit:
            raise ValidationError(
                f"limit must be between 1 and {self.policy.max_page_limit}, got {limit}",
                field="limit",
            )
        return limit, (page - 1) * limit
