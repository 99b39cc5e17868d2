"""Request identity supplied by the auth collaborator."""

from __future__ import annotations

from dataclasses import dataclass, field
from uuid import uuid4

from ledger_kernel.exceptions import ValidationError


@dataclass(frozen=True)
class RequestContext:
    """
    Who is calling, on behalf of which tenant.

    The core trusts this tuple and scopes every query and mutation by
    ``tenant``.
    """

    tenant: str
    actor_id: str
    actor_role: str = "user"
    correlation_id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        if not self.tenant or not str(self.tenant).strip():
            raise ValidationError("tenant is required", field="tenant")
        if not self.actor_id or not str(self.actor_id).strip():
            raise ValidationError("actor_id is required", field="actor_id")
