from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Optional

from orders_gateway.errors import MalformedToken

MACHINE_GRANT = "client-credentials"


@dataclass(frozen=True)
class Claims:
    """The parts of a verified access token the gateway acts on."""

    subject: str
    scope: str = ""
    email_verified: Optional[bool] = None      # None = claim absent
    grant_type: Optional[str] = None
    email: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def scopes(self) -> FrozenSet[str]:
        return frozenset(self.scope.split())

    @property
    def is_machine(self) -> bool:
        return self.grant_type == MACHINE_GRANT

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Claims":
        subject = payload.get("sub")
        if not isinstance(subject, str) or not subject:
            raise MalformedToken("missing sub")

        scope = payload.get("scope")
        verified = payload.get("email_verified")
        grant = payload.get("gty")
        email = payload.get("email")
        return cls(
            subject=subject,
            scope=scope if isinstance(scope, str) else "",
            email_verified=verified if isinstance(verified, bool) else None,
            grant_type=grant if isinstance(grant, str) else None,
            email=email if isinstance(email, str) and email else None,
            raw=dict(payload),
        )
