"""
Per-route authorization pipelines.

A pipeline is an ordered list of gates.  Each gate looks at the request's
`GateContext` and returns either `PASS` or a `Denied` value; the first
`Denied` ends the evaluation and later gates never run.  Gates don't raise
for decisions.  Dependency failures (JWKS unreachable, ...) still propagate
as exceptions.
"""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import Optional, Sequence, Union

from orders_gateway.auth.claims import Claims
from orders_gateway.auth.providers import IdentityProvider
from orders_gateway.auth.verifier import EmailStatus, IdentityVerifier
from orders_gateway.errors import (
    AuthenticationError,
    EmailNotVerified,
    EmailVerificationUnavailable,
    InsufficientScope,
    InvalidToken,
    MachineGrantRequired,
    OrdersGatewayError,
)
from orders_gateway.logging import get_logger

logger = get_logger("orders_gateway.auth.gates")

CREATE_ORDERS = "create:orders"
READ_ORDERS = "read:orders"
READ_ORDERS_SUMMARY = "read:orders_summary"


class DenyReason(enum.Enum):
    UNAUTHENTICATED = "unauthenticated"
    INSUFFICIENT_SCOPE = "insufficient_scope"
    EMAIL_NOT_VERIFIED = "email_not_verified"
    EMAIL_VERIFICATION_UNAVAILABLE = "email_verification_unavailable"
    MACHINE_GRANT_REQUIRED = "machine_grant_required"


_ERRORS: dict[DenyReason, type[OrdersGatewayError]] = {
    DenyReason.UNAUTHENTICATED: AuthenticationError,
    DenyReason.INSUFFICIENT_SCOPE: InsufficientScope,
    DenyReason.EMAIL_NOT_VERIFIED: EmailNotVerified,
    DenyReason.EMAIL_VERIFICATION_UNAVAILABLE: EmailVerificationUnavailable,
    DenyReason.MACHINE_GRANT_REQUIRED: MachineGrantRequired,
}


@dataclass(frozen=True)
class Pass:
    pass


PASS = Pass()


@dataclass(frozen=True)
class Denied:
    reason: DenyReason
    gate: str

    def to_error(self) -> OrdersGatewayError:
        return _ERRORS[self.reason](details={"gate": self.gate})

    @property
    def status_code(self) -> int:
        return _ERRORS[self.reason].status_code


GateResult = Union[Pass, Denied]


@dataclass
class GateContext:
    authorization: Optional[str]
    claims: Optional[Claims] = None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


# ───────────────────────────── gates ───────────────────────────── #

class Gate(abc.ABC):
    name: str = "gate"

    @abc.abstractmethod
    async def check(self, ctx: GateContext) -> GateResult: ...

    def deny(self, reason: DenyReason) -> Denied:
        return Denied(reason=reason, gate=self.name)


class TokenGate(Gate):
    """Validates the bearer token and stores its claims on the context."""

    name = "token"

    def __init__(self, provider: IdentityProvider):
        self.provider = provider

    async def check(self, ctx: GateContext) -> GateResult:
        token = bearer_token(ctx.authorization)
        if token is None:
            logger.info("Token rejected", reason="missing bearer token")
            return self.deny(DenyReason.UNAUTHENTICATED)
        try:
            ctx.claims = await self.provider.verify_access_token(token)
        except InvalidToken as exc:
            logger.info("Token rejected", failure=type(exc).__name__, reason=exc.reason)
            return self.deny(DenyReason.UNAUTHENTICATED)
        return PASS


class ScopeGate(Gate):
    """Requires `permission` as a whole word of the space-delimited scope."""

    def __init__(self, permission: str):
        self.permission = permission
        self.name = f"scope:{permission}"

    async def check(self, ctx: GateContext) -> GateResult:
        if ctx.claims is None or self.permission not in ctx.claims.scopes:
            return self.deny(DenyReason.INSUFFICIENT_SCOPE)
        return PASS


class MachineGrantGate(Gate):
    """Only client-credentials (machine-to-machine) tokens get through."""

    name = "machine_grant"

    async def check(self, ctx: GateContext) -> GateResult:
        if ctx.claims is None or not ctx.claims.is_machine:
            return self.deny(DenyReason.MACHINE_GRANT_REQUIRED)
        return PASS


class VerifiedEmailGate(Gate):
    """Fails closed: only a definite VERIFIED status passes."""

    name = "verified_email"

    def __init__(self, verifier: IdentityVerifier):
        self.verifier = verifier

    async def check(self, ctx: GateContext) -> GateResult:
        if ctx.claims is None:
            return self.deny(DenyReason.UNAUTHENTICATED)
        status = await self.verifier.email_status(ctx.claims.subject, ctx.claims.email_verified)
        if status is EmailStatus.VERIFIED:
            return PASS
        if status is EmailStatus.UNVERIFIED:
            return self.deny(DenyReason.EMAIL_NOT_VERIFIED)
        return self.deny(DenyReason.EMAIL_VERIFICATION_UNAVAILABLE)


# ─────────────────────────── pipeline ─────────────────────────── #

@dataclass(frozen=True)
class Authorized:
    claims: Claims


PipelineResult = Union[Authorized, Denied]


class AuthorizationPipeline:
    def __init__(self, name: str, gates: Sequence[Gate]):
        self.name = name
        self.gates = tuple(gates)

    async def evaluate(self, authorization: Optional[str]) -> PipelineResult:
        ctx = GateContext(authorization=authorization)
        for gate in self.gates:
            result = await gate.check(ctx)
            if isinstance(result, Denied):
                logger.info("Request denied", pipeline=self.name, gate=result.gate, reason=result.reason.value)
                return result
        if ctx.claims is None:
            return Denied(reason=DenyReason.UNAUTHENTICATED, gate=self.name)
        return Authorized(claims=ctx.claims)


@dataclass(frozen=True)
class Profiles:
    create_order: AuthorizationPipeline
    read_orders: AuthorizationPipeline
    summary: AuthorizationPipeline


def build_profiles(provider: IdentityProvider, verifier: IdentityVerifier) -> Profiles:
    token = TokenGate(provider)
    return Profiles(
        create_order=AuthorizationPipeline(
            "create-order", [token, ScopeGate(CREATE_ORDERS), VerifiedEmailGate(verifier)]
        ),
        read_orders=AuthorizationPipeline("read-order", [token, ScopeGate(READ_ORDERS)]),
        summary=AuthorizationPipeline(
            "summary", [token, ScopeGate(READ_ORDERS_SUMMARY), MachineGrantGate()]
        ),
    )
