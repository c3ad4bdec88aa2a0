from __future__ import annotations

import enum
from typing import Optional

from orders_gateway.auth.providers import IdentityProvider
from orders_gateway.auth.service_token import ServiceTokenCache
from orders_gateway.errors import DependencyError
from orders_gateway.logging import get_logger


class EmailStatus(enum.Enum):
    VERIFIED = "verified"
    UNVERIFIED = "unverified"
    UNKNOWN = "unknown"

    @classmethod
    def of(cls, verified: Optional[bool]) -> "EmailStatus":
        if verified is True:
            return cls.VERIFIED
        if verified is False:
            return cls.UNVERIFIED
        return cls.UNKNOWN


class IdentityVerifier:
    """Resolves whether a subject's email is verified.

    1. If the token carried `email_verified`, that value is the answer.
    2. Otherwise ask the provider's profile endpoint, authenticated with the
       shared service credential.  Any failure there yields UNKNOWN.
    """

    def __init__(self, provider: IdentityProvider, service_tokens: ServiceTokenCache):
        self.provider = provider
        self.service_tokens = service_tokens
        self.logger = get_logger("orders_gateway.auth.verifier")

    async def email_status(self, subject: str, claim: Optional[bool]) -> EmailStatus:
        if claim is not None:
            return EmailStatus.of(claim)

        try:
            credential = await self.service_tokens.get()
            verified = await self.provider.fetch_email_verified(subject, credential)
        except DependencyError as exc:
            self.logger.warning(
                "Email verification lookup failed", sub=subject, error=exc.message, details=exc.details
            )
            return EmailStatus.UNKNOWN
        return EmailStatus.of(verified)
