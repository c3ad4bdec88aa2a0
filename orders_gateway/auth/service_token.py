"""
Process-wide cache for the administrative-API service credential.

Built once at start-up and shared by every request.  There is no lock: two
callers that both see a stale cache each fetch a token and the later write
wins.  `_token` is replaced in a single assignment.
"""

from __future__ import annotations

import time
from typing import Callable, Optional

from orders_gateway.auth.providers import IdentityProvider, ServiceToken
from orders_gateway.errors import ServiceCredentialUnavailable
from orders_gateway.logging import get_logger

SAFETY_MARGIN_SECONDS = 30.0


class ServiceTokenCache:
    def __init__(
        self,
        provider: IdentityProvider,
        margin: float = SAFETY_MARGIN_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.margin = margin
        self.clock = clock
        self._token: Optional[ServiceToken] = None
        self.logger = get_logger("orders_gateway.auth.service_token")

    @property
    def cached(self) -> Optional[ServiceToken]:
        return self._token

    async def get(self) -> ServiceToken:
        """A credential valid for at least `margin` more seconds.

        Raises `ServiceCredentialUnavailable` if a refresh is needed and the
        provider can't supply one; failures are not cached.
        """
        token = self._token
        if token is not None and token.fresh(self.margin, now=self.clock()):
            return token

        try:
            token = await self.provider.fetch_service_credential()
        except ServiceCredentialUnavailable:
            raise
        except Exception as exc:
            raise ServiceCredentialUnavailable(details={"error": repr(exc)}) from exc

        self._token = token
        self.logger.info("Service credential refreshed", expires_at=token.expires_at)
        return token
