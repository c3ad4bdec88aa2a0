"""
Keeps a compact order snapshot on the identity profile (`app_metadata`):
the running `orders_count` and the `last_order` {id, total, created_at}.

Runs after the response has been sent; failures are logged and dropped.
"""

from __future__ import annotations

from orders_gateway.auth.providers import IdentityProvider
from orders_gateway.auth.service_token import ServiceTokenCache
from orders_gateway.errors import DependencyError
from orders_gateway.logging import get_logger
from orders_gateway.schema import OrderInfo


class ProfileEnricher:
    def __init__(self, provider: IdentityProvider, service_tokens: ServiceTokenCache):
        self.provider = provider
        self.service_tokens = service_tokens
        self.logger = get_logger("orders_gateway.auth.profile")

    async def record_order(self, subject: str, order: OrderInfo) -> None:
        try:
            credential = await self.service_tokens.get()
            profile = await self.provider.fetch_user_profile(subject, credential)
            meta = dict(profile.get("app_metadata") or {})
            meta["orders_count"] = int(meta.get("orders_count") or 0) + 1
            meta["last_order"] = {
                "id": order.id,
                "total": order.total,
                "created_at": order.createdAt.isoformat(),
            }
            await self.provider.update_app_metadata(subject, credential, meta)
        except DependencyError as exc:
            self.logger.warning(
                "Profile enrichment failed", sub=subject, order_id=order.id, error=exc.message, details=exc.details
            )
            return
        self.logger.info("Profile enriched", sub=subject, orders_count=meta["orders_count"])
