"""
Identity-provider capability and its concrete implementations.

The pipeline only talks to `IdentityProvider`; which authority actually signs
tokens and serves user profiles is picked by `auth.registry`.
"""

from __future__ import annotations

import abc
import asyncio
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import aiohttp
import jwt

from orders_gateway.auth.claims import MACHINE_GRANT, Claims
from orders_gateway.config import Settings
from orders_gateway.errors import (
    AudienceMismatch,
    IdentityProviderError,
    InvalidSignature,
    IssuerMismatch,
    MalformedToken,
    ServiceCredentialUnavailable,
    TokenExpired,
)
from orders_gateway.logging import get_logger


@dataclass(frozen=True)
class ServiceToken:
    value: str
    expires_at: float                      # epoch seconds

    def fresh(self, margin: float, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) < self.expires_at - margin


class IdentityProvider(abc.ABC):
    def __init__(self, settings: Settings):
        self.issuer = settings.issuer
        self.audience = settings.audience
        self.logger = get_logger(f"orders_gateway.auth.{type(self).__name__.lower()}")

    @abc.abstractmethod
    async def verify_access_token(self, token: str) -> Claims: ...

    @abc.abstractmethod
    async def fetch_service_credential(self) -> ServiceToken: ...

    @abc.abstractmethod
    async def fetch_user_profile(self, subject: str, credential: ServiceToken) -> Dict[str, Any]: ...

    @abc.abstractmethod
    async def update_app_metadata(
        self, subject: str, credential: ServiceToken, metadata: Dict[str, Any]
    ) -> None: ...

    async def fetch_email_verified(self, subject: str, credential: ServiceToken) -> Optional[bool]:
        """`email_verified` from the subject's profile; None if it isn't a boolean."""
        verified = (await self.fetch_user_profile(subject, credential)).get("email_verified")
        return verified if isinstance(verified, bool) else None

    async def close(self) -> None:
        return None

    # ------------------------------------------------------------------ #

    def _decode(self, token: str, key: Any, algorithms: List[str]) -> Claims:
        """Check signature, expiry, nbf, audience and issuer; map failures."""
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=algorithms,
                audience=self.audience,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise TokenExpired("expired") from exc
        except jwt.ImmatureSignatureError as exc:
            raise TokenExpired("used before nbf") from exc
        except jwt.InvalidAudienceError as exc:
            raise AudienceMismatch(str(exc)) from exc
        except jwt.InvalidSignatureError as exc:
            raise InvalidSignature(str(exc)) from exc
        except jwt.InvalidTokenError as exc:
            raise MalformedToken(str(exc)) from exc

        issuer = payload.get("iss")
        if not isinstance(issuer, str) or issuer.rstrip("/") + "/" != self.issuer:
            raise IssuerMismatch("unexpected iss", details={"iss": issuer})
        return Claims.from_payload(payload)


# ───── Auth0 (first-class) ────────────────────────────────────────────
class Auth0Provider(IdentityProvider):
    """RS256 tokens checked against the tenant JWKS; profiles via the Management API."""

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.jwks_url = f"{self.issuer}.well-known/jwks.json"
        self.token_url = f"{self.issuer}oauth/token"
        self.mgmt_audience = f"{self.issuer}api/v2/"
        self.client_id = settings.mgmt_client_id
        self.client_secret = settings.mgmt_client_secret
        self.jwks_ttl = settings.jwks_cache_seconds
        self.timeout = aiohttp.ClientTimeout(total=settings.http_timeout)

        self._keys: Optional[List[Dict[str, Any]]] = None
        self._keys_fetched_at: float = 0.0
        self._keys_lock = asyncio.Lock()
        self._session: Optional[aiohttp.ClientSession] = None

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _http(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
        return self._session

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            async with self._http().request(method, url, **kwargs) as resp:
                if resp.status >= 400:
                    raise IdentityProviderError(
                        details={"url": url, "status": resp.status, "body": (await resp.text())[:500]}
                    )
                try:
                    return await resp.json(content_type=None)
                except ValueError as exc:  # 200 with an HTML error page etc.
                    raise IdentityProviderError(
                        "Identity provider returned a non-JSON body",
                        details={"url": url, "status": resp.status, "error": repr(exc)},
                    ) from exc
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise IdentityProviderError(details={"url": url, "error": repr(exc)}) from exc

    # ---------- signing keys ---------- #

    async def _refresh_keys(self, *, force: bool) -> None:
        if not force and self._keys is not None and time.time() - self._keys_fetched_at < self.jwks_ttl:
            return
        async with self._keys_lock:
            if not force and self._keys is not None and time.time() - self._keys_fetched_at < self.jwks_ttl:
                return
            payload = await self._request_json("GET", self.jwks_url)
            keys = payload.get("keys") if isinstance(payload, dict) else None
            if not isinstance(keys, list):
                raise IdentityProviderError("JWKS response missing 'keys'", details={"url": self.jwks_url})
            self._keys = keys
            self._keys_fetched_at = time.time()
            self.logger.info("JWKS refreshed", keys_count=len(keys))

    async def _signing_key(self, kid: str) -> Any:
        await self._refresh_keys(force=False)
        key = next((k for k in self._keys or [] if k.get("kid") == kid), None)
        if key is None:
            # key might have been rotated since the last fetch
            await self._refresh_keys(force=True)
            key = next((k for k in self._keys or [] if k.get("kid") == kid), None)
        if key is None:
            raise InvalidSignature("unknown kid", details={"kid": kid})
        try:
            return jwt.PyJWK(key, algorithm="RS256").key
        except jwt.PyJWKError as exc:
            raise InvalidSignature("unusable signing key", details={"kid": kid}) from exc

    async def verify_access_token(self, token: str) -> Claims:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.InvalidTokenError as exc:
            raise MalformedToken("unreadable header") from exc
        if header.get("alg") != "RS256":
            raise MalformedToken("unexpected alg", details={"alg": header.get("alg")})
        kid = header.get("kid")
        if not isinstance(kid, str) or not kid:
            raise MalformedToken("missing kid")
        return self._decode(token, await self._signing_key(kid), ["RS256"])

    # ---------- Management API ---------- #

    async def fetch_service_credential(self) -> ServiceToken:
        if not self.client_id or not self.client_secret:
            raise ServiceCredentialUnavailable(details={"reason": "MGMT_CLIENT_ID / MGMT_CLIENT_SECRET not set"})
        now = time.time()
        try:
            data = await self._request_json(
                "POST",
                self.token_url,
                json={
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                    "audience": self.mgmt_audience,
                    "grant_type": "client_credentials",
                },
            )
        except IdentityProviderError as exc:
            raise ServiceCredentialUnavailable(details=exc.details) from exc
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ServiceCredentialUnavailable(details={"reason": "token response missing access_token"})
        return ServiceToken(
            value=data["access_token"],
            expires_at=now + float(data.get("expires_in", 0)),
        )

    def _user_url(self, subject: str) -> str:
        return f"{self.mgmt_audience}users/{quote(subject, safe='')}"

    async def fetch_user_profile(self, subject: str, credential: ServiceToken) -> Dict[str, Any]:
        profile = await self._request_json(
            "GET",
            self._user_url(subject),
            headers={"Authorization": f"Bearer {credential.value}"},
        )
        if not isinstance(profile, dict):
            raise IdentityProviderError("Unexpected profile payload", details={"sub": subject})
        return profile

    async def update_app_metadata(
        self, subject: str, credential: ServiceToken, metadata: Dict[str, Any]
    ) -> None:
        await self._request_json(
            "PATCH",
            self._user_url(subject),
            json={"app_metadata": metadata},
            headers={"Authorization": f"Bearer {credential.value}"},
        )


# ───── Local / dev provider ──────────────────────────────────────────
class LocalProvider(IdentityProvider):
    """HS256 tokens signed with a shared secret; profiles kept in memory.

    Same issuer / audience / expiry rules as the real provider.  A subject
    with no stored profile has an unknown email status.
    """

    service_subject = "local-service@clients"

    def __init__(self, settings: Settings):
        super().__init__(settings)
        self.secret = settings.local_signing_secret or ""
        self.profiles: Dict[str, Dict[str, Any]] = {}

    def issue_token(self, subject: str, *, expires_in: int = 3600, **claims: Any) -> str:
        """Sign a token the way the local authority would (dev tooling, tests)."""
        now = int(time.time())
        payload = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": subject,
            "iat": now,
            "exp": now + expires_in,
            **claims,
        }
        return jwt.encode(payload, self.secret, algorithm="HS256")

    async def verify_access_token(self, token: str) -> Claims:
        return self._decode(token, self.secret, ["HS256"])

    async def fetch_service_credential(self) -> ServiceToken:
        expires_in = 3600
        token = self.issue_token(
            self.service_subject,
            expires_in=expires_in,
            gty=MACHINE_GRANT,
            jti=uuid.uuid4().hex,
        )
        return ServiceToken(value=token, expires_at=time.time() + expires_in)

    async def fetch_user_profile(self, subject: str, credential: ServiceToken) -> Dict[str, Any]:
        profile = self.profiles.get(subject)
        if profile is None:
            raise IdentityProviderError("Profile not found", details={"sub": subject})
        return dict(profile)

    async def update_app_metadata(
        self, subject: str, credential: ServiceToken, metadata: Dict[str, Any]
    ) -> None:
        self.profiles.setdefault(subject, {})["app_metadata"] = dict(metadata)
