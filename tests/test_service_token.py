"""
Unit tests for ServiceTokenCache and IdentityVerifier.
"""

import pytest

from orders_gateway.auth.providers import ServiceToken
from orders_gateway.auth.service_token import ServiceTokenCache
from orders_gateway.auth.verifier import EmailStatus, IdentityVerifier
from orders_gateway.errors import IdentityProviderError, ServiceCredentialUnavailable


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class FakeProvider:
    """Counts calls; behaviour is set per test."""

    def __init__(self, lifetime: float = 3600, clock=None):
        self.lifetime = lifetime
        self.clock = clock or FakeClock()
        self.credential_calls = 0
        self.profile_calls = 0
        self.fail_credential: Exception | None = None
        self.verified: object = True
        self.fail_profile: Exception | None = None

    async def fetch_service_credential(self) -> ServiceToken:
        self.credential_calls += 1
        if self.fail_credential is not None:
            raise self.fail_credential
        return ServiceToken(value=f"mgmt-{self.credential_calls}", expires_at=self.clock() + self.lifetime)

    async def fetch_email_verified(self, subject, credential):
        self.profile_calls += 1
        if self.fail_profile is not None:
            raise self.fail_profile
        return self.verified


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake(clock):
    return FakeProvider(clock=clock)


@pytest.fixture
def cache(fake, clock):
    return ServiceTokenCache(fake, clock=clock)


class TestServiceTokenCache:
    @pytest.mark.asyncio
    async def test_fetches_once_then_reuses(self, cache, fake):
        first = await cache.get()
        second = await cache.get()
        assert first is second
        assert fake.credential_calls == 1

    @pytest.mark.asyncio
    async def test_refreshes_inside_safety_margin(self, cache, fake, clock):
        first = await cache.get()
        clock.now = first.expires_at - 31
        assert await cache.get() is first

        clock.now = first.expires_at - 30
        second = await cache.get()
        assert second is not first
        assert second.value == "mgmt-2"
        assert cache.cached is second

    @pytest.mark.asyncio
    async def test_failure_is_not_cached(self, cache, fake):
        fake.fail_credential = ServiceCredentialUnavailable()
        with pytest.raises(ServiceCredentialUnavailable):
            await cache.get()
        assert cache.cached is None

        fake.fail_credential = None
        assert (await cache.get()).value == "mgmt-2"

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_unavailable(self, cache, fake):
        fake.fail_credential = TimeoutError("slow provider")
        with pytest.raises(ServiceCredentialUnavailable):
            await cache.get()

    @pytest.mark.asyncio
    async def test_stale_token_kept_until_refresh_succeeds(self, cache, fake, clock):
        first = await cache.get()
        clock.now = first.expires_at
        fake.fail_credential = ServiceCredentialUnavailable()
        with pytest.raises(ServiceCredentialUnavailable):
            await cache.get()
        # never served, but not thrown away either
        assert cache.cached is first


class TestIdentityVerifier:
    @pytest.mark.parametrize("claim, status", [(True, EmailStatus.VERIFIED), (False, EmailStatus.UNVERIFIED)])
    @pytest.mark.asyncio
    async def test_claim_is_trusted_without_network(self, cache, fake, claim, status):
        verifier = IdentityVerifier(fake, cache)
        assert await verifier.email_status("auth0|alice", claim) is status
        assert fake.credential_calls == 0
        assert fake.profile_calls == 0

    @pytest.mark.parametrize(
        "verified, status",
        [(True, EmailStatus.VERIFIED), (False, EmailStatus.UNVERIFIED), (None, EmailStatus.UNKNOWN)],
    )
    @pytest.mark.asyncio
    async def test_fallback_asks_provider(self, cache, fake, verified, status):
        fake.verified = verified
        verifier = IdentityVerifier(fake, cache)
        assert await verifier.email_status("auth0|alice", None) is status
        assert fake.profile_calls == 1

    @pytest.mark.asyncio
    async def test_fallback_profile_failure_is_unknown(self, cache, fake):
        fake.fail_profile = IdentityProviderError("Profile not found")
        verifier = IdentityVerifier(fake, cache)
        assert await verifier.email_status("auth0|alice", None) is EmailStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_fallback_without_credential_is_unknown(self, cache, fake):
        fake.fail_credential = ServiceCredentialUnavailable()
        verifier = IdentityVerifier(fake, cache)
        assert await verifier.email_status("auth0|alice", None) is EmailStatus.UNKNOWN
        assert fake.profile_calls == 0

    @pytest.mark.asyncio
    async def test_fallback_reuses_cached_credential(self, cache, fake):
        verifier = IdentityVerifier(fake, cache)
        await verifier.email_status("auth0|alice", None)
        await verifier.email_status("auth0|bob", None)
        assert fake.credential_calls == 1
        assert fake.profile_calls == 2
