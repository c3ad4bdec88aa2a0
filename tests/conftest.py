"""Shared fixtures: local-provider settings, a throwaway SQLite store, an ASGI client."""

import httpx
import pytest

from orders_gateway.app import create_app
from orders_gateway.auth.providers import LocalProvider
from orders_gateway.config import Settings
from orders_gateway.db import build_engine, build_sessionmaker, create_schema
from orders_gateway.repository import OrderRepository

ISSUER = "https://tenant.example.com/"
AUDIENCE = "https://orders.example.com"
SECRET = "local-signing-secret-for-tests-only-0123456789"


def _settings(tmp_path, **overrides) -> Settings:
    env = {
        "AUTH_PROVIDER": "local",
        "AUTH_ISSUER_BASE_URL": ISSUER,
        "AUTH_AUDIENCE": AUDIENCE,
        "LOCAL_SIGNING_SECRET": SECRET,
        "DATABASE_URL": f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}",
        "PROFILE_ENRICHMENT": "false",
        "LOG_LEVEL": "warning",
    }
    env.update(overrides)
    return Settings(env)


@pytest.fixture
def settings_factory(tmp_path):
    """Settings for the local provider, with per-test overrides."""
    return lambda **overrides: _settings(tmp_path, **overrides)


@pytest.fixture
def settings(settings_factory) -> Settings:
    return settings_factory()


@pytest.fixture
def provider(settings) -> LocalProvider:
    return LocalProvider(settings)


@pytest.fixture
async def engine(settings):
    engine = build_engine(settings)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def repository(engine) -> OrderRepository:
    return OrderRepository(build_sessionmaker(engine))


@pytest.fixture
def app(settings, provider, engine):
    return create_app(settings, provider=provider, engine=engine)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as http:
        yield http


@pytest.fixture
def bearer(provider):
    """Build an Authorization header for a locally signed token."""

    def _bearer(sub: str = "auth0|alice", **claims) -> dict:
        return {"Authorization": f"Bearer {provider.issue_token(sub, **claims)}"}

    return _bearer
