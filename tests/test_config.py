import pytest

from orders_gateway.app import create_app, main
from orders_gateway.config import Settings, get_settings
from orders_gateway.db import async_url
from orders_gateway.errors import ConfigurationError

BASE = {
    "AUTH_ISSUER_BASE_URL": "https://tenant.example.com",
    "AUTH_AUDIENCE": "https://orders.example.com",
    "DATABASE_URL": "postgresql://u:p@db:5432/orders",
}


class TestSettings:
    def test_defaults(self):
        settings = Settings(BASE).validate()
        assert settings.port == 3001
        assert settings.cors_origins == []
        assert settings.auth_provider == "auth0"
        assert settings.issuer == "https://tenant.example.com/"
        assert settings.profile_enrichment is True
        assert settings.http_timeout == 5.0

    def test_cors_origins_split(self):
        settings = Settings({**BASE, "CORS_ORIGINS": " https://a.example.com, ,https://b.example.com "})
        assert settings.cors_origins == ["https://a.example.com", "https://b.example.com"]

    def test_auth0_domain_fallback(self):
        env = {k: v for k, v in BASE.items() if k != "AUTH_ISSUER_BASE_URL"}
        settings = Settings({**env, "AUTH0_DOMAIN": "tenant.eu.auth0.com", "AUTH0_AUDIENCE": "x"})
        assert settings.issuer == "https://tenant.eu.auth0.com/"

    @pytest.mark.parametrize("missing", ["AUTH_ISSUER_BASE_URL", "AUTH_AUDIENCE", "DATABASE_URL"])
    def test_required_settings(self, missing):
        env = {k: v for k, v in BASE.items() if k != missing}
        with pytest.raises(ConfigurationError) as info:
            Settings(env).validate()
        assert missing in info.value.details["missing"]

    def test_local_provider_needs_secret(self):
        with pytest.raises(ConfigurationError):
            Settings({**BASE, "AUTH_PROVIDER": "local"}).validate()

    def test_app_refuses_to_start_without_required_settings(self):
        with pytest.raises(ConfigurationError):
            create_app(Settings({"DATABASE_URL": "sqlite+aiosqlite:///:memory:"}))

    @pytest.mark.parametrize(
        "name", ["PORT", "HTTP_TIMEOUT_SECONDS", "JWKS_CACHE_SECONDS", "DB_POOL_SIZE", "DB_MAX_OVERFLOW", "DB_TIMEOUT_SECONDS"]
    )
    def test_non_numeric_setting(self, name):
        with pytest.raises(ConfigurationError) as info:
            Settings({**BASE, name: "lots"})
        assert info.value.details["invalid"] == [name]

    def test_blank_numeric_setting_uses_default(self):
        assert Settings({**BASE, "PORT": " "}).port == 3001


class TestMain:
    @pytest.fixture(autouse=True)
    def fresh_settings(self):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    def test_bad_port_refuses_to_start(self, monkeypatch):
        for name, value in BASE.items():
            monkeypatch.setenv(name, value)
        monkeypatch.setenv("PORT", "eighty")
        with pytest.raises(SystemExit) as info:
            main()
        assert info.value.code == 1

    def test_missing_settings_refuses_to_start(self, monkeypatch):
        for name in (*BASE, "AUTH0_DOMAIN", "AUTH0_AUDIENCE"):
            monkeypatch.delenv(name, raising=False)
        with pytest.raises(SystemExit) as info:
            main()
        assert info.value.code == 1


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db/orders", "postgresql+asyncpg://u:p@db/orders"),
        ("postgres://u:p@db/orders", "postgresql+asyncpg://u:p@db/orders"),
        ("postgresql+asyncpg://u:p@db/orders", "postgresql+asyncpg://u:p@db/orders"),
        ("sqlite+aiosqlite:///orders.db", "sqlite+aiosqlite:///orders.db"),
    ],
)
def test_async_url(url, expected):
    assert async_url(url) == expected
