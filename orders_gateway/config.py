import os
from functools import lru_cache
from typing import Mapping

from orders_gateway.errors import ConfigurationError


def _flag(value: str | None, default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _number(env: Mapping[str, str], name: str, default, cast):
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return cast(raw.strip())
    except ValueError:
        raise ConfigurationError(
            f"{name} must be a number, got {raw!r}",
            details={"invalid": [name]},
        ) from None


class Settings:
    def __init__(self, env: Mapping[str, str] = os.environ) -> None:
        self.port: int = _number(env, "PORT", 3001, int)
        self.cors_origins: list[str] = [
            o.strip() for o in env.get("CORS_ORIGINS", "").split(",") if o.strip()
        ]

        # identity provider
        self.auth_provider: str = env.get("AUTH_PROVIDER", "auth0").strip().lower()
        self.issuer_base_url: str | None = env.get("AUTH_ISSUER_BASE_URL") or (
            f"https://{env['AUTH0_DOMAIN']}/" if env.get("AUTH0_DOMAIN") else None
        )
        self.audience: str | None = env.get("AUTH_AUDIENCE") or env.get("AUTH0_AUDIENCE")
        self.mgmt_client_id: str | None = env.get("MGMT_CLIENT_ID") or None
        self.mgmt_client_secret: str | None = env.get("MGMT_CLIENT_SECRET") or None
        self.local_signing_secret: str | None = env.get("LOCAL_SIGNING_SECRET") or None
        self.http_timeout: float = _number(env, "HTTP_TIMEOUT_SECONDS", 5.0, float)
        self.jwks_cache_seconds: int = _number(env, "JWKS_CACHE_SECONDS", 600, int)
        self.profile_enrichment: bool = _flag(env.get("PROFILE_ENRICHMENT"), True)

        # storage
        self.database_url: str | None = env.get("DATABASE_URL") or None
        self.database_ssl: bool = _flag(env.get("DATABASE_SSL"), False)
        self.db_pool_size: int = _number(env, "DB_POOL_SIZE", 5, int)
        self.db_max_overflow: int = _number(env, "DB_MAX_OVERFLOW", 10, int)
        self.db_timeout: float = _number(env, "DB_TIMEOUT_SECONDS", 10.0, float)

        self.log_level: str = env.get("LOG_LEVEL", "info")

    @property
    def issuer(self) -> str:
        """Authority base URL with exactly one trailing slash."""
        return (self.issuer_base_url or "").rstrip("/") + "/"

    def validate(self) -> "Settings":
        missing = [
            name
            for name, value in (
                ("AUTH_ISSUER_BASE_URL", self.issuer_base_url),
                ("AUTH_AUDIENCE", self.audience),
                ("DATABASE_URL", self.database_url),
            )
            if not value
        ]
        if self.auth_provider == "local" and not self.local_signing_secret:
            missing.append("LOCAL_SIGNING_SECRET")
        if missing:
            raise ConfigurationError(
                f"Missing required settings: {', '.join(missing)}",
                details={"missing": missing},
            )
        return self


@lru_cache
def get_settings() -> Settings:
    return Settings()
