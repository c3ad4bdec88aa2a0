"""
Small helper that:

1. Builds an async SQLAlchemy engine that uses asyncpg under the hood
   (or aiosqlite for throwaway local/test databases).
2. Exposes `Base` for models.
3. Runs `metadata.create_all()` at application start-up so tables appear
   automatically if they're missing.
"""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    create_async_engine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import declarative_base

from orders_gateway.config import Settings
from orders_gateway.logging import get_logger

logger = get_logger("orders_gateway.db")

Base = declarative_base()


def async_url(url: str) -> str:
    """Point plain Postgres URLs at the asyncpg driver."""
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+asyncpg://" + url[len(prefix):]
    return url


# --------------------------------------------------------------------------- #
# Engine / Session factory
# --------------------------------------------------------------------------- #

def build_engine(settings: Settings) -> AsyncEngine:
    url = async_url(settings.database_url or "")
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=False)

    connect_args: dict[str, Any] = {"command_timeout": settings.db_timeout}
    if settings.database_ssl:
        connect_args["ssl"] = "require"
    return create_async_engine(
        url,
        echo=False,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_timeout,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Usage:
        async with sessions() as db:
            await db.execute(...)
    """
    return async_sessionmaker(engine, expire_on_commit=False)


# --------------------------------------------------------------------------- #
# One-shot auto-migration
# --------------------------------------------------------------------------- #

async def create_schema(engine: AsyncEngine) -> None:
    """
    Auto-creates *all* tables defined on `Base`.  No-op if they already exist.
    Called once by FastAPI's lifespan event (see orders_gateway/app.py).
    """
    # tables register themselves on Base at import
    import orders_gateway.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("DB schema ready")
