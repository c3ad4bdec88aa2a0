"""
SQLAlchemy models for the `users` / `orders` tables.
Additional columns?  Add them here once and they'll migrate automatically on
next start (for simple additions; for complex DDL use Alembic later).
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped

from orders_gateway.db import Base


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = Column(Integer, primary_key=True, autoincrement=True)
    external_subject: Mapped[str] = Column(Text, unique=True, nullable=False)
    email: Mapped[str | None] = Column(Text, nullable=True)   # advisory only


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = Column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    items: Mapped[list[dict[str, Any]]] = Column(
        JSON().with_variant(JSONB(), "postgresql"), nullable=False
    )
    total: Mapped[Decimal] = Column(Numeric(10, 2), nullable=False)
    address: Mapped[str | None] = Column(Text, nullable=True)
    created_at: Mapped[datetime] = Column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
