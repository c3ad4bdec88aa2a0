"""
Order persistence: idempotent user mapping, append-only order ledger and the
bounded summary projection.

Every public method is one self-contained unit of work: one session, at most
one commit.  SQLAlchemy failures surface as `StorageError`.
"""

from __future__ import annotations

import math
from contextlib import asynccontextmanager
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, AsyncIterator, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orders_gateway.errors import StorageError, ValidationError
from orders_gateway.logging import get_logger
from orders_gateway.models import Order, User, utcnow
from orders_gateway.schema import MAX_ORDER_TOTAL, OrderInfo, OrderSummary

SUMMARY_LIMIT = 5
CENTS = Decimal("0.01")


def _validate_items(items: Any) -> list[dict[str, Any]]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty array")
    cleaned = []
    for n, item in enumerate(items):
        if not isinstance(item, dict):
            raise ValidationError(f"items[{n}] must be an object")
        item_id = item.get("id")
        qty = item.get("qty")
        if not isinstance(item_id, str) or not item_id:
            raise ValidationError(f"items[{n}].id must be a non-empty string")
        if isinstance(qty, bool) or not isinstance(qty, int) or qty <= 0:
            raise ValidationError(f"items[{n}].qty must be a positive integer")
        cleaned.append({"id": item_id, "qty": qty})
    return cleaned


def _validate_total(total: Any) -> Decimal:
    if isinstance(total, bool) or not isinstance(total, (int, float, Decimal)):
        raise ValidationError("total must be a number")
    if isinstance(total, float) and not math.isfinite(total):
        raise ValidationError("total must be finite")
    value = Decimal(str(total))
    if not value.is_finite():
        raise ValidationError("total must be finite")
    if value < 0:
        raise ValidationError("total must be non-negative")
    # bound before quantizing; huge values exceed the context precision
    if value > MAX_ORDER_TOTAL:
        raise ValidationError("total out of range")
    amount = value.quantize(CENTS, rounding=ROUND_HALF_UP)
    if amount > MAX_ORDER_TOTAL:
        raise ValidationError("total out of range")
    return amount


class OrderRepository:
    """Owns the `users` and `orders` lifecycles."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]):
        self._sessions = sessions
        self.logger = get_logger("orders_gateway.repository")

    @asynccontextmanager
    async def _unit(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self._sessions() as db:
            try:
                yield db
            except SQLAlchemyError as exc:
                await db.rollback()
                self.logger.error("Storage operation failed", operation=operation, error=str(exc))
                raise StorageError(details={"operation": operation, "error": str(exc)}) from exc
            except OSError as exc:  # connection refused / timed out below the driver
                await db.rollback()
                self.logger.error("Storage unreachable", operation=operation, error=str(exc))
                raise StorageError(details={"operation": operation, "error": str(exc)}) from exc

    def _insert_for(self, db: AsyncSession):
        dialect = db.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert
        if dialect == "sqlite":
            return sqlite.insert
        raise StorageError(f"Unsupported database dialect: {dialect}")

    # ───────────────────────── users ───────────────────────── #

    async def ensure_user(self, subject: str, email: Optional[str]) -> int:
        """Insert-or-update the user keyed by `subject`; return its id.

        One statement (`INSERT .. ON CONFLICT DO UPDATE .. RETURNING`), so two
        first requests from the same new subject can't race each other.
        """
        async with self._unit("ensure_user") as db:
            insert = self._insert_for(db)
            stmt = insert(User).values(external_subject=subject, email=email or None)
            stmt = stmt.on_conflict_do_update(
                index_elements=[User.external_subject],
                set_={"email": stmt.excluded.email},
            ).returning(User.id)
            user_id = (await db.execute(stmt)).scalar_one()
            await db.commit()
            return user_id

    # ───────────────────────── orders ───────────────────────── #

    async def create_order(
        self,
        user_id: int,
        items: Any,
        total: Any,
        address: Optional[str] = None,
    ) -> OrderInfo:
        """Validate and append one order; return it with id and timestamp."""
        cleaned = _validate_items(items)
        amount = _validate_total(total)
        if address is not None and not isinstance(address, str):
            raise ValidationError("address must be a string")

        async with self._unit("create_order") as db:
            order = Order(
                user_id=user_id,
                items=cleaned,
                total=amount,
                address=address or None,
                created_at=utcnow(),
            )
            db.add(order)
            await db.commit()
            self.logger.info("Order created", order_id=order.id, user_id=user_id)
            return OrderInfo.model_validate(order)

    async def list_orders(self, user_id: int) -> list[OrderInfo]:
        """All orders of the user, most recent first."""
        async with self._unit("list_orders") as db:
            rows: Sequence[Order] = (
                await db.execute(
                    select(Order)
                    .where(Order.user_id == user_id)
                    .order_by(Order.created_at.desc(), Order.id.desc())
                )
            ).scalars().all()
        return [OrderInfo.model_validate(row) for row in rows]

    async def summary(self, subject: str) -> list[OrderSummary]:
        """Up to five most recent orders of `subject`, reduced to id/total/createdAt.

        A subject with no user row yet has no orders; that's an empty list,
        not an error.
        """
        async with self._unit("summary") as db:
            user_id = (
                await db.execute(select(User.id).where(User.external_subject == subject))
            ).scalar_one_or_none()
            if user_id is None:
                return []
            rows = (
                await db.execute(
                    select(Order.id, Order.total, Order.created_at)
                    .where(Order.user_id == user_id)
                    .order_by(Order.created_at.desc(), Order.id.desc())
                    .limit(SUMMARY_LIMIT)
                )
            ).all()
        return [
            OrderSummary(id=row.id, total=row.total, created_at=row.created_at)
            for row in rows
        ]
