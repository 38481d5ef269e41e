# src/fm_order/infrastructure/persistence.py
"""SqlOrderStore — raw SQL persistence implementation for PostgreSQL.

One row per order; milestones / payments / timeline live in JSONB columns
so the whole aggregate is written by a single conditional UPDATE:

    UPDATE orders SET ..., version = version + 1
    WHERE order_id = :order_id AND version = :expected_version

Zero rows back means another writer won the race (VersionConflictError).
Outbox rows are inserted in the same transaction as the order write.

Transaction ownership: each store call opens its own session and commits
or rolls back before returning; the engine never holds a transaction open
across its read-modify-write loop.
"""
import json
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import settings
from src.fm_common.datetime_utils import from_iso, to_iso
from src.fm_common.enums import ActorRole
from src.fm_common.errors import PersistenceError, VersionConflictError
from src.fm_order.domain.models import Order, OrderFilters
from src.fm_order.domain.repository import ListCursor
from src.fm_order.infrastructure.codec import (
    order_to_record,
    record_to_order,
    record_to_outbox,
)
from src.fm_outbox.domain.models import OutboxMessage

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_ORDER_COLUMNS = """
    order_id, version, type, title, description, status, progress, priority,
    total_amount, currency, platform_fee_bps, category,
    skills, requirements, metadata,
    client_id, client_name, client_avatar,
    worker_id, worker_name, worker_avatar, worker_type,
    milestones, payments, timeline, conversation_id,
    created_at, updated_at, started_at, completed_at, deadline, last_activity
"""

_INSERT_ORDER_SQL = text("""
    INSERT INTO orders (order_id, version, type, title, description, status, progress,
        priority, total_amount, currency, platform_fee_bps, category,
        skills, requirements, metadata,
        client_id, client_name, client_avatar,
        worker_id, worker_name, worker_avatar, worker_type,
        milestones, payments, timeline, conversation_id,
        created_at, updated_at, started_at, completed_at, deadline, last_activity)
    VALUES (:order_id, 1, :type, :title, :description, :status, :progress,
        :priority, :total_amount, :currency, :platform_fee_bps, :category,
        CAST(:skills AS JSONB), CAST(:requirements AS JSONB), CAST(:metadata AS JSONB),
        :client_id, :client_name, :client_avatar,
        :worker_id, :worker_name, :worker_avatar, :worker_type,
        CAST(:milestones AS JSONB), CAST(:payments AS JSONB), CAST(:timeline AS JSONB),
        :conversation_id,
        :created_at, :updated_at, :started_at, :completed_at, :deadline, :last_activity)
""")

_UPDATE_ORDER_SQL = text("""
    UPDATE orders
    SET status = :status, progress = :progress, priority = :priority,
        metadata = CAST(:metadata AS JSONB),
        worker_id = :worker_id, worker_name = :worker_name, worker_avatar = :worker_avatar,
        milestones = CAST(:milestones AS JSONB),
        payments = CAST(:payments AS JSONB),
        timeline = CAST(:timeline AS JSONB),
        conversation_id = :conversation_id,
        updated_at = :updated_at, started_at = :started_at, completed_at = :completed_at,
        deadline = :deadline, last_activity = :last_activity,
        version = version + 1
    WHERE order_id = :order_id AND version = :expected_version
    RETURNING version
""")

_GET_ORDER_SQL = text(f"""
    SELECT {_ORDER_COLUMNS}
    FROM orders WHERE order_id = :order_id
""")

# Party column is picked from a fixed whitelist, never from caller input
_LIST_ORDERS_SQL = {
    party: text(f"""
        SELECT {_ORDER_COLUMNS}
        FROM orders
        WHERE {party} = :user_id
          AND (CAST(:status AS TEXT) IS NULL OR status = CAST(:status AS TEXT))
          AND (CAST(:type AS TEXT) IS NULL OR type = CAST(:type AS TEXT))
          AND (CAST(:category AS TEXT) IS NULL OR category = CAST(:category AS TEXT))
          AND (
              CAST(:cursor_ts AS TIMESTAMPTZ) IS NULL
              OR last_activity < CAST(:cursor_ts AS TIMESTAMPTZ)
              OR (
                  last_activity = CAST(:cursor_ts AS TIMESTAMPTZ)
                  AND order_id < CAST(:cursor_id AS TEXT)
              )
          )
        ORDER BY last_activity DESC, order_id DESC
        LIMIT :limit
    """)
    for party in ("client_id", "worker_id")
}

_INSERT_OUTBOX_SQL = text("""
    INSERT INTO order_outbox (id, order_id, kind, payload, status, attempts,
        created_at, next_attempt_at)
    VALUES (:id, :order_id, :kind, CAST(:payload AS JSONB), :status, :attempts,
        :created_at, :next_attempt_at)
""")

# Claims due rows by pushing next_attempt_at past the lease; SKIP LOCKED keeps
# concurrent dispatchers on disjoint rows.
_CLAIM_DUE_OUTBOX_SQL = text("""
    UPDATE order_outbox
    SET next_attempt_at = :lease_until
    WHERE id IN (
        SELECT id FROM order_outbox
        WHERE status = 'pending' AND next_attempt_at <= :now
        ORDER BY created_at, id
        LIMIT :limit
        FOR UPDATE SKIP LOCKED
    )
    RETURNING id, order_id, kind, payload, status, attempts, last_error,
              created_at, next_attempt_at, delivered_at
""")

_SAVE_OUTBOX_SQL = text("""
    UPDATE order_outbox
    SET status = :status, attempts = :attempts, last_error = :last_error,
        payload = CAST(:payload AS JSONB),
        next_attempt_at = :next_attempt_at, delivered_at = :delivered_at
    WHERE id = :id
""")


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------

_JSON_COLUMNS = ("skills", "requirements", "metadata", "milestones", "payments", "timeline")
_TS_COLUMNS = (
    "created_at", "updated_at", "started_at", "completed_at", "deadline", "last_activity"
)


def _load_json(value: Any) -> Any:
    """asyncpg hands JSONB back as str for text() queries; tolerate decoded values too."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


def _row_to_order(row: Any) -> Order:
    """Convert a DB result row to an Order via the codec record shape."""
    record: dict[str, Any] = {
        col: getattr(row, col)
        for col in (
            "order_id", "version", "type", "title", "description", "status", "progress",
            "priority", "total_amount", "currency", "platform_fee_bps", "category",
            "client_id", "client_name", "client_avatar",
            "worker_id", "worker_name", "worker_avatar", "worker_type", "conversation_id",
        )
    }
    for col in _JSON_COLUMNS:
        record[col] = _load_json(getattr(row, col))
    for col in _TS_COLUMNS:
        record[col] = to_iso(getattr(row, col))
    return record_to_order(record)


def _row_to_outbox(row: Any) -> OutboxMessage:
    return record_to_outbox({
        "id": row.id,
        "order_id": row.order_id,
        "kind": row.kind,
        "payload": _load_json(row.payload),
        "status": row.status,
        "attempts": row.attempts,
        "last_error": row.last_error,
        "created_at": to_iso(row.created_at),
        "next_attempt_at": to_iso(row.next_attempt_at),
        "delivered_at": to_iso(row.delivered_at),
    })


def _order_params(order: Order) -> dict[str, Any]:
    record = order_to_record(order)
    params = dict(record)
    for col in _JSON_COLUMNS:
        params[col] = json.dumps(record[col])
    for col in _TS_COLUMNS:
        params[col] = from_iso(record[col])
    return params


def _outbox_params(message: OutboxMessage) -> dict[str, Any]:
    return {
        "id": message.id,
        "order_id": message.order_id,
        "kind": message.kind.value,
        "payload": json.dumps(message.payload),
        "status": message.status.value,
        "attempts": message.attempts,
        "last_error": message.last_error,
        "created_at": message.created_at,
        "next_attempt_at": message.next_attempt_at,
        "delivered_at": message.delivered_at,
    }


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SqlOrderStore:
    """Concrete implementation of OrderStoreProtocol using raw SQL."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        claim_seconds: float | None = None,
    ) -> None:
        if session_factory is None:
            from src.fm_common.database import async_session_factory

            session_factory = async_session_factory
        self._session_factory = session_factory
        self._claim_seconds = (
            claim_seconds if claim_seconds is not None else settings.OUTBOX_CLAIM_SECONDS
        )

    async def get(self, order_id: str) -> Order | None:
        async with self._session_factory() as db:
            try:
                result = await db.execute(_GET_ORDER_SQL, {"order_id": order_id})
                row = result.fetchone()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"load {order_id}: {exc}") from exc
        return _row_to_order(row) if row else None

    async def create(self, order: Order, outbox: list[OutboxMessage]) -> Order:
        async with self._session_factory() as db:
            try:
                await db.execute(_INSERT_ORDER_SQL, _order_params(order))
                await self._insert_outbox(db, outbox)
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                raise PersistenceError(f"create {order.order_id}: {exc}") from exc
        order.version = 1
        return order

    async def update(
        self, order: Order, expected_version: int, outbox: list[OutboxMessage]
    ) -> Order:
        params = _order_params(order)
        params["expected_version"] = expected_version
        async with self._session_factory() as db:
            try:
                result = await db.execute(_UPDATE_ORDER_SQL, params)
                row = result.fetchone()
                if row is None:
                    await db.rollback()
                    raise VersionConflictError(order.order_id, expected_version)
                await self._insert_outbox(db, outbox)
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                raise PersistenceError(f"update {order.order_id}: {exc}") from exc
        order.version = row.version
        return order

    async def query(
        self,
        user_id: str,
        role: ActorRole,
        filters: OrderFilters,
        limit: int,
        after: ListCursor | None = None,
    ) -> list[Order]:
        party = "worker_id" if role == ActorRole.WORKER else "client_id"
        params = {
            "user_id": user_id,
            "status": filters.status.value if filters.status else None,
            "type": filters.type.value if filters.type else None,
            "category": filters.category,
            "cursor_ts": after[0] if after else None,
            "cursor_id": after[1] if after else None,
            "limit": limit,
        }
        async with self._session_factory() as db:
            try:
                result = await db.execute(_LIST_ORDERS_SQL[party], params)
                rows = result.fetchall()
            except SQLAlchemyError as exc:
                raise PersistenceError(f"query orders for {user_id}: {exc}") from exc
        return [_row_to_order(row) for row in rows]

    async def fetch_due_outbox(self, now: datetime, limit: int) -> list[OutboxMessage]:
        """Claim up to `limit` due intents for OUTBOX_CLAIM_SECONDS.

        A claimed row is invisible to other dispatchers until the lease runs
        out, so replicas never deliver the same intent twice; save_outbox
        replaces the lease with the real next attempt time.
        """
        params = {
            "now": now,
            "limit": limit,
            "lease_until": now + timedelta(seconds=self._claim_seconds),
        }
        async with self._session_factory() as db:
            try:
                result = await db.execute(_CLAIM_DUE_OUTBOX_SQL, params)
                rows = result.fetchall()
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                raise PersistenceError(f"claim outbox: {exc}") from exc
        messages = [_row_to_outbox(row) for row in rows]
        messages.sort(key=lambda m: (m.created_at or now, m.id))
        return messages

    async def save_outbox(self, message: OutboxMessage) -> None:
        async with self._session_factory() as db:
            try:
                await db.execute(_SAVE_OUTBOX_SQL, _outbox_params(message))
                await db.commit()
            except SQLAlchemyError as exc:
                await db.rollback()
                raise PersistenceError(f"save outbox {message.id}: {exc}") from exc

    @staticmethod
    async def _insert_outbox(db: AsyncSession, outbox: list[OutboxMessage]) -> None:
        for message in outbox:
            await db.execute(_INSERT_OUTBOX_SQL, _outbox_params(message))
