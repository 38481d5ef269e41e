# src/fm_order/infrastructure/memory_store.py
"""InMemoryOrderStore — OrderStoreProtocol backed by encoded records in a dict.

Used by unit tests and local runs without PostgreSQL. Orders are stored as
codec records (never as live objects), so callers can't mutate stored state
by holding a reference, and every read goes through the same decode path as
the SQL store. Each call yields to the event loop once, like a real I/O
round-trip, so concurrent callers interleave.
"""
import asyncio
import copy
from datetime import datetime
from typing import Any

from src.fm_common.datetime_utils import utc_now
from src.fm_common.enums import ActorRole, OutboxStatus
from src.fm_common.errors import PersistenceError, VersionConflictError
from src.fm_order.domain.models import Order, OrderFilters
from src.fm_order.domain.repository import ListCursor
from src.fm_order.infrastructure.codec import (
    order_to_record,
    outbox_to_record,
    record_to_order,
    record_to_outbox,
)
from src.fm_outbox.domain.models import OutboxMessage


class InMemoryOrderStore:
    """Concrete implementation of OrderStoreProtocol without a database."""

    def __init__(self) -> None:
        self._orders: dict[str, dict[str, Any]] = {}
        self._outbox: dict[str, dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    async def get(self, order_id: str) -> Order | None:
        await asyncio.sleep(0)
        record = self._orders.get(order_id)
        return record_to_order(copy.deepcopy(record)) if record else None

    async def create(self, order: Order, outbox: list[OutboxMessage]) -> Order:
        await asyncio.sleep(0)
        async with self._lock:
            if order.order_id in self._orders:
                raise PersistenceError(f"order {order.order_id} already exists")
            order.version = 1
            self._write(order, outbox)
        return order

    async def update(
        self, order: Order, expected_version: int, outbox: list[OutboxMessage]
    ) -> Order:
        await asyncio.sleep(0)
        async with self._lock:
            current = self._orders.get(order.order_id)
            if current is None or current["version"] != expected_version:
                raise VersionConflictError(order.order_id, expected_version)
            order.version = expected_version + 1
            self._write(order, outbox)
        return order

    async def query(
        self,
        user_id: str,
        role: ActorRole,
        filters: OrderFilters,
        limit: int,
        after: ListCursor | None = None,
    ) -> list[Order]:
        await asyncio.sleep(0)
        party_key = "worker_id" if role == ActorRole.WORKER else "client_id"
        rows = [
            r for r in self._orders.values()
            if r[party_key] == user_id
            and (filters.status is None or r["status"] == filters.status.value)
            and (filters.type is None or r["type"] == filters.type.value)
            and (filters.category is None or r["category"] == filters.category)
        ]
        orders = [record_to_order(copy.deepcopy(r)) for r in rows]
        orders.sort(key=_sort_key, reverse=True)
        if after is not None:
            orders = [o for o in orders if _sort_key(o) < after]
        return orders[:limit]

    async def fetch_due_outbox(self, now: datetime, limit: int) -> list[OutboxMessage]:
        await asyncio.sleep(0)
        due = [
            record_to_outbox(copy.deepcopy(r))
            for r in self._outbox.values()
            if r["status"] == OutboxStatus.PENDING.value
        ]
        due = [m for m in due if m.next_attempt_at is None or m.next_attempt_at <= now]
        due.sort(key=lambda m: (m.created_at or now, m.id))
        return due[:limit]

    async def save_outbox(self, message: OutboxMessage) -> None:
        await asyncio.sleep(0)
        self._outbox[message.id] = copy.deepcopy(outbox_to_record(message))

    def outbox_snapshot(self) -> list[OutboxMessage]:
        """Every outbox row regardless of status, oldest first."""
        rows = [record_to_outbox(copy.deepcopy(r)) for r in self._outbox.values()]
        return sorted(rows, key=lambda m: m.id)

    def _write(self, order: Order, outbox: list[OutboxMessage]) -> None:
        self._orders[order.order_id] = copy.deepcopy(order_to_record(order))
        for message in outbox:
            self._outbox[message.id] = copy.deepcopy(outbox_to_record(message))


def _sort_key(order: Order) -> tuple[datetime, str]:
    return (order.last_activity or order.created_at or utc_now(), order.order_id)
