# src/fm_order/domain/repository.py
"""OrderStore Protocol — interface contract for the persistence layer.

The store is the only durable state. Writes are compare-and-swap on
`version`; outbox intents passed to create/update commit in the same
transaction as the order itself.
"""
from datetime import datetime
from typing import Protocol

from src.fm_common.enums import ActorRole
from src.fm_order.domain.models import Order, OrderFilters
from src.fm_outbox.domain.models import OutboxMessage

# Keyset cursor for listing: (last_activity, order_id) of the last row seen
ListCursor = tuple[datetime, str]


class OrderStoreProtocol(Protocol):
    async def get(self, order_id: str) -> Order | None: ...

    async def create(self, order: Order, outbox: list[OutboxMessage]) -> Order:
        """Insert a new order at version 1."""
        ...

    async def update(
        self, order: Order, expected_version: int, outbox: list[OutboxMessage]
    ) -> Order:
        """Write order iff the stored version equals expected_version.

        Raises VersionConflictError when it does not; returns the order at the new version.
        """
        ...

    async def query(
        self,
        user_id: str,
        role: ActorRole,
        filters: OrderFilters,
        limit: int,
        after: ListCursor | None = None,
    ) -> list[Order]:
        """Orders where the user plays `role`, newest last_activity first."""
        ...

    async def fetch_due_outbox(self, now: datetime, limit: int) -> list[OutboxMessage]:
        """Due pending intents, oldest first; a shared store claims them for the caller."""
        ...

    async def save_outbox(self, message: OutboxMessage) -> None: ...
