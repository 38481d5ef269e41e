"""Outbox domain model — side-effect intents committed together with an order change."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.fm_common.datetime_utils import utc_now
from src.fm_common.enums import OutboxKind, OutboxStatus
from src.fm_common.id_generator import generate_id


@dataclass
class OutboxMessage:
    id: str
    order_id: str
    kind: OutboxKind
    payload: dict[str, Any]
    status: OutboxStatus = OutboxStatus.PENDING
    attempts: int = 0
    last_error: str | None = None
    created_at: datetime | None = None
    next_attempt_at: datetime | None = None
    delivered_at: datetime | None = None


def new_intent(order_id: str, intent_kind: OutboxKind, **payload: Any) -> OutboxMessage:
    now = utc_now()
    return OutboxMessage(
        id=generate_id(),
        order_id=order_id,
        kind=intent_kind,
        payload=payload,
        created_at=now,
        next_attempt_at=now,
    )


@dataclass
class Effects:
    """Intents collected while a mutation runs; discarded if the write loses its CAS."""
    intents: list[OutboxMessage] = field(default_factory=list)

    def add(self, order_id: str, intent_kind: OutboxKind, **payload: Any) -> None:
        self.intents.append(new_intent(order_id, intent_kind, **payload))

    def notify(
        self,
        order_id: str,
        user_id: str | None,
        title: str,
        body: str,
        kind: str,
        action_ref: str | None = None,
    ) -> None:
        if user_id:
            self.add(
                order_id,
                OutboxKind.NOTIFICATION,
                user_id=user_id,
                title=title,
                body=body,
                kind=kind,
                action_ref=action_ref or f"/orders/{order_id}",
            )

    def message(self, order_id: str, sender_id: str, content: str, kind: str = "system") -> None:
        self.add(
            order_id,
            OutboxKind.CONVERSATION_MESSAGE,
            sender_id=sender_id,
            content=content,
            kind=kind,
        )
