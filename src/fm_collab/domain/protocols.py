"""Collaborator service contracts consumed by the order engine and outbox dispatcher.

Implementations raise DependencyError on failure; callers on the side-effect
path log and suppress it.
"""
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class UserProfile:
    user_id: str
    name: str
    avatar: str | None = None


class ConversationServiceProtocol(Protocol):
    async def get_or_create(
        self,
        participant_ids: list[str],
        title: str,
        kind: str,
        metadata: dict[str, Any],
    ) -> str: ...

    async def post_message(
        self, conversation_id: str, sender_id: str, content: str, kind: str
    ) -> None: ...


class NotificationServiceProtocol(Protocol):
    async def notify(
        self, user_id: str, title: str, body: str, kind: str, action_ref: str | None
    ) -> None: ...


class IdentityLookupProtocol(Protocol):
    async def get_user(self, user_id: str) -> UserProfile | None: ...


class PaymentProcessorProtocol(Protocol):
    async def release(
        self, order_id: str, payment_id: str, amount: int, currency: str
    ) -> str:
        """Pay out escrowed funds; returns the processor transaction id."""
        ...
