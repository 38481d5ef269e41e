"""httpx adapters for the collaborator services.

All four services live behind COLLABORATOR_BASE_URL. Transport errors,
non-2xx answers and bodies that are not a JSON object become
DependencyError so callers can tell a collaborator outage apart from their
own failures.
"""
import logging
from typing import Any

import httpx

from config.settings import settings
from src.fm_collab.domain.protocols import UserProfile
from src.fm_common.errors import DependencyError

logger = logging.getLogger(__name__)


class _CollaboratorClient:
    service = "collaborator"

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.COLLABORATOR_BASE_URL,
            timeout=settings.COLLABORATOR_TIMEOUT_SECONDS,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        json: dict[str, Any] | None = None,
        allow_not_found: bool = False,
    ) -> dict[str, Any] | None:
        try:
            response = await self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            logger.warning("%s %s %s failed: %s", self.service, method, path, exc)
            raise DependencyError(self.service, str(exc) or type(exc).__name__) from exc
        if allow_not_found and response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise DependencyError(
                self.service, f"{method} {path} returned {response.status_code}"
            )
        if not response.content:
            return {}
        try:
            body = response.json()
        except ValueError as exc:
            raise DependencyError(
                self.service, f"{method} {path} returned a non-JSON body"
            ) from exc
        if not isinstance(body, dict):
            raise DependencyError(
                self.service, f"{method} {path} returned {type(body).__name__}, expected object"
            )
        return body


class HttpConversationService(_CollaboratorClient):
    service = "conversation"

    async def get_or_create(
        self,
        participant_ids: list[str],
        title: str,
        kind: str,
        metadata: dict[str, Any],
    ) -> str:
        body = await self._request(
            "POST",
            "/conversations",
            json={
                "participant_ids": participant_ids,
                "title": title,
                "kind": kind,
                "metadata": metadata,
            },
        )
        conversation_id = (body or {}).get("id")
        if not conversation_id:
            raise DependencyError(self.service, "response carried no conversation id")
        return str(conversation_id)

    async def post_message(
        self, conversation_id: str, sender_id: str, content: str, kind: str
    ) -> None:
        await self._request(
            "POST",
            f"/conversations/{conversation_id}/messages",
            json={"sender_id": sender_id, "content": content, "kind": kind},
        )


class HttpNotificationService(_CollaboratorClient):
    service = "notification"

    async def notify(
        self, user_id: str, title: str, body: str, kind: str, action_ref: str | None
    ) -> None:
        await self._request(
            "POST",
            "/notifications",
            json={
                "user_id": user_id,
                "title": title,
                "body": body,
                "kind": kind,
                "action_ref": action_ref,
            },
        )


class HttpIdentityLookup(_CollaboratorClient):
    service = "identity"

    async def get_user(self, user_id: str) -> UserProfile | None:
        body = await self._request("GET", f"/users/{user_id}", allow_not_found=True)
        if body is None:
            return None
        return UserProfile(
            user_id=user_id,
            name=body.get("name") or "Client",
            avatar=body.get("avatar"),
        )


class HttpPaymentProcessor(_CollaboratorClient):
    service = "payments"

    async def release(self, order_id: str, payment_id: str, amount: int, currency: str) -> str:
        body = await self._request(
            "POST",
            "/payments/releases",
            json={
                "order_id": order_id,
                "payment_id": payment_id,
                "amount": amount,
                "currency": currency,
            },
        )
        transaction_id = (body or {}).get("transaction_id")
        if not transaction_id:
            raise DependencyError(self.service, "response carried no transaction id")
        return str(transaction_id)
