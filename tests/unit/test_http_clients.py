"""Tests for the httpx collaborator adapters, using httpx.MockTransport."""

import json

import httpx
import pytest

from src.fm_collab.infrastructure.http_clients import (
    HttpConversationService,
    HttpIdentityLookup,
    HttpNotificationService,
    HttpPaymentProcessor,
)
from src.fm_common.errors import DependencyError


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://collab")


class TestConversationService:
    async def test_get_or_create_posts_and_returns_id(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": "conv-9"})

        service = HttpConversationService(_client(handler))
        conversation_id = await service.get_or_create(["c1", "w1"], "Logo", "order", {"k": 1})

        assert conversation_id == "conv-9"
        assert seen[0].method == "POST"
        assert seen[0].url.path == "/conversations"
        assert json.loads(seen[0].content) == {
            "participant_ids": ["c1", "w1"],
            "title": "Logo",
            "kind": "order",
            "metadata": {"k": 1},
        }

    async def test_missing_id_is_dependency_error(self) -> None:
        service = HttpConversationService(_client(lambda r: httpx.Response(200, json={})))
        with pytest.raises(DependencyError) as exc_info:
            await service.get_or_create(["c1"], "Logo", "order", {})
        assert exc_info.value.service == "conversation"

    async def test_post_message_accepts_empty_body(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        service = HttpConversationService(_client(handler))
        await service.post_message("conv-9", "c1", "hello", "system")

        assert seen[0].url.path == "/conversations/conv-9/messages"
        assert json.loads(seen[0].content)["content"] == "hello"


class TestNotificationService:
    async def test_server_error_is_dependency_error(self) -> None:
        service = HttpNotificationService(_client(lambda r: httpx.Response(503)))
        with pytest.raises(DependencyError) as exc_info:
            await service.notify("w1", "t", "b", "order_assigned", "/orders/JOB-1")
        assert exc_info.value.http_status == 502
        assert "503" in exc_info.value.message

    async def test_transport_error_is_dependency_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        service = HttpNotificationService(_client(handler))
        with pytest.raises(DependencyError) as exc_info:
            await service.notify("w1", "t", "b", "order_assigned", None)
        assert exc_info.value.service == "notification"


    async def test_non_json_body_is_dependency_error(self) -> None:
        service = HttpNotificationService(
            _client(lambda r: httpx.Response(200, content=b"<html>ok</html>"))
        )
        with pytest.raises(DependencyError) as exc_info:
            await service.notify("w1", "t", "b", "order_assigned", None)
        assert "non-JSON" in exc_info.value.message


class TestIdentityLookup:
    async def test_list_body_is_dependency_error(self) -> None:
        lookup = HttpIdentityLookup(_client(lambda r: httpx.Response(200, json=["w1"])))
        with pytest.raises(DependencyError) as exc_info:
            await lookup.get_user("w1")
        assert "expected object" in exc_info.value.message

    async def test_found(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/users/w1"
            return httpx.Response(200, json={"name": "Wren", "avatar": "w.png"})

        profile = await HttpIdentityLookup(_client(handler)).get_user("w1")

        assert profile.user_id == "w1"
        assert profile.name == "Wren"
        assert profile.avatar == "w.png"

    async def test_not_found_is_none(self) -> None:
        lookup = HttpIdentityLookup(_client(lambda r: httpx.Response(404)))
        assert await lookup.get_user("ghost") is None

    async def test_nameless_profile_gets_default(self) -> None:
        lookup = HttpIdentityLookup(_client(lambda r: httpx.Response(200, json={})))
        profile = await lookup.get_user("c1")
        assert profile.name == "Client"


class TestPaymentProcessor:
    async def test_release_returns_transaction_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body == {"order_id": "JOB-1", "payment_id": "p1", "amount": 950, "currency": "USD"}
            return httpx.Response(200, json={"transaction_id": "tx-1"})

        processor = HttpPaymentProcessor(_client(handler))
        assert await processor.release("JOB-1", "p1", 950, "USD") == "tx-1"

    async def test_declined(self) -> None:
        processor = HttpPaymentProcessor(_client(lambda r: httpx.Response(402)))
        with pytest.raises(DependencyError):
            await processor.release("JOB-1", "p1", 950, "USD")

    async def test_aclose(self) -> None:
        client = _client(lambda r: httpx.Response(200))
        await HttpPaymentProcessor(client).aclose()
        assert client.is_closed
