"""Tests for OutboxDispatcher — delivery, back-off, dead letters and settlement."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import httpx
import pytest

from src.fm_collab.infrastructure.http_clients import HttpNotificationService
from src.fm_common.datetime_utils import utc_now
from src.fm_common.enums import (
    EscrowStatus,
    OrderType,
    OutboxKind,
    OutboxStatus,
    PaymentStatus,
    WorkerType,
)
from src.fm_common.errors import ConcurrentModificationError, DependencyError
from src.fm_milestone.domain.models import MilestoneDraft
from src.fm_order.application.engine import OrderEngine
from src.fm_order.domain.models import Order, OrderDraft
from src.fm_order.infrastructure.memory_store import InMemoryOrderStore
from src.fm_outbox.application.dispatcher import OutboxDispatcher


def _make_draft() -> OrderDraft:
    return OrderDraft(
        type=OrderType.PROJECT,
        title="Data pipeline",
        description="ETL job",
        client_id="c1",
        worker_type=WorkerType.AI_SPECIALIST,
        total_amount=5000,
        worker_id="w1",
        milestones=[MilestoneDraft(title="Only", amount=5000)],
    )


@pytest.fixture
def collaborators() -> dict[str, AsyncMock]:
    conversations = AsyncMock()
    conversations.get_or_create.return_value = "conv-1"
    processor = AsyncMock()
    processor.release.return_value = "tx-42"
    return {
        "conversations": conversations,
        "notifications": AsyncMock(),
        "processor": processor,
    }


@pytest.fixture
def dispatcher(engine: OrderEngine, collaborators: dict[str, AsyncMock]) -> OutboxDispatcher:
    return OutboxDispatcher(
        engine,
        collaborators["conversations"],
        collaborators["notifications"],
        collaborators["processor"],
        max_attempts=3,
        batch_size=100,
        poll_seconds=0.01,
    )


def _by_kind(store: InMemoryOrderStore, kind: OutboxKind) -> list:
    return [m for m in store.outbox_snapshot() if m.kind == kind]


async def _approved_order(engine: OrderEngine) -> Order:
    order = await engine.create_order(_make_draft())
    mid = order.milestones[0].id
    await engine.complete_milestone(order.order_id, mid, "w1")
    return await engine.approve_milestone(order.order_id, mid, "c1")


class TestDelivery:
    async def test_creation_intents_delivered_in_order(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        order = await engine.create_order(_make_draft())

        delivered = await dispatcher.dispatch_pending()

        assert delivered == 3
        collaborators["conversations"].get_or_create.assert_awaited_once_with(
            ["c1", "w1"],
            "Data pipeline",
            "order",
            {"order_id": order.order_id, "order_type": "project"},
        )
        assert (await engine.get_order(order.order_id)).conversation_id == "conv-1"
        sender, content = collaborators["conversations"].post_message.await_args.args[1:3]
        assert sender == "c1"
        assert content.startswith("New project order created: Data pipeline")
        collaborators["notifications"].notify.assert_awaited_once()
        assert collaborators["notifications"].notify.await_args.args[0] == "w1"
        assert all(m.status == OutboxStatus.DELIVERED for m in store.outbox_snapshot())

    async def test_nothing_due(self, dispatcher: OutboxDispatcher) -> None:
        assert await dispatcher.dispatch_pending() == 0

    async def test_existing_conversation_not_recreated(
        self,
        engine: OrderEngine,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        order = await engine.create_order(_make_draft())
        await engine.attach_conversation(order.order_id, "conv-existing")

        await dispatcher.dispatch_pending()

        collaborators["conversations"].get_or_create.assert_not_awaited()
        assert collaborators["conversations"].post_message.await_args.args[0] == "conv-existing"


class TestRetry:
    async def test_failure_is_rescheduled_with_backoff(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        collaborators["notifications"].notify.side_effect = DependencyError("notification", "503")
        await engine.create_order(_make_draft())
        now = utc_now()

        delivered = await dispatcher.dispatch_pending(now)

        assert delivered == 2
        (notice,) = _by_kind(store, OutboxKind.NOTIFICATION)
        assert notice.status == OutboxStatus.PENDING
        assert notice.attempts == 1
        assert "503" in notice.last_error
        assert now + timedelta(seconds=1) <= notice.next_attempt_at <= now + timedelta(seconds=1.5)
        # not due again until the back-off elapses
        assert await dispatcher.dispatch_pending(now) == 0

    async def test_message_waits_for_conversation(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        collaborators["conversations"].get_or_create.side_effect = DependencyError(
            "conversation", "down"
        )
        await engine.create_order(_make_draft())

        await dispatcher.dispatch_pending()

        (message,) = _by_kind(store, OutboxKind.CONVERSATION_MESSAGE)
        assert message.status == OutboxStatus.PENDING
        assert message.attempts == 1
        collaborators["conversations"].post_message.assert_not_awaited()

    async def test_dead_after_max_attempts(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        collaborators["notifications"].notify.side_effect = DependencyError("notification", "503")
        await engine.create_order(_make_draft())
        now = utc_now()

        for i in range(3):
            await dispatcher.dispatch_pending(now + timedelta(hours=i))

        (notice,) = _by_kind(store, OutboxKind.NOTIFICATION)
        assert notice.status == OutboxStatus.DEAD
        assert notice.attempts == 3
        assert await dispatcher.dispatch_pending(now + timedelta(days=1)) == 0

    async def test_malformed_reply_does_not_block_the_outbox(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        notifications = HttpNotificationService(
            httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda r: httpx.Response(200, content=b"<html>ok</html>")
                ),
                base_url="http://collab",
            )
        )
        dispatcher = OutboxDispatcher(
            engine,
            collaborators["conversations"],
            notifications,
            collaborators["processor"],
            max_attempts=3,
            batch_size=100,
        )
        await engine.create_order(_make_draft())
        now = utc_now()

        for i in range(3):
            await dispatcher.dispatch_pending(now + timedelta(hours=i))

        (notice,) = _by_kind(store, OutboxKind.NOTIFICATION)
        assert notice.status == OutboxStatus.DEAD
        assert notice.attempts == 3
        assert "non-JSON" in notice.last_error
        others = [m for m in store.outbox_snapshot() if m.kind != OutboxKind.NOTIFICATION]
        assert all(m.status == OutboxStatus.DELIVERED for m in others)

    async def test_unexpected_error_counts_as_failed_attempt(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        collaborators["notifications"].notify.side_effect = KeyError("title")
        await engine.create_order(_make_draft())

        delivered = await dispatcher.dispatch_pending()

        assert delivered == 2
        (notice,) = _by_kind(store, OutboxKind.NOTIFICATION)
        assert notice.status == OutboxStatus.PENDING
        assert notice.attempts == 1
        assert notice.last_error.startswith("KeyError")

    def test_backoff_grows_and_caps(self, dispatcher: OutboxDispatcher) -> None:
        assert timedelta(seconds=1) <= dispatcher.backoff(1) <= timedelta(seconds=1.5)
        assert timedelta(seconds=8) <= dispatcher.backoff(4) <= timedelta(seconds=12)
        assert timedelta(seconds=300) <= dispatcher.backoff(30) <= timedelta(seconds=450)


class TestSettlement:
    async def test_release_settles_payment(
        self,
        engine: OrderEngine,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        order = await _approved_order(engine)
        payment = order.payments[0]
        assert payment.status == PaymentStatus.PROCESSING

        await dispatcher.dispatch_pending()

        collaborators["processor"].release.assert_awaited_once_with(
            order.order_id, payment.id, payment.worker_receives, "USD"
        )
        settled = (await engine.get_order(order.order_id)).payments[0]
        assert settled.escrow_status == EscrowStatus.RELEASED
        assert settled.transaction_id == "tx-42"

    async def test_already_released_is_skipped(
        self,
        engine: OrderEngine,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        order = await _approved_order(engine)
        await engine.release_payment(order.order_id, order.payments[0].id, "tx-manual")

        await dispatcher.dispatch_pending()

        collaborators["processor"].release.assert_not_awaited()

    async def test_disputed_payment_is_never_paid_out(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        order = await _approved_order(engine)
        payment_id = order.payments[0].id
        await engine.dispute_payment(order.order_id, payment_id, "c1", "work is plagiarised")
        now = utc_now()

        for i in range(3):
            await dispatcher.dispatch_pending(now + timedelta(hours=i))

        collaborators["processor"].release.assert_not_awaited()
        (release,) = _by_kind(store, OutboxKind.PAYMENT_RELEASE)
        assert release.status == OutboxStatus.DELIVERED
        payment = (await engine.get_order(order.order_id)).payments[0]
        assert payment.status == PaymentStatus.DISPUTED
        assert payment.escrow_status == EscrowStatus.DISPUTED

    async def test_failed_settle_does_not_pay_twice(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        order = await _approved_order(engine)
        real_release = engine.release_payment
        calls = 0

        async def contended_release(order_id, payment_id, transaction_id=None):
            nonlocal calls
            calls += 1
            if calls == 1:
                raise ConcurrentModificationError(order_id, 5)
            return await real_release(order_id, payment_id, transaction_id)

        monkeypatch.setattr(engine, "release_payment", contended_release)
        now = utc_now()

        await dispatcher.dispatch_pending(now)
        (release,) = _by_kind(store, OutboxKind.PAYMENT_RELEASE)
        assert release.status == OutboxStatus.PENDING
        assert release.payload["transaction_id"] == "tx-42"

        await dispatcher.dispatch_pending(now + timedelta(hours=1))

        collaborators["processor"].release.assert_awaited_once()
        settled = (await engine.get_order(order.order_id)).payments[0]
        assert settled.escrow_status == EscrowStatus.RELEASED
        assert settled.transaction_id == "tx-42"

    async def test_dead_release_after_payout_is_not_marked_failed(
        self,
        engine: OrderEngine,
        dispatcher: OutboxDispatcher,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        order = await _approved_order(engine)
        monkeypatch.setattr(
            engine,
            "release_payment",
            AsyncMock(side_effect=ConcurrentModificationError(order.order_id, 5)),
        )
        now = utc_now()

        for i in range(3):
            await dispatcher.dispatch_pending(now + timedelta(hours=i))

        payment = (await engine.get_order(order.order_id)).payments[0]
        assert payment.status == PaymentStatus.PROCESSING
        assert payment.escrow_status == EscrowStatus.HELD

    async def test_dead_release_marks_payment_failed(
        self,
        engine: OrderEngine,
        store: InMemoryOrderStore,
        dispatcher: OutboxDispatcher,
        collaborators: dict[str, AsyncMock],
    ) -> None:
        collaborators["processor"].release.side_effect = DependencyError("payments", "declined")
        order = await _approved_order(engine)
        now = utc_now()

        for i in range(3):
            await dispatcher.dispatch_pending(now + timedelta(hours=i))

        (release,) = _by_kind(store, OutboxKind.PAYMENT_RELEASE)
        assert release.status == OutboxStatus.DEAD
        payment = (await engine.get_order(order.order_id)).payments[0]
        assert payment.status == PaymentStatus.FAILED
        assert payment.escrow_status == EscrowStatus.HELD
        assert "declined" in payment.failure_reason


class TestRunForever:
    async def test_stops_on_event(
        self, engine: OrderEngine, dispatcher: OutboxDispatcher
    ) -> None:
        order = await engine.create_order(_make_draft())
        stop = asyncio.Event()
        task = asyncio.create_task(dispatcher.run_forever(stop))

        for _ in range(100):
            if (await engine.get_order(order.order_id)).conversation_id:
                break
            await asyncio.sleep(0.01)
        stop.set()
        await asyncio.wait_for(task, timeout=1)

        assert (await engine.get_order(order.order_id)).conversation_id == "conv-1"

    async def test_survives_store_errors(
        self, engine: OrderEngine, dispatcher: OutboxDispatcher, store: InMemoryOrderStore
    ) -> None:
        calls = 0
        stop = asyncio.Event()

        async def flaky_fetch(now, limit):
            nonlocal calls
            calls += 1
            if calls >= 2:
                stop.set()
            raise RuntimeError("db down")

        store.fetch_due_outbox = flaky_fetch  # type: ignore[method-assign]

        await asyncio.wait_for(dispatcher.run_forever(stop), timeout=1)

        assert calls >= 2
