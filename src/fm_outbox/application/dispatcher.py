"""OutboxDispatcher — delivers side-effect intents committed with order writes.

Each due intent is attempted once per pass. Success marks it delivered;
a failure reschedules it with exponential back-off until
OUTBOX_MAX_ATTEMPTS, after which it is marked dead. Delivery never rolls
back the order change that produced the intent.

Payment releases go through the payment processor and are then settled on
the order with `OrderEngine.release_payment`; a release that dies is
recorded on the payment with `mark_payment_failed` so the client can retry.
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta

from config.settings import settings
from src.fm_collab.domain.protocols import (
    ConversationServiceProtocol,
    NotificationServiceProtocol,
    PaymentProcessorProtocol,
)
from src.fm_common.datetime_utils import utc_now
from src.fm_common.enums import OutboxKind, OutboxStatus, PaymentStatus
from src.fm_common.errors import AppError, DependencyError
from src.fm_order.application.engine import OrderEngine
from src.fm_outbox.domain.models import OutboxMessage

logger = logging.getLogger(__name__)


class OutboxDispatcher:
    def __init__(
        self,
        engine: OrderEngine,
        conversations: ConversationServiceProtocol,
        notifications: NotificationServiceProtocol,
        processor: PaymentProcessorProtocol,
        max_attempts: int | None = None,
        batch_size: int | None = None,
        poll_seconds: float | None = None,
        base_delay: float = 1.0,
        max_delay: float = 300.0,
    ) -> None:
        self._engine = engine
        self._store = engine.store
        self._conversations = conversations
        self._notifications = notifications
        self._processor = processor
        self._max_attempts = max_attempts or settings.OUTBOX_MAX_ATTEMPTS
        self._batch_size = batch_size or settings.OUTBOX_BATCH_SIZE
        self._poll_seconds = (
            poll_seconds if poll_seconds is not None else settings.OUTBOX_POLL_SECONDS
        )
        self._base_delay = base_delay
        self._max_delay = max_delay

    def backoff(self, attempts: int) -> timedelta:
        """Delay before the next try after `attempts` failures, with up to 50% jitter."""
        delay = min(self._max_delay, self._base_delay * (2 ** (attempts - 1)))
        return timedelta(seconds=delay + random.uniform(0, delay / 2))

    async def dispatch_pending(self, now: datetime | None = None) -> int:
        """One pass over due intents. Returns how many were delivered."""
        now = now or utc_now()
        messages = await self._store.fetch_due_outbox(now, self._batch_size)
        delivered = 0
        for message in messages:
            message.attempts += 1
            try:
                await self._deliver(message)
            except AppError as exc:
                await self._record_failure(message, exc.message, now)
                continue
            except Exception as exc:
                logger.exception(
                    "Outbox %s (%s, order=%s) raised unexpectedly",
                    message.id, message.kind.value, message.order_id,
                )
                await self._record_failure(message, f"{type(exc).__name__}: {exc}", now)
                continue
            message.status = OutboxStatus.DELIVERED
            message.delivered_at = utc_now()
            message.last_error = None
            await self._store.save_outbox(message)
            delivered += 1
        return delivered

    async def run_forever(self, stop: asyncio.Event | None = None) -> None:
        stop = stop or asyncio.Event()
        logger.info("Outbox dispatcher started (poll=%ss)", self._poll_seconds)
        while not stop.is_set():
            try:
                delivered = await self.dispatch_pending()
            except Exception:
                logger.exception("Outbox pass failed")
                delivered = 0
            if delivered:
                continue
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Outbox dispatcher stopped")

    # ------------------------------------------------------------------
    # Delivery per intent kind
    # ------------------------------------------------------------------

    async def _deliver(self, message: OutboxMessage) -> None:
        payload = message.payload
        if message.kind == OutboxKind.CONVERSATION_CREATE:
            order = await self._engine.get_order(message.order_id)
            if order.conversation_id is not None:
                return
            conversation_id = await self._conversations.get_or_create(
                payload["participant_ids"],
                payload["title"],
                payload["kind"],
                payload.get("metadata") or {},
            )
            await self._engine.attach_conversation(message.order_id, conversation_id)
        elif message.kind == OutboxKind.CONVERSATION_MESSAGE:
            order = await self._engine.get_order(message.order_id)
            if order.conversation_id is None:
                raise DependencyError("conversation", f"no conversation yet for {order.order_id}")
            await self._conversations.post_message(
                order.conversation_id, payload["sender_id"], payload["content"], payload["kind"]
            )
        elif message.kind == OutboxKind.NOTIFICATION:
            await self._notifications.notify(
                payload["user_id"],
                payload["title"],
                payload["body"],
                payload["kind"],
                payload.get("action_ref"),
            )
        elif message.kind == OutboxKind.PAYMENT_RELEASE:
            await self._settle(message)

    async def _settle(self, message: OutboxMessage) -> None:
        """Pay out a release that is still awaiting settlement.

        Only a held payment in PROCESSING is paid out; once it has been
        disputed, refunded or released elsewhere the intent is spent. The
        processor's transaction id is kept on the intent so a retry after a
        failed settle does not pay twice.
        """
        payment_id = message.payload["payment_id"]
        order = await self._engine.get_order(message.order_id)
        payment = next((p for p in order.payments if p.id == payment_id), None)
        if payment is None or not (
            payment.is_releasable and payment.status == PaymentStatus.PROCESSING
        ):
            logger.info(
                "Skipping release of payment %s (order=%s): %s",
                payment_id,
                message.order_id,
                "gone" if payment is None
                else f"{payment.status.value}/{payment.escrow_status.value}",
            )
            return
        transaction_id = message.payload.get("transaction_id")
        if not transaction_id:
            transaction_id = await self._processor.release(
                message.order_id,
                payment_id,
                message.payload["amount"],
                message.payload["currency"],
            )
            message.payload["transaction_id"] = transaction_id
        await self._engine.release_payment(message.order_id, payment_id, transaction_id)

    async def _record_failure(self, message: OutboxMessage, error: str, now: datetime) -> None:
        message.last_error = error
        if message.attempts >= self._max_attempts:
            message.status = OutboxStatus.DEAD
            logger.error(
                "Outbox %s (%s, order=%s) dead after %d attempts: %s",
                message.id, message.kind.value, message.order_id, message.attempts, error,
            )
            if message.kind == OutboxKind.PAYMENT_RELEASE:
                await self._fail_release(message, error)
        else:
            message.next_attempt_at = now + self.backoff(message.attempts)
            logger.warning(
                "Outbox %s (%s, order=%s) attempt %d failed: %s",
                message.id, message.kind.value, message.order_id, message.attempts, error,
            )
        await self._store.save_outbox(message)

    async def _fail_release(self, message: OutboxMessage, error: str) -> None:
        payment_id = message.payload["payment_id"]
        transaction_id = message.payload.get("transaction_id")
        if transaction_id:
            # Funds already left escrow; a FAILED payment would invite a second payout.
            logger.error(
                "Payment %s (order=%s) paid out as %s but never settled on the order",
                payment_id, message.order_id, transaction_id,
            )
            return
        try:
            await self._engine.mark_payment_failed(message.order_id, payment_id, error)
        except AppError as exc:
            logger.error("Could not mark payment %s failed: %s", payment_id, exc.message)
