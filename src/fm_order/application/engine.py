"""OrderEngine — public operations on the order aggregate.

Every mutating operation goes through `_mutate`: load the order with its
version, apply a synchronous mutator to a deep copy, then write it back with
a compare-and-swap on `version`. A lost race reloads and re-applies the
mutator against fresh state, up to ORDER_MAX_RETRIES times. Mutators return
False for "nothing to do", in which case nothing is written.

Side effects (conversation, chat messages, notifications, payment release)
are never performed here: mutators queue intents on an Effects object and
the store commits them with the order. The outbox dispatcher delivers them.
"""
import asyncio
import copy
import logging
import random
from collections.abc import AsyncIterator, Callable
from datetime import datetime
from typing import Any

from config.settings import settings
from src.fm_collab.domain.protocols import IdentityLookupProtocol, UserProfile
from src.fm_common.cents import cents_to_display, scale_half_up
from src.fm_common.datetime_utils import from_iso, utc_now
from src.fm_common.enums import (
    ActorRole,
    EscrowStatus,
    OrderStatus,
    OutboxKind,
    PaymentStatus,
    TimelineEventType,
)
from src.fm_common.errors import (
    ConcurrentModificationError,
    DependencyError,
    InvalidStateTransitionError,
    MilestoneNotFoundError,
    OrderNotFoundError,
    PaymentNotFoundError,
    PermissionDeniedError,
    ValidationError,
    VersionConflictError,
)
from src.fm_common.id_generator import generate_order_id
from src.fm_milestone.domain import manager
from src.fm_milestone.domain.models import DeliverableDraft, Milestone
from src.fm_milestone.domain.planner import plan_milestones
from src.fm_order.domain.models import Order, OrderDraft, OrderFilters, OrderStats
from src.fm_order.domain.repository import ListCursor, OrderStoreProtocol
from src.fm_order.domain.state_machine import check_transition
from src.fm_outbox.domain.models import Effects
from src.fm_payment.domain.ledger import SYSTEM_ACTOR, PaymentLedger
from src.fm_payment.domain.models import Payment
from src.fm_timeline.domain.models import TimelineEvent
from src.fm_timeline.domain.recorder import append, record

logger = logging.getLogger(__name__)

# A mutator edits the working copy in place and queues side effects.
# Returning False means "no change": nothing is written.
Mutator = Callable[[Order, Effects], bool]

PATCHABLE_FIELDS = frozenset({"status", "deadline", "metadata"})

_ACTIVE_BUCKET = frozenset(
    {OrderStatus.IN_PROGRESS, OrderStatus.REVIEW, OrderStatus.REVISION, OrderStatus.PAUSED}
)


def _cursor_of(order: Order) -> ListCursor:
    return (order.last_activity or order.created_at or utc_now(), order.order_id)


class OrderListing:
    """Lazy, finite, restartable listing of one user's orders.

    Each `async for` starts again from the first page; pages are fetched from
    the store on demand with a keyset cursor, so orders created while a
    listing is being consumed never shift rows already returned.
    """

    def __init__(
        self,
        store: OrderStoreProtocol,
        user_id: str,
        role: ActorRole,
        filters: OrderFilters,
        page_size: int,
    ) -> None:
        self._store = store
        self._user_id = user_id
        self._role = role
        self._filters = filters
        self._page_size = page_size

    def __aiter__(self) -> AsyncIterator[Order]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Order]:
        cursor: ListCursor | None = None
        while True:
            orders = await self._store.query(
                self._user_id, self._role, self._filters, self._page_size, after=cursor
            )
            for order in orders:
                yield order
            if len(orders) < self._page_size:
                return
            cursor = _cursor_of(orders[-1])

    async def page(
        self, limit: int, after: ListCursor | None = None
    ) -> tuple[list[Order], ListCursor | None]:
        """One page plus the cursor for the next one (None when exhausted)."""
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        orders = await self._store.query(
            self._user_id, self._role, self._filters, limit + 1, after=after
        )
        has_more = len(orders) > limit
        page = orders[:limit]
        next_cursor = _cursor_of(page[-1]) if has_more and page else None
        return page, next_cursor


class OrderEngine:
    def __init__(
        self,
        store: OrderStoreProtocol | None = None,
        ledger: PaymentLedger | None = None,
        identity: IdentityLookupProtocol | None = None,
        max_retries: int | None = None,
        settle_inline: bool | None = None,
    ) -> None:
        if store is None:
            from src.fm_order.infrastructure.persistence import SqlOrderStore

            store = SqlOrderStore()
        self._store: OrderStoreProtocol = store
        self._ledger = ledger or PaymentLedger(settings.PLATFORM_FEE_BPS)
        self._identity = identity
        self._max_retries = max_retries if max_retries is not None else settings.ORDER_MAX_RETRIES
        self._settle_inline = (
            settle_inline if settle_inline is not None else settings.SETTLE_RELEASES_INLINE
        )

    @property
    def store(self) -> OrderStoreProtocol:
        return self._store

    # ------------------------------------------------------------------
    # Optimistic-concurrency core
    # ------------------------------------------------------------------

    async def _load(self, order_id: str) -> Order:
        order = await self._store.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def _mutate(self, order_id: str, action: str, mutator: Mutator) -> Order:
        for attempt in range(1, self._max_retries + 1):
            current = await self._load(order_id)
            working = copy.deepcopy(current)
            effects = Effects()
            if not mutator(working, effects):
                return current

            now = utc_now()
            working.progress = manager.compute_progress(working.milestones)
            working.updated_at = now
            working.last_activity = now
            try:
                saved = await self._store.update(working, current.version, effects.intents)
            except VersionConflictError:
                logger.debug(
                    "Version conflict on %s (%s), attempt %d/%d",
                    order_id, action, attempt, self._max_retries,
                )
                await asyncio.sleep(random.uniform(0, 0.005) * attempt)
                continue
            logger.info(
                "Order %s %s committed: status=%s version=%d",
                order_id, action, saved.status.value, saved.version,
            )
            return saved

        logger.warning(
            "Giving up on %s for order %s after %d conflicting attempts",
            action, order_id, self._max_retries,
        )
        raise ConcurrentModificationError(order_id, self._max_retries)

    # ------------------------------------------------------------------
    # Shared mutation helpers (run inside mutators)
    # ------------------------------------------------------------------

    @staticmethod
    def _party_role(order: Order, actor_id: str) -> ActorRole:
        role = order.role_of(actor_id)
        if role == ActorRole.SYSTEM:
            raise PermissionDeniedError(f"{actor_id} is not a party to order {order.order_id}")
        return role

    @staticmethod
    def _require_client(order: Order, actor_id: str) -> None:
        if actor_id != order.client_id:
            raise PermissionDeniedError(f"only the client of {order.order_id} may do this")

    @staticmethod
    def _require_worker(order: Order, actor_id: str) -> None:
        if order.worker_id is None or actor_id != order.worker_id:
            raise PermissionDeniedError(
                f"only the assigned worker of {order.order_id} may do this"
            )

    @staticmethod
    def _require_workable(order: Order) -> None:
        if order.is_terminal or order.status == OrderStatus.PAUSED:
            raise InvalidStateTransitionError(
                f"order {order.order_id} is {order.status.value}; milestones and payments "
                "cannot change"
            )

    @staticmethod
    def _milestone(order: Order, milestone_id: str) -> Milestone:
        milestone = manager.find_milestone(order.milestones, milestone_id)
        if milestone is None:
            raise MilestoneNotFoundError(order.order_id, milestone_id)
        return milestone

    def _payment(self, order: Order, payment_id: str) -> Payment:
        payment = self._ledger.find(order.payments, payment_id)
        if payment is None:
            raise PaymentNotFoundError(order.order_id, payment_id)
        return payment

    def _change_status(
        self,
        order: Order,
        target: OrderStatus,
        actor_id: str,
        actor_role: ActorRole,
        effects: Effects,
        reason: str | None = None,
    ) -> None:
        check_transition(order.status, target)
        if target == OrderStatus.REVIEW and manager.has_outstanding(order.milestones):
            raise InvalidStateTransitionError(
                f"order {order.order_id} still has outstanding milestones"
            )
        previous = order.status
        now = utc_now()
        order.status = target
        if target == OrderStatus.IN_PROGRESS and order.started_at is None:
            order.started_at = now
        if target == OrderStatus.COMPLETED:
            order.completed_at = now
        record(
            order.timeline,
            TimelineEventType.STATUS_CHANGED,
            f"Status changed to {target.value}",
            reason or f"Order status changed from {previous.value} to {target.value}",
            actor_id,
            actor_role,
            {"old_status": previous.value, "new_status": target.value},
        )
        effects.notify(
            order.order_id,
            order.counterparty_of(actor_role),
            "Order Status Updated",
            f'"{order.title}" status changed to {target.value}',
            "order_status_change",
        )
        effects.message(
            order.order_id, actor_id, f"Order status updated to {target.value.upper()}"
        )

    def _release_milestone_payment(
        self, order: Order, milestone: Milestone, actor_id: str, effects: Effects
    ) -> None:
        payment = self._ledger.for_milestone(order.payments, milestone.id)
        if payment is not None:
            self._release_or_request(order, payment, actor_id, ActorRole.CLIENT, effects)

    def _release_or_request(
        self,
        order: Order,
        payment: Payment,
        actor_id: str,
        actor_role: ActorRole,
        effects: Effects,
    ) -> bool:
        """Start releasing a held payment: inline settlement, or queue it for the settlement worker."""
        if not payment.is_releasable or payment.status == PaymentStatus.PROCESSING:
            return False
        self._ledger.request_release(payment, order.timeline, actor_id, actor_role)
        if self._settle_inline:
            self._ledger.release(payment, order.timeline)
            self._notify_released(order, payment, effects)
        else:
            effects.add(
                order.order_id,
                OutboxKind.PAYMENT_RELEASE,
                payment_id=payment.id,
                amount=payment.worker_receives,
                currency=payment.currency,
            )
        return True

    @staticmethod
    def _notify_released(order: Order, payment: Payment, effects: Effects) -> None:
        effects.notify(
            order.order_id,
            order.worker_id,
            "Payment Released",
            f"{cents_to_display(payment.worker_receives, payment.currency)} for "
            f'"{order.title}" has been released to your account',
            "payment_released",
        )

    def _complete(self, order: Order, actor_id: str, actor_role: ActorRole, effects: Effects) -> None:
        self._change_status(
            order, OrderStatus.COMPLETED, actor_id, actor_role, effects,
            reason="All milestones approved and final payment released",
        )
        total = cents_to_display(order.total_amount, order.currency)
        effects.notify(
            order.order_id,
            order.worker_id,
            "Project Completed",
            f'"{order.title}" has been completed. Final payment of {total} has been released.',
            "order_completed",
        )
        effects.notify(
            order.order_id,
            order.client_id,
            "Project Completed",
            f'"{order.title}" has been completed.',
            "order_completed",
        )
        effects.message(
            order.order_id,
            SYSTEM_ACTOR,
            f'Project completed: "{order.title}". Final payment of {total} has been released.',
        )

    def _finalize(self, order: Order, actor_id: str, effects: Effects) -> None:
        """Approve what is left, release every held payment, complete the order."""
        check_transition(order.status, OrderStatus.COMPLETED)
        for milestone in order.milestones:
            if manager.approve(milestone, order.timeline, actor_id, milestone.amount):
                self._release_milestone_payment(order, milestone, actor_id, effects)
        for payment in order.payments:
            self._release_or_request(order, payment, actor_id, ActorRole.CLIENT, effects)
        self._complete(order, actor_id, ActorRole.CLIENT, effects)

    def _refund_held(
        self, order: Order, actor_id: str, actor_role: ActorRole, effects: Effects
    ) -> int:
        refunded = 0
        for payment in order.payments:
            if payment.held_amount and payment.status == PaymentStatus.PENDING:
                refunded += self._ledger.refund(payment, order.timeline, actor_id, actor_role)
        if refunded:
            effects.notify(
                order.order_id,
                order.client_id,
                "Payment Refunded",
                f"{cents_to_display(refunded, order.currency)} held for "
                f'"{order.title}" has been returned',
                "payment_refunded",
            )
        return refunded

    async def _lookup_profile(self, user_id: str | None) -> UserProfile | None:
        if user_id is None or self._identity is None:
            return None
        try:
            return await self._identity.get_user(user_id)
        except DependencyError as exc:
            logger.warning("Identity lookup failed for %s: %s", user_id, exc.message)
            return None

    # ------------------------------------------------------------------
    # Order operations
    # ------------------------------------------------------------------

    async def create_order(self, draft: OrderDraft) -> Order:
        if not draft.title or not draft.title.strip():
            raise ValidationError("title must not be empty")
        if not draft.client_id:
            raise ValidationError("client_id is required")
        if draft.total_amount <= 0:
            raise ValidationError(f"total_amount must be positive, got {draft.total_amount}")
        currency = (draft.currency or settings.DEFAULT_CURRENCY).upper()
        if currency not in settings.SUPPORTED_CURRENCIES:
            raise ValidationError(f"unsupported currency: {currency}")
        if draft.worker_id is not None and draft.worker_id == draft.client_id:
            raise ValidationError("client and worker must be different users")

        milestones = plan_milestones(draft.total_amount, draft.milestones)
        client = await self._lookup_profile(draft.client_id)
        worker = await self._lookup_profile(draft.worker_id)

        now = utc_now()
        order_id = generate_order_id(draft.type.value)
        order = Order(
            order_id=order_id,
            type=draft.type,
            title=draft.title.strip(),
            description=draft.description,
            client_id=draft.client_id,
            worker_type=draft.worker_type,
            total_amount=draft.total_amount,
            currency=currency,
            platform_fee_bps=self._ledger.fee_bps,
            category=draft.category,
            priority=draft.priority,
            skills=list(draft.skills),
            requirements=list(draft.requirements),
            metadata=dict(draft.metadata),
            client_name=client.name if client else "Client",
            client_avatar=client.avatar if client else None,
            worker_id=draft.worker_id,
            worker_name=worker.name if worker else None,
            worker_avatar=worker.avatar if worker else None,
            milestones=milestones,
            created_at=now,
            updated_at=now,
            deadline=draft.deadline,
            last_activity=now,
        )
        # Full amount into escrow: one held tranche per paid milestone
        order.payments = [
            self._ledger.create_escrow_payment(
                order_id, m.amount, currency, milestone_id=m.id, description=f"Escrow: {m.title}"
            )
            for m in milestones
            if m.amount > 0
        ]
        record(
            order.timeline,
            TimelineEventType.CREATED,
            "Order Created",
            f"{draft.type.value.replace('_', ' ')} order created",
            draft.client_id,
            ActorRole.CLIENT,
            {
                "order_type": draft.type.value,
                "total_amount": order.total_amount,
                "currency": currency,
                "worker_id": order.worker_id,
                "milestone_ids": [m.id for m in milestones],
            },
        )

        effects = Effects()
        effects.add(
            order_id,
            OutboxKind.CONVERSATION_CREATE,
            participant_ids=[p for p in (order.client_id, order.worker_id) if p],
            title=order.title,
            kind="order",
            metadata={"order_id": order_id, "order_type": order.type.value},
        )
        effects.message(
            order_id,
            order.client_id,
            f"New {order.type.value.replace('_', ' ')} order created: {order.title}\n\n"
            f"{order.description}\n\nTotal: {cents_to_display(order.total_amount, currency)}",
        )
        effects.notify(
            order_id,
            order.worker_id,
            "New Order Assigned",
            f'You have been assigned to work on "{order.title}"',
            "order_assigned",
        )
        saved = await self._store.create(order, effects.intents)
        logger.info(
            "Order created: %s client=%s total=%s",
            order_id, order.client_id, cents_to_display(order.total_amount, currency),
        )
        return saved

    async def get_order(self, order_id: str) -> Order:
        return await self._load(order_id)

    def list_orders(
        self,
        user_id: str,
        role: ActorRole,
        filters: OrderFilters | None = None,
        page_size: int | None = None,
    ) -> OrderListing:
        if role == ActorRole.SYSTEM:
            raise ValidationError("role must be client or worker")
        return OrderListing(
            self._store,
            user_id,
            role,
            filters or OrderFilters(),
            page_size or settings.LIST_PAGE_SIZE,
        )

    async def get_order_stats(self, user_id: str, role: ActorRole) -> OrderStats:
        counts = {"total": 0, "pending": 0, "in_progress": 0, "completed": 0, "cancelled": 0}
        total_value = 0
        async for order in self.list_orders(user_id, role):
            counts["total"] += 1
            total_value += order.total_amount
            if order.status == OrderStatus.PENDING:
                counts["pending"] += 1
            elif order.status in _ACTIVE_BUCKET:
                counts["in_progress"] += 1
            elif order.status == OrderStatus.COMPLETED:
                counts["completed"] += 1
            elif order.status == OrderStatus.CANCELLED:
                counts["cancelled"] += 1
        average = scale_half_up(total_value, 1, counts["total"]) if counts["total"] else 0
        return OrderStats(
            total_value=total_value,
            average_value=average,
            currency=settings.DEFAULT_CURRENCY,
            **counts,
        )

    async def update_order(
        self,
        order_id: str,
        patch: dict[str, Any],
        actor_id: str,
        actor_role: ActorRole | None = None,
    ) -> Order:
        unknown = set(patch) - PATCHABLE_FIELDS
        if unknown:
            raise ValidationError(f"fields not updatable: {', '.join(sorted(unknown))}")
        target = _parse_status(patch["status"]) if "status" in patch else None
        deadline = _parse_deadline(patch["deadline"]) if "deadline" in patch else None
        metadata = patch.get("metadata")
        if metadata is not None and not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")

        def mutate(order: Order, effects: Effects) -> bool:
            role = actor_role or self._party_role(order, actor_id)
            changed = False
            if "deadline" in patch and order.deadline != deadline:
                order.deadline = deadline
                changed = True
            if metadata:
                merged = {**order.metadata, **metadata}
                if merged != order.metadata:
                    order.metadata = merged
                    changed = True
            if target is not None and target != order.status:
                if target == OrderStatus.COMPLETED:
                    if role == ActorRole.WORKER:
                        raise PermissionDeniedError("only the client can complete an order")
                    self._finalize(order, actor_id, effects)
                elif target == OrderStatus.CANCELLED:
                    check_transition(order.status, target)
                    self._refund_held(order, actor_id, role, effects)
                    self._change_status(order, target, actor_id, role, effects)
                else:
                    self._change_status(order, target, actor_id, role, effects)
                changed = True
            return changed

        return await self._mutate(order_id, "update", mutate)

    async def assign_worker(self, order_id: str, worker_id: str, actor_id: str) -> Order:
        if not worker_id:
            raise ValidationError("worker_id is required")
        profile = await self._lookup_profile(worker_id)

        def mutate(order: Order, effects: Effects) -> bool:
            self._require_client(order, actor_id)
            if order.worker_id == worker_id:
                return False
            if worker_id == order.client_id:
                raise ValidationError("client and worker must be different users")
            if order.worker_id is not None:
                raise InvalidStateTransitionError(
                    f"order {order_id} already has worker {order.worker_id}"
                )
            if order.status != OrderStatus.PENDING:
                raise InvalidStateTransitionError(
                    f"workers can only be assigned to pending orders, order is {order.status.value}"
                )
            order.worker_id = worker_id
            order.worker_name = profile.name if profile else None
            order.worker_avatar = profile.avatar if profile else None
            record(
                order.timeline,
                TimelineEventType.WORKER_ASSIGNED,
                "Worker assigned",
                f"{order.worker_name or worker_id} assigned to the order",
                actor_id,
                ActorRole.CLIENT,
                {"worker_id": worker_id},
            )
            effects.notify(
                order_id,
                worker_id,
                "New Order Assigned",
                f'You have been assigned to work on "{order.title}"',
                "order_assigned",
            )
            return True

        return await self._mutate(order_id, "assign_worker", mutate)

    async def attach_conversation(self, order_id: str, conversation_id: str) -> Order:
        """Set once; later calls (including with a different id) change nothing."""

        def mutate(order: Order, effects: Effects) -> bool:
            if order.conversation_id is not None:
                return False
            order.conversation_id = conversation_id
            return True

        return await self._mutate(order_id, "attach_conversation", mutate)

    async def append_timeline_event(self, order_id: str, event: TimelineEvent) -> Order:
        """Record an externally produced event; re-sending the same event id is a no-op."""

        def mutate(order: Order, effects: Effects) -> bool:
            if any(existing.id == event.id for existing in order.timeline):
                return False
            append(order.timeline, event)
            return True

        return await self._mutate(order_id, "append_timeline_event", mutate)

    # ------------------------------------------------------------------
    # Milestone operations
    # ------------------------------------------------------------------

    async def complete_milestone(
        self,
        order_id: str,
        milestone_id: str,
        actor_id: str,
        deliverables: list[DeliverableDraft] | None = None,
    ) -> Order:
        def mutate(order: Order, effects: Effects) -> bool:
            self._require_worker(order, actor_id)
            self._require_workable(order)
            milestone = self._milestone(order, milestone_id)
            if order.status in (OrderStatus.PENDING, OrderStatus.REVISION):
                self._change_status(
                    order, OrderStatus.IN_PROGRESS, actor_id, ActorRole.WORKER, effects
                )
            manager.complete(milestone, order.timeline, actor_id, ActorRole.WORKER, deliverables)
            effects.notify(
                order_id,
                order.client_id,
                "Milestone Completed",
                f'"{milestone.title}" has been completed',
                "milestone_completed",
            )
            count = len(milestone.deliverables)
            effects.message(
                order_id,
                actor_id,
                f"Milestone completed: {milestone.title}\n\n"
                + (f"{count} deliverable(s) submitted" if count else "No deliverables"),
            )
            if not manager.has_outstanding(order.milestones):
                self._change_status(
                    order, OrderStatus.REVIEW, actor_id, ActorRole.WORKER, effects
                )
            return True

        return await self._mutate(order_id, "complete_milestone", mutate)

    async def approve_milestone(
        self,
        order_id: str,
        milestone_id: str,
        actor_id: str,
        feedback: str | None = None,
        rating: int | None = None,
    ) -> Order:
        def mutate(order: Order, effects: Effects) -> bool:
            self._require_client(order, actor_id)
            milestone = self._milestone(order, milestone_id)
            if milestone.is_approved:
                return False
            self._require_workable(order)
            manager.approve(milestone, order.timeline, actor_id, milestone.amount, feedback, rating)
            self._release_milestone_payment(order, milestone, actor_id, effects)
            paid = (
                f" Payment of {cents_to_display(milestone.amount, order.currency)} is being processed."
                if milestone.amount
                else ""
            )
            effects.notify(
                order_id,
                order.worker_id,
                "Milestone Approved",
                f'"{milestone.title}" has been approved!{paid}',
                "milestone_approved",
            )
            effects.message(
                order_id,
                actor_id,
                f"Milestone approved: {milestone.title}\n\n{feedback or 'Great work!'}{paid}",
            )
            if order.status == OrderStatus.REVIEW and manager.all_approved(order.milestones):
                self._complete(order, actor_id, ActorRole.CLIENT, effects)
            return True

        return await self._mutate(order_id, "approve_milestone", mutate)

    async def reject_milestone(
        self, order_id: str, milestone_id: str, actor_id: str, reason: str
    ) -> Order:
        if not reason or not reason.strip():
            raise ValidationError("rejection reason must not be empty")

        def mutate(order: Order, effects: Effects) -> bool:
            self._require_client(order, actor_id)
            self._require_workable(order)
            milestone = self._milestone(order, milestone_id)
            manager.reject(milestone, order.timeline, actor_id, reason)
            if order.status != OrderStatus.REVISION:
                self._change_status(
                    order, OrderStatus.REVISION, actor_id, ActorRole.CLIENT, effects,
                    reason=f"Revision requested for {milestone.title}",
                )
            effects.notify(
                order_id,
                order.worker_id,
                "Revision Requested",
                f'"{milestone.title}" needs revision',
                "milestone_rejected",
            )
            effects.message(
                order_id,
                actor_id,
                f"Revision requested for: {milestone.title}\n\nFeedback:\n{reason.strip()}",
            )
            return True

        return await self._mutate(order_id, "reject_milestone", mutate)

    async def release_final_payment(self, order_id: str, actor_id: str) -> Order:
        def mutate(order: Order, effects: Effects) -> bool:
            self._require_client(order, actor_id)
            if order.status != OrderStatus.REVIEW:
                raise InvalidStateTransitionError(
                    f"final payment needs an order in review, order is {order.status.value}"
                )
            self._finalize(order, actor_id, effects)
            return True

        return await self._mutate(order_id, "release_final_payment", mutate)

    # ------------------------------------------------------------------
    # Payment operations
    # ------------------------------------------------------------------

    async def request_payment_release(
        self, order_id: str, payment_id: str, actor_id: str
    ) -> Order:
        """Client-initiated release of one held payment (also retries a failed release)."""

        def mutate(order: Order, effects: Effects) -> bool:
            self._require_client(order, actor_id)
            payment = self._payment(order, payment_id)
            if payment.is_release_requested or payment.escrow_status == EscrowStatus.RELEASED:
                return False
            # A failed release may be retried even on a finished order
            if payment.status != PaymentStatus.FAILED:
                self._require_workable(order)
            if not self._release_or_request(order, payment, actor_id, ActorRole.CLIENT, effects):
                raise InvalidStateTransitionError(
                    f"payment {payment_id} is {payment.status.value}/"
                    f"{payment.escrow_status.value}; cannot release"
                )
            return True

        return await self._mutate(order_id, "request_payment_release", mutate)

    async def release_payment(
        self, order_id: str, payment_id: str, transaction_id: str | None = None
    ) -> Order:
        """Settlement: held -> released. Already-released payments are left untouched."""

        def mutate(order: Order, effects: Effects) -> bool:
            payment = self._payment(order, payment_id)
            if not self._ledger.release(payment, order.timeline, transaction_id):
                return False
            self._notify_released(order, payment, effects)
            return True

        return await self._mutate(order_id, "release_payment", mutate)

    async def mark_payment_failed(self, order_id: str, payment_id: str, reason: str) -> Order:
        def mutate(order: Order, effects: Effects) -> bool:
            payment = self._payment(order, payment_id)
            return self._ledger.fail_release(payment, reason)

        return await self._mutate(order_id, "mark_payment_failed", mutate)

    async def refund_payment(
        self,
        order_id: str,
        payment_id: str,
        actor_id: str,
        amount: int | None = None,
    ) -> Order:
        def mutate(order: Order, effects: Effects) -> bool:
            role = self._party_role(order, actor_id)
            if order.is_terminal:
                raise InvalidStateTransitionError(
                    f"order {order_id} is {order.status.value}; payments cannot change"
                )
            payment = self._payment(order, payment_id)
            refunded = self._ledger.refund(payment, order.timeline, actor_id, role, amount)
            effects.notify(
                order_id,
                order.client_id,
                "Payment Refunded",
                f"{cents_to_display(refunded, payment.currency)} held for "
                f'"{order.title}" has been returned',
                "payment_refunded",
            )
            return True

        return await self._mutate(order_id, "refund_payment", mutate)

    async def dispute_payment(
        self, order_id: str, payment_id: str, actor_id: str, reason: str
    ) -> Order:
        if not reason or not reason.strip():
            raise ValidationError("dispute reason must not be empty")

        def mutate(order: Order, effects: Effects) -> bool:
            role = self._party_role(order, actor_id)
            if order.status == OrderStatus.CANCELLED:
                raise InvalidStateTransitionError(
                    f"order {order_id} is cancelled; payments cannot change"
                )
            payment = self._payment(order, payment_id)
            self._ledger.dispute(payment, order.timeline, actor_id, role, reason)
            effects.notify(
                order_id,
                order.counterparty_of(role),
                "Payment Disputed",
                f'A payment on "{order.title}" has been disputed: {reason.strip()}',
                "payment_disputed",
            )
            return True

        return await self._mutate(order_id, "dispute_payment", mutate)


def _parse_status(value: Any) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(f"unknown status: {value}") from None


def _parse_deadline(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return from_iso(str(value))
    except ValueError:
        raise ValidationError(f"deadline is not an ISO-8601 timestamp: {value}") from None
