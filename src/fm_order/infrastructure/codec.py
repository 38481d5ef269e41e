# src/fm_order/infrastructure/codec.py
"""Order <-> persistence record mapping.

A record is a plain dict of JSON-safe values (str / int / float / bool /
None / list / dict): datetimes become ISO-8601 strings and enums their
values. Nested milestones, payments and timeline events are lists of dicts,
stored natively as JSONB by the SQL store. decode(encode(order)) == order.
"""
from typing import Any

from src.fm_common.datetime_utils import from_iso, to_iso
from src.fm_common.enums import (
    ActorRole,
    DeliverableKind,
    EscrowStatus,
    MilestoneStatus,
    OrderPriority,
    OrderStatus,
    OrderType,
    OutboxKind,
    OutboxStatus,
    PaymentStatus,
    TimelineEventType,
    WorkerType,
)
from src.fm_milestone.domain.models import Deliverable, Milestone
from src.fm_order.domain.models import Order
from src.fm_outbox.domain.models import OutboxMessage
from src.fm_payment.domain.models import Payment
from src.fm_timeline.domain.models import TimelineEvent

# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


def _deliverable_to_record(d: Deliverable) -> dict[str, Any]:
    return {
        "id": d.id,
        "name": d.name,
        "locator": d.locator,
        "kind": d.kind.value,
        "uploaded_at": to_iso(d.uploaded_at),
        "uploaded_by": d.uploaded_by,
        "description": d.description,
    }


def _record_to_deliverable(r: dict[str, Any]) -> Deliverable:
    return Deliverable(
        id=r["id"],
        name=r["name"],
        locator=r["locator"],
        kind=DeliverableKind(r["kind"]),
        uploaded_at=from_iso(r["uploaded_at"]),  # type: ignore[arg-type]
        uploaded_by=r["uploaded_by"],
        description=r.get("description"),
    )


def milestone_to_record(m: Milestone) -> dict[str, Any]:
    return {
        "id": m.id,
        "title": m.title,
        "description": m.description,
        "amount": m.amount,
        "percentage": m.percentage,
        "status": m.status.value,
        "due_date": to_iso(m.due_date),
        "completed_at": to_iso(m.completed_at),
        "deliverables": [_deliverable_to_record(d) for d in m.deliverables],
        "feedback": m.feedback,
        "rating": m.rating,
        "approved_by": m.approved_by,
        "approved_at": to_iso(m.approved_at),
        "rejected_at": to_iso(m.rejected_at),
        "rejection_reason": m.rejection_reason,
        "auto_approve": m.auto_approve,
    }


def record_to_milestone(r: dict[str, Any]) -> Milestone:
    return Milestone(
        id=r["id"],
        title=r["title"],
        description=r.get("description", ""),
        amount=r.get("amount", 0),
        percentage=r.get("percentage", 0.0),
        status=MilestoneStatus(r["status"]),
        due_date=from_iso(r.get("due_date")),
        completed_at=from_iso(r.get("completed_at")),
        deliverables=[_record_to_deliverable(d) for d in r.get("deliverables", [])],
        feedback=r.get("feedback"),
        rating=r.get("rating"),
        approved_by=r.get("approved_by"),
        approved_at=from_iso(r.get("approved_at")),
        rejected_at=from_iso(r.get("rejected_at")),
        rejection_reason=r.get("rejection_reason"),
        auto_approve=r.get("auto_approve", False),
    )


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def payment_to_record(p: Payment) -> dict[str, Any]:
    return {
        "id": p.id,
        "order_id": p.order_id,
        "milestone_id": p.milestone_id,
        "amount": p.amount,
        "currency": p.currency,
        "platform_fee": p.platform_fee,
        "worker_receives": p.worker_receives,
        "description": p.description,
        "status": p.status.value,
        "escrow_status": p.escrow_status.value,
        "refunded_amount": p.refunded_amount,
        "transaction_id": p.transaction_id,
        "failure_reason": p.failure_reason,
        "dispute_reason": p.dispute_reason,
        "created_at": to_iso(p.created_at),
        "processed_at": to_iso(p.processed_at),
        "released_at": to_iso(p.released_at),
        "refunded_at": to_iso(p.refunded_at),
        "disputed_at": to_iso(p.disputed_at),
    }


def record_to_payment(r: dict[str, Any]) -> Payment:
    return Payment(
        id=r["id"],
        order_id=r["order_id"],
        milestone_id=r.get("milestone_id"),
        amount=r["amount"],
        currency=r["currency"],
        platform_fee=r["platform_fee"],
        worker_receives=r["worker_receives"],
        description=r.get("description", ""),
        status=PaymentStatus(r["status"]),
        escrow_status=EscrowStatus(r["escrow_status"]),
        refunded_amount=r.get("refunded_amount", 0),
        transaction_id=r.get("transaction_id"),
        failure_reason=r.get("failure_reason"),
        dispute_reason=r.get("dispute_reason"),
        created_at=from_iso(r.get("created_at")),
        processed_at=from_iso(r.get("processed_at")),
        released_at=from_iso(r.get("released_at")),
        refunded_at=from_iso(r.get("refunded_at")),
        disputed_at=from_iso(r.get("disputed_at")),
    )


# ---------------------------------------------------------------------------
# Timeline
# ---------------------------------------------------------------------------


def event_to_record(e: TimelineEvent) -> dict[str, Any]:
    return {
        "id": e.id,
        "type": e.type.value,
        "title": e.title,
        "description": e.description,
        "timestamp": to_iso(e.timestamp),
        "actor_id": e.actor_id,
        "actor_role": e.actor_role.value,
        "data": e.data,
    }


def record_to_event(r: dict[str, Any]) -> TimelineEvent:
    return TimelineEvent(
        id=r["id"],
        type=TimelineEventType(r["type"]),
        title=r["title"],
        description=r["description"],
        timestamp=from_iso(r["timestamp"]),  # type: ignore[arg-type]
        actor_id=r["actor_id"],
        actor_role=ActorRole(r["actor_role"]),
        data=r.get("data") or {},
    )


# ---------------------------------------------------------------------------
# Order
# ---------------------------------------------------------------------------


def order_to_record(order: Order) -> dict[str, Any]:
    return {
        "order_id": order.order_id,
        "version": order.version,
        "type": order.type.value,
        "title": order.title,
        "description": order.description,
        "status": order.status.value,
        "progress": order.progress,
        "priority": order.priority.value,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "platform_fee_bps": order.platform_fee_bps,
        "category": order.category,
        "skills": list(order.skills),
        "requirements": list(order.requirements),
        "metadata": dict(order.metadata),
        "client_id": order.client_id,
        "client_name": order.client_name,
        "client_avatar": order.client_avatar,
        "worker_id": order.worker_id,
        "worker_name": order.worker_name,
        "worker_avatar": order.worker_avatar,
        "worker_type": order.worker_type.value,
        "milestones": [milestone_to_record(m) for m in order.milestones],
        "payments": [payment_to_record(p) for p in order.payments],
        "timeline": [event_to_record(e) for e in order.timeline],
        "conversation_id": order.conversation_id,
        "created_at": to_iso(order.created_at),
        "updated_at": to_iso(order.updated_at),
        "started_at": to_iso(order.started_at),
        "completed_at": to_iso(order.completed_at),
        "deadline": to_iso(order.deadline),
        "last_activity": to_iso(order.last_activity),
    }


def record_to_order(r: dict[str, Any]) -> Order:
    return Order(
        order_id=r["order_id"],
        version=r["version"],
        type=OrderType(r["type"]),
        title=r["title"],
        description=r["description"],
        status=OrderStatus(r["status"]),
        progress=r["progress"],
        priority=OrderPriority(r.get("priority", OrderPriority.MEDIUM.value)),
        total_amount=r["total_amount"],
        currency=r["currency"],
        platform_fee_bps=r["platform_fee_bps"],
        category=r.get("category", ""),
        skills=list(r.get("skills") or []),
        requirements=list(r.get("requirements") or []),
        metadata=dict(r.get("metadata") or {}),
        client_id=r["client_id"],
        client_name=r.get("client_name") or "Client",
        client_avatar=r.get("client_avatar"),
        worker_id=r.get("worker_id"),
        worker_name=r.get("worker_name"),
        worker_avatar=r.get("worker_avatar"),
        worker_type=WorkerType(r["worker_type"]),
        milestones=[record_to_milestone(m) for m in r.get("milestones") or []],
        payments=[record_to_payment(p) for p in r.get("payments") or []],
        timeline=[record_to_event(e) for e in r.get("timeline") or []],
        conversation_id=r.get("conversation_id"),
        created_at=from_iso(r.get("created_at")),
        updated_at=from_iso(r.get("updated_at")),
        started_at=from_iso(r.get("started_at")),
        completed_at=from_iso(r.get("completed_at")),
        deadline=from_iso(r.get("deadline")),
        last_activity=from_iso(r.get("last_activity")),
    )


# ---------------------------------------------------------------------------
# Outbox
# ---------------------------------------------------------------------------


def outbox_to_record(m: OutboxMessage) -> dict[str, Any]:
    return {
        "id": m.id,
        "order_id": m.order_id,
        "kind": m.kind.value,
        "payload": m.payload,
        "status": m.status.value,
        "attempts": m.attempts,
        "last_error": m.last_error,
        "created_at": to_iso(m.created_at),
        "next_attempt_at": to_iso(m.next_attempt_at),
        "delivered_at": to_iso(m.delivered_at),
    }


def record_to_outbox(r: dict[str, Any]) -> OutboxMessage:
    return OutboxMessage(
        id=r["id"],
        order_id=r["order_id"],
        kind=OutboxKind(r["kind"]),
        payload=dict(r.get("payload") or {}),
        status=OutboxStatus(r["status"]),
        attempts=r.get("attempts", 0),
        last_error=r.get("last_error"),
        created_at=from_iso(r.get("created_at")),
        next_attempt_at=from_iso(r.get("next_attempt_at")),
        delivered_at=from_iso(r.get("delivered_at")),
    )
