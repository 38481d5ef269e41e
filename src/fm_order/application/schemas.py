"""Pydantic schemas and cursor utilities for the orders API."""

import base64
import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.fm_common.cents import cents_to_display
from src.fm_common.datetime_utils import from_iso, to_iso
from src.fm_common.enums import (
    DeliverableKind,
    OrderPriority,
    OrderType,
    WorkerType,
)
from src.fm_milestone.domain.models import DeliverableDraft, Milestone, MilestoneDraft
from src.fm_order.domain.models import Order, OrderDraft, OrderStats
from src.fm_order.domain.repository import ListCursor
from src.fm_payment.domain.models import Payment
from src.fm_timeline.domain.models import TimelineEvent

# ---------------------------------------------------------------------------
# Cursor-based pagination utilities
# ---------------------------------------------------------------------------


def cursor_encode(cursor: ListCursor) -> str:
    """Encode a (last_activity, order_id) keyset position into an opaque URL-safe Base64 string."""
    payload = json.dumps({"ts": to_iso(cursor[0]), "id": cursor[1]})
    return base64.urlsafe_b64encode(payload.encode()).decode()


def cursor_decode(cursor: str | None) -> ListCursor | None:
    """Decode a cursor string back to the keyset position. Returns None on error."""
    if cursor is None:
        return None
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode()).decode())
        ts = from_iso(payload["ts"])
        if ts is None:
            return None
        return (ts, str(payload["id"]))
    except Exception:
        return None


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class MilestoneInput(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    amount_cents: int | None = Field(None, ge=0)
    percentage: float | None = Field(None, ge=0, le=100)
    due_date: datetime | None = None
    auto_approve: bool = False

    def to_draft(self) -> MilestoneDraft:
        return MilestoneDraft(
            title=self.title,
            description=self.description,
            amount=self.amount_cents,
            percentage=self.percentage,
            due_date=self.due_date,
            auto_approve=self.auto_approve,
        )


class CreateOrderRequest(BaseModel):
    type: OrderType
    title: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    worker_type: WorkerType
    total_amount_cents: int = Field(..., gt=0, description="Order total in cents")
    currency: str | None = Field(None, min_length=3, max_length=3)
    category: str = ""
    skills: list[str] = Field(default_factory=list)
    worker_id: str | None = None
    priority: OrderPriority = OrderPriority.MEDIUM
    deadline: datetime | None = None
    requirements: list[str] = Field(default_factory=list)
    milestones: list[MilestoneInput] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_draft(self, client_id: str) -> OrderDraft:
        return OrderDraft(
            type=self.type,
            title=self.title,
            description=self.description,
            client_id=client_id,
            worker_type=self.worker_type,
            total_amount=self.total_amount_cents,
            currency=self.currency,
            category=self.category,
            skills=self.skills,
            worker_id=self.worker_id,
            priority=self.priority,
            deadline=self.deadline,
            requirements=self.requirements,
            milestones=[m.to_draft() for m in self.milestones] if self.milestones else None,
            metadata=self.metadata,
        )


class UpdateOrderRequest(BaseModel):
    # Unknown fields pass through so the engine can reject them by name
    model_config = ConfigDict(extra="allow")

    status: str | None = None
    deadline: datetime | None = None
    metadata: dict[str, Any] | None = None


class AssignWorkerRequest(BaseModel):
    worker_id: str = Field(..., min_length=1)


class DeliverableInput(BaseModel):
    name: str = Field(..., min_length=1)
    locator: str = Field(..., min_length=1, description="URL or storage key")
    kind: DeliverableKind = DeliverableKind.LINK
    description: str | None = None

    def to_draft(self) -> DeliverableDraft:
        return DeliverableDraft(
            name=self.name, locator=self.locator, kind=self.kind, description=self.description
        )


class CompleteMilestoneRequest(BaseModel):
    deliverables: list[DeliverableInput] = Field(default_factory=list)


class ApproveMilestoneRequest(BaseModel):
    feedback: str | None = None
    rating: int | None = Field(None, ge=1, le=5)


class RejectMilestoneRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class RefundPaymentRequest(BaseModel):
    amount_cents: int | None = Field(None, gt=0, description="Omit to refund everything held")


class DisputePaymentRequest(BaseModel):
    reason: str = Field(..., min_length=1)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class DeliverableItem(BaseModel):
    id: str
    name: str
    locator: str
    kind: str
    uploaded_at: str
    uploaded_by: str
    description: str | None


class MilestoneItem(BaseModel):
    id: str
    title: str
    description: str
    status: str
    amount_cents: int
    amount_display: str
    percentage: float
    due_date: str | None
    completed_at: str | None
    deliverables: list[DeliverableItem]
    feedback: str | None
    rating: int | None
    approved_by: str | None
    approved_at: str | None
    rejected_at: str | None
    rejection_reason: str | None

    @classmethod
    def from_milestone(cls, m: Milestone, currency: str) -> "MilestoneItem":
        return cls(
            id=m.id,
            title=m.title,
            description=m.description,
            status=m.status.value,
            amount_cents=m.amount,
            amount_display=cents_to_display(m.amount, currency),
            percentage=m.percentage,
            due_date=to_iso(m.due_date),
            completed_at=to_iso(m.completed_at),
            deliverables=[
                DeliverableItem(
                    id=d.id,
                    name=d.name,
                    locator=d.locator,
                    kind=d.kind.value,
                    uploaded_at=d.uploaded_at.isoformat(),
                    uploaded_by=d.uploaded_by,
                    description=d.description,
                )
                for d in m.deliverables
            ],
            feedback=m.feedback,
            rating=m.rating,
            approved_by=m.approved_by,
            approved_at=to_iso(m.approved_at),
            rejected_at=to_iso(m.rejected_at),
            rejection_reason=m.rejection_reason,
        )


class PaymentItem(BaseModel):
    id: str
    milestone_id: str | None
    status: str
    escrow_status: str
    amount_cents: int
    amount_display: str
    platform_fee_cents: int
    worker_receives_cents: int
    worker_receives_display: str
    refunded_cents: int
    transaction_id: str | None
    description: str
    created_at: str | None
    released_at: str | None

    @classmethod
    def from_payment(cls, p: Payment) -> "PaymentItem":
        return cls(
            id=p.id,
            milestone_id=p.milestone_id,
            status=p.status.value,
            escrow_status=p.escrow_status.value,
            amount_cents=p.amount,
            amount_display=cents_to_display(p.amount, p.currency),
            platform_fee_cents=p.platform_fee,
            worker_receives_cents=p.worker_receives,
            worker_receives_display=cents_to_display(p.worker_receives, p.currency),
            refunded_cents=p.refunded_amount,
            transaction_id=p.transaction_id,
            description=p.description,
            created_at=to_iso(p.created_at),
            released_at=to_iso(p.released_at),
        )


class TimelineItem(BaseModel):
    id: str
    type: str
    title: str
    description: str
    timestamp: str
    actor_id: str
    actor_role: str
    data: dict[str, Any]

    @classmethod
    def from_event(cls, e: TimelineEvent) -> "TimelineItem":
        return cls(
            id=e.id,
            type=e.type.value,
            title=e.title,
            description=e.description,
            timestamp=e.timestamp.isoformat(),
            actor_id=e.actor_id,
            actor_role=e.actor_role.value,
            data=e.data,
        )


class OrderSummary(BaseModel):
    order_id: str
    type: str
    title: str
    status: str
    progress: int
    priority: str
    total_amount_cents: int
    total_amount_display: str
    currency: str
    client_id: str
    client_name: str
    worker_id: str | None
    worker_name: str | None
    category: str
    deadline: str | None
    last_activity: str | None

    @classmethod
    def from_order(cls, o: Order) -> "OrderSummary":
        return cls(
            order_id=o.order_id,
            type=o.type.value,
            title=o.title,
            status=o.status.value,
            progress=o.progress,
            priority=o.priority.value,
            total_amount_cents=o.total_amount,
            total_amount_display=cents_to_display(o.total_amount, o.currency),
            currency=o.currency,
            client_id=o.client_id,
            client_name=o.client_name,
            worker_id=o.worker_id,
            worker_name=o.worker_name,
            category=o.category,
            deadline=to_iso(o.deadline),
            last_activity=to_iso(o.last_activity),
        )


class OrderResponse(OrderSummary):
    version: int
    description: str
    skills: list[str]
    requirements: list[str]
    metadata: dict[str, Any]
    worker_type: str
    client_avatar: str | None
    worker_avatar: str | None
    platform_fee_bps: int
    conversation_id: str | None
    milestones: list[MilestoneItem]
    payments: list[PaymentItem]
    created_at: str | None
    updated_at: str | None
    started_at: str | None
    completed_at: str | None

    @classmethod
    def from_order(cls, o: Order) -> "OrderResponse":
        summary = OrderSummary.from_order(o).model_dump()
        return cls(
            **summary,
            version=o.version,
            description=o.description,
            skills=o.skills,
            requirements=o.requirements,
            metadata=o.metadata,
            worker_type=o.worker_type.value,
            client_avatar=o.client_avatar,
            worker_avatar=o.worker_avatar,
            platform_fee_bps=o.platform_fee_bps,
            conversation_id=o.conversation_id,
            milestones=[MilestoneItem.from_milestone(m, o.currency) for m in o.milestones],
            payments=[PaymentItem.from_payment(p) for p in o.payments],
            created_at=to_iso(o.created_at),
            updated_at=to_iso(o.updated_at),
            started_at=to_iso(o.started_at),
            completed_at=to_iso(o.completed_at),
        )


class OrderListResponse(BaseModel):
    items: list[OrderSummary]
    next_cursor: str | None
    has_more: bool


class TimelineResponse(BaseModel):
    order_id: str
    events: list[TimelineItem]


class OrderStatsResponse(BaseModel):
    total: int
    pending: int
    in_progress: int
    completed: int
    cancelled: int
    total_value_cents: int
    total_value_display: str
    average_value_cents: int
    average_value_display: str
    currency: str

    @classmethod
    def from_stats(cls, s: OrderStats) -> "OrderStatsResponse":
        return cls(
            total=s.total,
            pending=s.pending,
            in_progress=s.in_progress,
            completed=s.completed,
            cancelled=s.cancelled,
            total_value_cents=s.total_value,
            total_value_display=cents_to_display(s.total_value, s.currency),
            average_value_cents=s.average_value,
            average_value_display=cents_to_display(s.average_value, s.currency),
            currency=s.currency,
        )
