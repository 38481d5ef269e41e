"""Order aggregate — pure dataclass, no SQLAlchemy dependency.

The order exclusively owns its milestones, payments and timeline; they are
persisted and versioned together as one record.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.fm_common.enums import (
    ActorRole,
    OrderPriority,
    OrderStatus,
    OrderType,
    WorkerType,
)
from src.fm_milestone.domain.models import Milestone, MilestoneDraft
from src.fm_payment.domain.models import Payment
from src.fm_timeline.domain.models import TimelineEvent

TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


@dataclass
class Order:
    order_id: str
    type: OrderType
    title: str
    description: str
    client_id: str
    worker_type: WorkerType
    total_amount: int  # cents
    currency: str
    platform_fee_bps: int
    category: str = ""
    version: int = 0  # 0 = not yet persisted; the store sets 1 on create
    status: OrderStatus = OrderStatus.PENDING
    progress: int = 0
    priority: OrderPriority = OrderPriority.MEDIUM
    skills: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    # Participants (display fields denormalized at creation)
    client_name: str = "Client"
    client_avatar: str | None = None
    worker_id: str | None = None
    worker_name: str | None = None
    worker_avatar: str | None = None
    # Owned sub-entities
    milestones: list[Milestone] = field(default_factory=list)
    payments: list[Payment] = field(default_factory=list)
    timeline: list[TimelineEvent] = field(default_factory=list)
    conversation_id: str | None = None
    # Timestamps
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    deadline: datetime | None = None
    last_activity: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def role_of(self, actor_id: str) -> ActorRole:
        if actor_id == self.client_id:
            return ActorRole.CLIENT
        if self.worker_id is not None and actor_id == self.worker_id:
            return ActorRole.WORKER
        return ActorRole.SYSTEM

    def counterparty_of(self, role: ActorRole) -> str | None:
        """Who should hear about an action taken by `role`."""
        if role == ActorRole.CLIENT:
            return self.worker_id
        if role == ActorRole.WORKER:
            return self.client_id
        return None


@dataclass
class OrderDraft:
    """Input for create_order."""
    type: OrderType
    title: str
    description: str
    client_id: str
    worker_type: WorkerType
    total_amount: int  # cents
    currency: str | None = None
    category: str = ""
    skills: list[str] = field(default_factory=list)
    worker_id: str | None = None
    priority: OrderPriority = OrderPriority.MEDIUM
    deadline: datetime | None = None
    requirements: list[str] = field(default_factory=list)
    milestones: list[MilestoneDraft] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderFilters:
    status: OrderStatus | None = None
    type: OrderType | None = None
    category: str | None = None


@dataclass
class OrderStats:
    total: int
    pending: int
    in_progress: int  # in_progress + review + revision + paused
    completed: int
    cancelled: int
    total_value: int  # cents
    average_value: int  # cents
    currency: str
