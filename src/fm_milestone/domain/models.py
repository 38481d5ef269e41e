"""Milestone domain models — pure dataclasses, no SQLAlchemy dependency."""
from dataclasses import dataclass, field
from datetime import datetime

from src.fm_common.enums import DeliverableKind, MilestoneStatus


@dataclass
class Deliverable:
    id: str
    name: str
    locator: str  # URL or storage key
    kind: DeliverableKind
    uploaded_at: datetime
    uploaded_by: str
    description: str | None = None


@dataclass
class Milestone:
    id: str
    title: str
    description: str
    amount: int = 0  # cents; milestones of one order sum to order.total_amount
    percentage: float = 0.0  # share of order total, informational
    status: MilestoneStatus = MilestoneStatus.PENDING
    due_date: datetime | None = None
    completed_at: datetime | None = None
    deliverables: list[Deliverable] = field(default_factory=list)
    # Feedback & approval: approval and an open rejection are mutually exclusive
    feedback: str | None = None
    rating: int | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    rejection_reason: str | None = None
    auto_approve: bool = False

    @property
    def is_approved(self) -> bool:
        return self.approved_at is not None

    @property
    def is_outstanding(self) -> bool:
        return self.status in (MilestoneStatus.PENDING, MilestoneStatus.IN_PROGRESS)


@dataclass
class MilestoneDraft:
    """Caller-supplied milestone spec before amounts are allocated."""
    title: str
    description: str = ""
    amount: int | None = None
    percentage: float | None = None
    due_date: datetime | None = None
    auto_approve: bool = False


@dataclass
class DeliverableDraft:
    name: str
    locator: str
    kind: DeliverableKind = DeliverableKind.LINK
    description: str | None = None
