"""Rebuild order state from its timeline alone.

Used by dispute review and by tests to prove the timeline is a complete
record: replay(order.timeline) must agree with the stored order on status,
milestone statuses, approvals and progress.
"""
from collections.abc import Iterable
from dataclasses import dataclass, field

from src.fm_common.cents import scale_half_up
from src.fm_common.enums import MilestoneStatus, OrderStatus, TimelineEventType
from src.fm_timeline.domain.models import TimelineEvent


@dataclass
class ReplayedOrder:
    status: OrderStatus | None = None
    worker_id: str | None = None
    milestone_statuses: dict[str, MilestoneStatus] = field(default_factory=dict)
    approved_milestones: set[str] = field(default_factory=set)
    released_payments: set[str] = field(default_factory=set)
    refunded_payments: set[str] = field(default_factory=set)
    disputed_payments: set[str] = field(default_factory=set)

    @property
    def progress(self) -> int:
        total = len(self.milestone_statuses)
        if total == 0:
            return 0
        completed = sum(
            1 for s in self.milestone_statuses.values() if s == MilestoneStatus.COMPLETED
        )
        return scale_half_up(100, completed, total)


def replay(events: Iterable[TimelineEvent]) -> ReplayedOrder:
    state = ReplayedOrder()
    for event in events:
        data = event.data
        if event.type == TimelineEventType.CREATED:
            state.status = OrderStatus.PENDING
            state.worker_id = data.get("worker_id")
            state.milestone_statuses = {
                mid: MilestoneStatus.PENDING for mid in data.get("milestone_ids", [])
            }
        elif event.type == TimelineEventType.WORKER_ASSIGNED:
            state.worker_id = data["worker_id"]
        elif event.type == TimelineEventType.STATUS_CHANGED:
            state.status = OrderStatus(data["new_status"])
        elif event.type == TimelineEventType.MILESTONE_COMPLETED:
            state.milestone_statuses[data["milestone_id"]] = MilestoneStatus.COMPLETED
        elif event.type == TimelineEventType.MILESTONE_APPROVED:
            state.approved_milestones.add(data["milestone_id"])
        elif event.type == TimelineEventType.MILESTONE_REJECTED:
            state.milestone_statuses[data["milestone_id"]] = MilestoneStatus.PENDING
        elif event.type == TimelineEventType.PAYMENT_RELEASED:
            state.released_payments.add(data["payment_id"])
        elif event.type == TimelineEventType.PAYMENT_REFUNDED:
            if data.get("fully_refunded"):
                state.refunded_payments.add(data["payment_id"])
        elif event.type == TimelineEventType.PAYMENT_DISPUTED:
            state.disputed_payments.add(data["payment_id"])
        # PAYMENT_PROCESSED carries no state beyond the ledger row itself
    return state
