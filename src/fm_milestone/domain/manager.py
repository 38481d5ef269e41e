"""Milestone manager — milestone-level rules for complete / approve / reject.

Operates on an order's milestone list and timeline in place; order-level
status changes that follow (review, revision, completed) belong to the
order engine, which owns the transition table.
"""
from src.fm_common.cents import scale_half_up
from src.fm_common.datetime_utils import utc_now
from src.fm_common.enums import ActorRole, MilestoneStatus, TimelineEventType
from src.fm_common.errors import InvalidStateTransitionError, ValidationError
from src.fm_common.id_generator import generate_id
from src.fm_milestone.domain.models import Deliverable, DeliverableDraft, Milestone
from src.fm_timeline.domain.models import TimelineEvent
from src.fm_timeline.domain.recorder import record


def compute_progress(milestones: list[Milestone]) -> int:
    """round_half_up(100 * completed / total); an order without milestones is at 0."""
    if not milestones:
        return 0
    completed = sum(1 for m in milestones if m.status == MilestoneStatus.COMPLETED)
    return scale_half_up(100, completed, len(milestones))


def find_milestone(milestones: list[Milestone], milestone_id: str) -> Milestone | None:
    return next((m for m in milestones if m.id == milestone_id), None)


def has_outstanding(milestones: list[Milestone]) -> bool:
    return any(m.is_outstanding for m in milestones)


def all_completed(milestones: list[Milestone]) -> bool:
    return bool(milestones) and all(m.status == MilestoneStatus.COMPLETED for m in milestones)


def all_approved(milestones: list[Milestone]) -> bool:
    return all_completed(milestones) and all(m.is_approved for m in milestones)


def complete(
    milestone: Milestone,
    timeline: list[TimelineEvent],
    actor_id: str,
    actor_role: ActorRole,
    deliverables: list[DeliverableDraft] | None = None,
) -> None:
    if not milestone.is_outstanding:
        raise InvalidStateTransitionError(
            f"milestone {milestone.id} is {milestone.status.value}; "
            "only pending or in-progress milestones can be completed"
        )
    now = utc_now()
    milestone.status = MilestoneStatus.COMPLETED
    milestone.completed_at = now
    if deliverables:
        milestone.deliverables = [
            Deliverable(
                id=generate_id(),
                name=d.name,
                locator=d.locator,
                kind=d.kind,
                uploaded_at=now,
                uploaded_by=actor_id,
                description=d.description,
            )
            for d in deliverables
        ]
    record(
        timeline,
        TimelineEventType.MILESTONE_COMPLETED,
        f"Milestone completed: {milestone.title}",
        f"{milestone.title} has been marked as completed",
        actor_id,
        actor_role,
        {
            "milestone_id": milestone.id,
            "milestone_title": milestone.title,
            "deliverables": len(milestone.deliverables),
        },
    )


def approve(
    milestone: Milestone,
    timeline: list[TimelineEvent],
    actor_id: str,
    payment_amount: int,
    feedback: str | None = None,
    rating: int | None = None,
) -> bool:
    """Stamp approval. Returns False (no change) when the milestone is already approved."""
    if milestone.is_approved:
        return False
    if milestone.status != MilestoneStatus.COMPLETED:
        raise InvalidStateTransitionError(
            f"milestone {milestone.id} is {milestone.status.value}; only completed milestones "
            "can be approved"
        )
    if rating is not None and not (1 <= rating <= 5):
        raise ValidationError(f"rating must be between 1 and 5, got {rating}")

    milestone.approved_by = actor_id
    milestone.approved_at = utc_now()
    milestone.feedback = feedback
    milestone.rating = rating
    milestone.rejected_at = None
    milestone.rejection_reason = None
    record(
        timeline,
        TimelineEventType.MILESTONE_APPROVED,
        f"Milestone approved: {milestone.title}",
        f"{milestone.title} has been approved by client",
        actor_id,
        ActorRole.CLIENT,
        {
            "milestone_id": milestone.id,
            "milestone_title": milestone.title,
            "feedback": feedback,
            "rating": rating,
            "payment_amount": payment_amount,
        },
    )
    return True


def reject(
    milestone: Milestone,
    timeline: list[TimelineEvent],
    actor_id: str,
    reason: str,
) -> None:
    if not reason or not reason.strip():
        raise ValidationError("rejection reason must not be empty")
    if milestone.status != MilestoneStatus.COMPLETED:
        raise InvalidStateTransitionError(
            f"milestone {milestone.id} is {milestone.status.value}; only completed milestones "
            "can be rejected"
        )
    if milestone.is_approved:
        raise InvalidStateTransitionError(
            f"milestone {milestone.id} is already approved; approved work cannot be rejected"
        )

    milestone.status = MilestoneStatus.PENDING
    milestone.completed_at = None
    milestone.rejected_at = utc_now()
    milestone.rejection_reason = reason.strip()
    record(
        timeline,
        TimelineEventType.MILESTONE_REJECTED,
        f"Milestone rejected: {milestone.title}",
        f"{milestone.title} needs revision",
        actor_id,
        ActorRole.CLIENT,
        {
            "milestone_id": milestone.id,
            "milestone_title": milestone.title,
            "rejection_reason": milestone.rejection_reason,
        },
    )
