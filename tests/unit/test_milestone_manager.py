"""Tests for fm_milestone.domain.manager — complete / approve / reject rules."""

import pytest

from src.fm_common.enums import ActorRole, MilestoneStatus, TimelineEventType
from src.fm_common.errors import InvalidStateTransitionError, ValidationError
from src.fm_milestone.domain import manager
from src.fm_milestone.domain.models import DeliverableDraft, Milestone


def _make_milestone(status: MilestoneStatus = MilestoneStatus.PENDING, amount: int = 700) -> Milestone:
    return Milestone(id="m1", title="Work in Progress", description="", amount=amount, status=status)


class TestComputeProgress:
    def test_empty_is_zero(self) -> None:
        assert manager.compute_progress([]) == 0

    def test_thirds_round_half_up(self) -> None:
        ms = [_make_milestone() for _ in range(3)]
        ms[0].status = MilestoneStatus.COMPLETED
        assert manager.compute_progress(ms) == 33
        ms[1].status = MilestoneStatus.COMPLETED
        assert manager.compute_progress(ms) == 67
        ms[2].status = MilestoneStatus.COMPLETED
        assert manager.compute_progress(ms) == 100


class TestComplete:
    def test_marks_completed_with_deliverables(self) -> None:
        m = _make_milestone()
        timeline: list = []
        manager.complete(
            m, timeline, "w1", ActorRole.WORKER,
            [DeliverableDraft(name="repo", locator="https://example.com/repo")],
        )
        assert m.status == MilestoneStatus.COMPLETED
        assert m.completed_at is not None
        assert len(m.deliverables) == 1
        assert m.deliverables[0].uploaded_by == "w1"
        assert m.deliverables[0].uploaded_at == m.completed_at
        assert timeline[-1].type == TimelineEventType.MILESTONE_COMPLETED
        assert timeline[-1].data["milestone_id"] == "m1"

    def test_completed_cannot_complete_again(self) -> None:
        m = _make_milestone(MilestoneStatus.COMPLETED)
        with pytest.raises(InvalidStateTransitionError):
            manager.complete(m, [], "w1", ActorRole.WORKER)


class TestApprove:
    def test_stamps_approval(self) -> None:
        m = _make_milestone(MilestoneStatus.COMPLETED)
        timeline: list = []
        assert manager.approve(m, timeline, "c1", 700, feedback="nice", rating=5) is True
        assert m.approved_by == "c1"
        assert m.approved_at is not None
        assert m.rating == 5
        assert timeline[-1].data["payment_amount"] == 700

    def test_second_approve_is_noop(self) -> None:
        m = _make_milestone(MilestoneStatus.COMPLETED)
        timeline: list = []
        manager.approve(m, timeline, "c1", 700)
        first_approved_at = m.approved_at
        assert manager.approve(m, timeline, "c1", 700) is False
        assert m.approved_at == first_approved_at
        assert len(timeline) == 1

    def test_pending_cannot_be_approved(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            manager.approve(_make_milestone(), [], "c1", 700)

    def test_rating_out_of_range(self) -> None:
        with pytest.raises(ValidationError, match="rating"):
            manager.approve(_make_milestone(MilestoneStatus.COMPLETED), [], "c1", 700, rating=6)

    def test_approval_clears_rejection(self) -> None:
        m = _make_milestone(MilestoneStatus.COMPLETED)
        m.rejection_reason = "old"
        manager.approve(m, [], "c1", 700)
        assert m.rejection_reason is None
        assert m.rejected_at is None


class TestReject:
    def test_resets_to_pending(self) -> None:
        m = _make_milestone(MilestoneStatus.COMPLETED)
        timeline: list = []
        manager.reject(m, timeline, "c1", "  needs tests  ")
        assert m.status == MilestoneStatus.PENDING
        assert m.completed_at is None
        assert m.rejection_reason == "needs tests"
        assert timeline[-1].type == TimelineEventType.MILESTONE_REJECTED

    def test_blank_reason(self) -> None:
        with pytest.raises(ValidationError, match="reason"):
            manager.reject(_make_milestone(MilestoneStatus.COMPLETED), [], "c1", "   ")

    def test_approved_cannot_be_rejected(self) -> None:
        m = _make_milestone(MilestoneStatus.COMPLETED)
        manager.approve(m, [], "c1", 700)
        with pytest.raises(InvalidStateTransitionError, match="already approved"):
            manager.reject(m, [], "c1", "changed my mind")

    def test_pending_cannot_be_rejected(self) -> None:
        with pytest.raises(InvalidStateTransitionError):
            manager.reject(_make_milestone(), [], "c1", "why")
