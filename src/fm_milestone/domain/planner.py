"""Milestone planning: turn drafts into milestones whose amounts sum exactly to the order total.

Allocation per draft, in priority order:
  1. explicit amount (cents)
  2. percentage of total (half-up)
  3. even share of whatever the first two left over
The last milestone absorbs the rounding residual. Explicit amounts that miss
the total by more than one cent per milestone are rejected rather than
silently rescaled.
"""
from src.fm_common.cents import percent_of, split_evenly
from src.fm_common.errors import ValidationError
from src.fm_common.id_generator import generate_id
from src.fm_milestone.domain.models import Milestone, MilestoneDraft


def default_drafts() -> list[MilestoneDraft]:
    """Kickoff 0% / execution 70% / delivery 30%."""
    return [
        MilestoneDraft(
            title="Project Kickoff",
            description="Initial briefing and project setup",
            percentage=0,
            auto_approve=True,
        ),
        MilestoneDraft(
            title="Work in Progress",
            description="Main development/work phase",
            percentage=70,
        ),
        MilestoneDraft(
            title="Final Delivery",
            description="Project completion and final delivery",
            percentage=30,
        ),
    ]


def _validate_draft(draft: MilestoneDraft) -> None:
    if not draft.title or not draft.title.strip():
        raise ValidationError("milestone title must not be empty")
    if draft.amount is not None and draft.amount < 0:
        raise ValidationError(f"milestone amount must be >= 0, got {draft.amount}")
    if draft.percentage is not None and not (0 <= draft.percentage <= 100):
        raise ValidationError(
            f"milestone percentage must be between 0 and 100, got {draft.percentage}"
        )


def allocate_amounts(total: int, drafts: list[MilestoneDraft]) -> list[int]:
    for draft in drafts:
        _validate_draft(draft)

    amounts: list[int | None] = []
    for draft in drafts:
        if draft.amount is not None:
            amounts.append(draft.amount)
        elif draft.percentage is not None:
            amounts.append(percent_of(total, draft.percentage))
        else:
            amounts.append(None)

    unassigned = [i for i, a in enumerate(amounts) if a is None]
    assigned_sum = sum(a for a in amounts if a is not None)
    if unassigned:
        leftover = total - assigned_sum
        if leftover < 0:
            raise ValidationError(
                f"milestone amounts ({assigned_sum}) exceed order total ({total})"
            )
        for i, share in zip(unassigned, split_evenly(leftover, len(unassigned))):
            amounts[i] = share

    resolved = [a for a in amounts if a is not None]
    residual = total - sum(resolved)
    if abs(residual) > len(resolved):
        raise ValidationError(
            f"milestone amounts sum to {sum(resolved)} but order total is {total}"
        )
    resolved[-1] += residual
    if resolved[-1] < 0:
        raise ValidationError("milestone allocation leaves a negative final amount")
    return resolved


def plan_milestones(total: int, drafts: list[MilestoneDraft] | None) -> list[Milestone]:
    """Build milestones for a new order; no drafts means the default three-stage split."""
    if total <= 0:
        raise ValidationError(f"total amount must be positive, got {total}")
    drafts = drafts or default_drafts()
    amounts = allocate_amounts(total, drafts)
    return [
        Milestone(
            id=generate_id(),
            title=draft.title.strip(),
            description=draft.description,
            amount=amount,
            percentage=round(amount * 100 / total, 2),
            due_date=draft.due_date,
            auto_approve=draft.auto_approve,
        )
        for draft, amount in zip(drafts, amounts)
    ]
