"""Order status transition table — the single place a status change is legal or not.

Every status write in the engine goes through `check_transition` before any
mutation; anything not listed here is rejected.
"""
from src.fm_common.enums import OrderStatus
from src.fm_common.errors import InvalidStateTransitionError

S = OrderStatus

TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    S.PENDING: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    # IN_PROGRESS -> REVISION: a completed milestone is rejected before the order reaches review
    S.IN_PROGRESS: frozenset({S.REVIEW, S.PAUSED, S.CANCELLED, S.REVISION}),
    S.REVIEW: frozenset({S.COMPLETED, S.REVISION}),
    S.REVISION: frozenset({S.IN_PROGRESS}),
    S.PAUSED: frozenset({S.IN_PROGRESS, S.CANCELLED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def check_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        allowed = ", ".join(sorted(s.value for s in TRANSITIONS[current])) or "none (terminal)"
        raise InvalidStateTransitionError(
            f"order cannot move from {current.value} to {target.value} (allowed: {allowed})"
        )
