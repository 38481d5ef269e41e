"""Timeline recorder — builds events and appends them to an order's timeline.

The timeline is append-only: events are never edited or removed, and the
append happens inside the same aggregate write as the state change it
describes, so an event exists if and only if the change was committed.
"""
from datetime import datetime
from typing import Any

from src.fm_common.datetime_utils import utc_now
from src.fm_common.enums import ActorRole, TimelineEventType
from src.fm_common.id_generator import generate_id
from src.fm_timeline.domain.models import TimelineEvent


def new_event(
    event_type: TimelineEventType,
    title: str,
    description: str,
    actor_id: str,
    actor_role: ActorRole,
    data: dict[str, Any] | None = None,
    at: datetime | None = None,
) -> TimelineEvent:
    return TimelineEvent(
        id=generate_id(),
        type=event_type,
        title=title,
        description=description,
        timestamp=at or utc_now(),
        actor_id=actor_id,
        actor_role=actor_role,
        data=dict(data or {}),
    )


def append(timeline: list[TimelineEvent], event: TimelineEvent) -> TimelineEvent:
    """Append one event. Duplicate ids are rejected so a replayed write cannot double-record."""
    if any(existing.id == event.id for existing in timeline):
        raise ValueError(f"Timeline already contains event {event.id}")
    timeline.append(event)
    return event


def record(
    timeline: list[TimelineEvent],
    event_type: TimelineEventType,
    title: str,
    description: str,
    actor_id: str,
    actor_role: ActorRole,
    data: dict[str, Any] | None = None,
) -> TimelineEvent:
    """Shorthand: build + append."""
    return append(
        timeline,
        new_event(event_type, title, description, actor_id, actor_role, data),
    )


def events_for_milestone(
    timeline: list[TimelineEvent], milestone_id: str
) -> list[TimelineEvent]:
    return [e for e in timeline if e.data.get("milestone_id") == milestone_id]
