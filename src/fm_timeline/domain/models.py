"""Timeline domain model — frozen dataclass, never mutated once appended."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from src.fm_common.enums import ActorRole, TimelineEventType


@dataclass(frozen=True)
class TimelineEvent:
    id: str
    type: TimelineEventType
    title: str
    description: str
    timestamp: datetime
    actor_id: str
    actor_role: ActorRole
    data: dict[str, Any] = field(default_factory=dict)
