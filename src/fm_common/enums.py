"""Global enums — must match DB CHECK constraints and stored JSONB values exactly."""

from enum import Enum


class OrderType(str, Enum):
    AI_ORDER = "ai_order"
    JOB = "job"
    PROJECT = "project"
    SOLUTION = "solution"


class OrderStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"
    REVISION = "revision"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    PAUSED = "paused"


class OrderPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class WorkerType(str, Enum):
    AI_SPECIALIST = "ai_specialist"
    FREELANCER = "freelancer"


class ActorRole(str, Enum):
    """Who performed a timeline action."""
    CLIENT = "client"
    WORKER = "worker"
    SYSTEM = "system"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class DeliverableKind(str, Enum):
    FILE = "file"
    LINK = "link"
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


class EscrowStatus(str, Enum):
    """held -> released | disputed; released and disputed are terminal."""
    HELD = "held"
    RELEASED = "released"
    DISPUTED = "disputed"


class TimelineEventType(str, Enum):
    CREATED = "created"
    WORKER_ASSIGNED = "worker_assigned"
    STATUS_CHANGED = "status_changed"
    MILESTONE_COMPLETED = "milestone_completed"
    MILESTONE_APPROVED = "milestone_approved"
    MILESTONE_REJECTED = "milestone_rejected"
    PAYMENT_PROCESSED = "payment_processed"
    PAYMENT_RELEASED = "payment_released"
    PAYMENT_REFUNDED = "payment_refunded"
    PAYMENT_DISPUTED = "payment_disputed"


class OutboxKind(str, Enum):
    CONVERSATION_CREATE = "conversation_create"
    CONVERSATION_MESSAGE = "conversation_message"
    NOTIFICATION = "notification"
    PAYMENT_RELEASE = "payment_release"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    DEAD = "dead"
