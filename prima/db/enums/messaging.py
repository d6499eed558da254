"""Outbound queue and volunteer escalation enums."""

from enum import Enum


class MessagePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


# Lower score dequeues first.
PRIORITY_SCORES: dict[MessagePriority, int] = {
    MessagePriority.URGENT: 1,
    MessagePriority.HIGH: 2,
    MessagePriority.MEDIUM: 3,
    MessagePriority.LOW: 4,
}


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class VolunteerNotificationStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    RESOLVED = "resolved"
