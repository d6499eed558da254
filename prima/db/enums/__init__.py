"""Enum definitions for application constants."""

from prima.db.enums.conversations import (
    ConversationContext,
    ExpectedResponseType,
    Intent,
    MessageDirection,
    MessageType,
)
from prima.db.enums.defaults import (
    DEFAULT_CONVERSATION_CONTEXT,
    DEFAULT_DELIVERY_STATUS,
    DEFAULT_EXPECTED_RESPONSE_TYPE,
    DEFAULT_MESSAGE_PRIORITY,
    DEFAULT_QUEUE_STATUS,
    DEFAULT_VERIFICATION_STATUS,
)
from prima.db.enums.messaging import (
    PRIORITY_SCORES,
    MessagePriority,
    QueueStatus,
    VolunteerNotificationStatus,
)
from prima.db.enums.patients import (
    VerificationAction,
    VerificationResult,
    VerificationStatus,
)
from prima.db.enums.reminders import ConfirmationStatus, DeliveryStatus

__all__ = [
    "ConfirmationStatus",
    "ConversationContext",
    "DEFAULT_CONVERSATION_CONTEXT",
    "DEFAULT_DELIVERY_STATUS",
    "DEFAULT_EXPECTED_RESPONSE_TYPE",
    "DEFAULT_MESSAGE_PRIORITY",
    "DEFAULT_QUEUE_STATUS",
    "DEFAULT_VERIFICATION_STATUS",
    "DeliveryStatus",
    "ExpectedResponseType",
    "Intent",
    "MessageDirection",
    "MessagePriority",
    "MessageType",
    "PRIORITY_SCORES",
    "QueueStatus",
    "VerificationAction",
    "VerificationResult",
    "VerificationStatus",
    "VolunteerNotificationStatus",
]
