"""SQLAlchemy ORM models."""

from prima.db.models.conversations import ConversationMessage, ConversationState
from prima.db.models.messaging import MessageQueueItem, VolunteerNotification
from prima.db.models.patients import Patient, VerificationLog
from prima.db.models.reminders import ReminderLog, ReminderSchedule

__all__ = [
    "ConversationMessage",
    "ConversationState",
    "MessageQueueItem",
    "Patient",
    "ReminderLog",
    "ReminderSchedule",
    "VerificationLog",
    "VolunteerNotification",
]
