"""Conversation engine enums."""

from enum import Enum


class ConversationContext(str, Enum):
    VERIFICATION = "verification"
    REMINDER_CONFIRMATION = "reminder_confirmation"
    GENERAL_INQUIRY = "general_inquiry"
    EMERGENCY = "emergency"


class ExpectedResponseType(str, Enum):
    YES_NO = "yes_no"
    CONFIRMATION = "confirmation"
    TEXT = "text"
    NONE = "none"


class MessageDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class MessageType(str, Enum):
    """Purpose of a conversation or outbound queue message."""

    VERIFICATION = "verification"
    REMINDER = "reminder"
    CONFIRMATION = "confirmation"
    GENERAL = "general"
    EMERGENCY = "emergency"


class Intent(str, Enum):
    """Closed set of classifier outputs."""

    UNSUBSCRIBE = "unsubscribe"
    ACCEPT = "accept"
    DECLINE = "decline"
    CONFIRMATION_TAKEN = "confirmation_taken"
    CONFIRMATION_MISSED = "confirmation_missed"
    CONFIRMATION_LATER = "confirmation_later"
    UNKNOWN = "unknown"
