"""Patient verification enums."""

from enum import Enum


class VerificationStatus(str, Enum):
    """WhatsApp opt-in status of a patient."""

    PENDING = "pending"
    VERIFIED = "verified"
    DECLINED = "declined"
    UNSUBSCRIBED = "unsubscribed"
    EXPIRED = "expired"


class VerificationAction(str, Enum):
    """What a VerificationLog row records."""

    SENT = "sent"
    RESPONDED = "responded"
    MANUAL_VERIFIED = "manual_verified"
    EXPIRED = "expired"
    REACTIVATED = "reactivated"


class VerificationResult(str, Enum):
    """Outcome stored on a `responded` VerificationLog row."""

    VERIFIED = "verified"
    DECLINED = "declined"
    UNSUBSCRIBED = "unsubscribed"
    INVALID = "invalid"
    ALREADY_SETTLED = "already_settled"
