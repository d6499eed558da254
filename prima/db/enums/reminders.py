"""Reminder delivery and confirmation enums."""

from enum import Enum


class DeliveryStatus(str, Enum):
    """Canonical provider delivery state."""

    SENT = "SENT"
    DELIVERED = "DELIVERED"
    FAILED = "FAILED"


class ConfirmationStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    MISSED = "MISSED"
    UNKNOWN = "UNKNOWN"
