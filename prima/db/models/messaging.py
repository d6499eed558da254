"""Outbound message queue and volunteer escalation models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from prima.db.base import Base, utcnow
from prima.db.enums import (
    DEFAULT_MESSAGE_PRIORITY,
    DEFAULT_QUEUE_STATUS,
    VolunteerNotificationStatus,
)


class MessageQueueItem(Base):
    """
    Outbound WhatsApp message awaiting delivery.

    The worker claims rows by flipping pending -> processing in a single
    conditional UPDATE. completed and failed are terminal.
    """

    __tablename__ = "message_queue"
    __table_args__ = (
        Index(
            "idx_message_queue_dequeue",
            "status",
            "priority_score",
            "next_retry_at",
            postgresql_where=text("status = 'pending'"),
        ),
        Index("idx_message_queue_patient", "patient_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="SET NULL"), nullable=True
    )
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(20), nullable=False)

    priority: Mapped[str] = mapped_column(
        String(10), default=DEFAULT_MESSAGE_PRIORITY.value, nullable=False
    )
    priority_score: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_QUEUE_STATUS.value, nullable=False
    )
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    next_retry_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    claimed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict | None] = mapped_column("metadata", nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)


class VolunteerNotification(Base):
    """Escalation for a human volunteer (emergency or unresolved replies)."""

    __tablename__ = "volunteer_notifications"
    __table_args__ = (Index("idx_volunteer_notifications_status", "status", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    reason: Mapped[str] = mapped_column(String(50), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=VolunteerNotificationStatus.PENDING.value, nullable=False
    )
    escalation_data: Mapped[dict | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
