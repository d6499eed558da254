"""Reminder schedule and delivery log models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from prima.db.base import Base, utcnow
from prima.db.enums import DEFAULT_DELIVERY_STATUS


class ReminderSchedule(Base):
    __tablename__ = "reminder_schedules"
    __table_args__ = (Index("idx_reminder_schedules_patient", "patient_id"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    medication_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    dosage: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ReminderLog(Base):
    """
    One sent reminder.

    confirmation_status is NULL for reminders that never asked for a reply.
    The most recent PENDING row is the patient's confirmation target.
    """

    __tablename__ = "reminder_logs"
    __table_args__ = (
        Index("idx_reminder_logs_patient_confirmation", "patient_id", "confirmation_status"),
        Index("idx_reminder_logs_provider_message", "provider_message_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reminder_schedule_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("reminder_schedules.id", ondelete="SET NULL"), nullable=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_DELIVERY_STATUS.value, nullable=False
    )
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    confirmation_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    confirmation_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    confirmation_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    confirmation_response_at: Mapped[datetime | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
