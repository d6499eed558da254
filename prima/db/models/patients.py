"""Patient identity and verification audit models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from prima.db.base import Base, utcnow
from prima.db.enums import DEFAULT_VERIFICATION_STATUS


class Patient(Base):
    """
    Patient enrolled for WhatsApp reminders.

    phone_number is the natural key for inbound correlation. Rows are
    soft-deleted via deleted_at.
    """

    __tablename__ = "patients"
    __table_args__ = (
        Index("idx_patients_phone", "phone_number"),
        Index(
            "idx_patients_active_phone",
            "phone_number",
            postgresql_where=text("deleted_at IS NULL AND is_active"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)

    verification_status: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_VERIFICATION_STATUS.value, nullable=False
    )
    verification_sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verification_response_at: Mapped[datetime | None] = mapped_column(nullable=True)
    verification_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    unsubscribed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    unsubscribe_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    unsubscribe_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    # Filled by staff after an onboarding stub is created
    assigned_volunteer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class VerificationLog(Base):
    """Append-only audit row for every verification-related event."""

    __tablename__ = "verification_logs"
    __table_args__ = (Index("idx_verification_logs_patient", "patient_id", "created_at"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    message_sent: Mapped[str | None] = mapped_column(Text, nullable=True)
    patient_response: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_result: Mapped[str | None] = mapped_column(String(30), nullable=True)
    additional_info: Mapped[dict | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
