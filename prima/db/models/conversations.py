"""Conversation state and message log models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from prima.db.base import Base, utcnow
from prima.db.enums import DEFAULT_CONVERSATION_CONTEXT, DEFAULT_EXPECTED_RESPONSE_TYPE


class ConversationState(Base):
    """
    What a patient's next free-text reply is expected to answer.

    At most one row per patient is active; a context switch to a new
    correlation target deactivates the old row and inserts a new one.
    """

    __tablename__ = "conversation_states"
    __table_args__ = (
        Index(
            "uq_conversation_states_active_patient",
            "patient_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
        Index("idx_conversation_states_phone", "phone_number"),
        Index("idx_conversation_states_expires", "expires_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    patient_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("patients.id", ondelete="CASCADE"), nullable=False
    )
    phone_number: Mapped[str] = mapped_column(String(32), nullable=False)

    current_context: Mapped[str] = mapped_column(
        String(30), default=DEFAULT_CONVERSATION_CONTEXT.value, nullable=False
    )
    expected_response_type: Mapped[str] = mapped_column(
        String(20), default=DEFAULT_EXPECTED_RESPONSE_TYPE.value, nullable=False
    )
    related_entity_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)
    related_entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    state_data: Mapped[dict | None] = mapped_column(nullable=True)

    last_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_message_at: Mapped[datetime | None] = mapped_column(nullable=True)
    message_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unknown_response_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    context_set_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(nullable=False)

    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(nullable=True)


class ConversationMessage(Base):
    """Append-only turn log; only processed_at is written after insert."""

    __tablename__ = "conversation_messages"
    __table_args__ = (
        Index("idx_conversation_messages_state", "conversation_state_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    conversation_state_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("conversation_states.id", ondelete="CASCADE"), nullable=False
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    message_type: Mapped[str] = mapped_column(String(20), nullable=False)
    intent: Mapped[str | None] = mapped_column(String(50), nullable=True)
    confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    provider_message_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
