"""Conversation state persistence.

One active ConversationState per patient. A context change that points at a
different correlation target supersedes the active row instead of mutating it.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.db.base import utcnow
from prima.db.enums import (
    ConversationContext,
    ExpectedResponseType,
    Intent,
    MessageDirection,
    MessageType,
)
from prima.db.models import ConversationMessage, ConversationState
from prima.utils.phone import phone_alternatives

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


def _ttl_for(context: ConversationContext, ttl_hours: int | None) -> timedelta:
    if ttl_hours is not None:
        return timedelta(hours=ttl_hours)
    if context == ConversationContext.VERIFICATION:
        return timedelta(hours=settings.VERIFICATION_TTL_HOURS)
    return timedelta(hours=settings.CONVERSATION_TTL_HOURS)


def get_active_state(db: Session, patient_id: UUID) -> ConversationState | None:
    """
    Active, unexpired state for a patient.

    A row found active but past expires_at is deactivated here and treated
    as absent.
    """
    state = db.scalars(
        select(ConversationState).where(
            ConversationState.patient_id == patient_id,
            ConversationState.is_active.is_(True),
            ConversationState.deleted_at.is_(None),
        )
    ).first()
    if state and state.expires_at <= utcnow():
        state.is_active = False
        db.commit()
        logger.info("Conversation state %s expired", state.id)
        return None
    return state


def _create_state(
    db: Session,
    *,
    patient_id: UUID,
    phone_number: str,
    context: ConversationContext,
    expected_response_type: ExpectedResponseType,
    related_entity_id: UUID | None = None,
    related_entity_type: str | None = None,
    state_data: dict | None = None,
    ttl_hours: int | None = None,
) -> ConversationState:
    now = utcnow()
    state = ConversationState(
        patient_id=patient_id,
        phone_number=phone_number,
        current_context=ConversationContext(context).value,
        expected_response_type=ExpectedResponseType(expected_response_type).value,
        related_entity_id=related_entity_id,
        related_entity_type=related_entity_type,
        state_data=state_data,
        is_active=True,
        context_set_at=now,
        expires_at=now + _ttl_for(ConversationContext(context), ttl_hours),
        message_count=0,
        unknown_response_count=0,
    )
    db.add(state)
    return state


def get_or_create_state(
    db: Session,
    patient_id: UUID,
    phone_number: str,
    context: ConversationContext = ConversationContext.GENERAL_INQUIRY,
) -> ConversationState:
    state = get_active_state(db, patient_id)
    if state:
        return state
    state = _create_state(
        db,
        patient_id=patient_id,
        phone_number=phone_number,
        context=context,
        expected_response_type=ExpectedResponseType.TEXT,
    )
    db.commit()
    db.refresh(state)
    return state


def set_context(
    db: Session,
    patient_id: UUID,
    phone_number: str,
    context: ConversationContext,
    expected_response_type: ExpectedResponseType,
    *,
    related_entity_id: UUID | None = None,
    related_entity_type: str | None = None,
    state_data: dict | None = None,
    ttl_hours: int | None = None,
) -> ConversationState:
    """
    Point the patient's conversation at a new topic.

    Same context and target: the active row is refreshed. Otherwise the
    active row is deactivated and a new one becomes the active state.
    """
    current = get_active_state(db, patient_id)
    context = ConversationContext(context)
    if (
        current
        and current.current_context == context.value
        and current.related_entity_id == related_entity_id
    ):
        now = utcnow()
        current.expected_response_type = ExpectedResponseType(expected_response_type).value
        current.related_entity_type = related_entity_type
        if state_data is not None:
            current.state_data = state_data
        current.context_set_at = now
        current.expires_at = now + _ttl_for(context, ttl_hours)
        db.commit()
        db.refresh(current)
        return current

    if current:
        current.is_active = False
        # The partial unique index allows only one active row per patient
        db.flush()
        logger.info(
            "Conversation state %s superseded by %s context", current.id, context.value
        )

    state = _create_state(
        db,
        patient_id=patient_id,
        phone_number=phone_number,
        context=context,
        expected_response_type=expected_response_type,
        related_entity_id=related_entity_id,
        related_entity_type=related_entity_type,
        state_data=state_data,
        ttl_hours=ttl_hours,
    )
    db.commit()
    db.refresh(state)
    return state


def add_message(
    db: Session,
    state: ConversationState,
    message: str,
    direction: MessageDirection,
    message_type: MessageType,
    *,
    intent: Intent | str | None = None,
    confidence: int | None = None,
    provider_message_id: str | None = None,
    commit: bool = True,
) -> ConversationMessage:
    if confidence is not None and not 0 <= confidence <= 100:
        raise ValueError("confidence must be between 0 and 100")
    now = utcnow()
    record = ConversationMessage(
        conversation_state_id=state.id,
        message=message,
        direction=MessageDirection(direction).value,
        message_type=MessageType(message_type).value,
        intent=intent.value if isinstance(intent, Intent) else intent,
        confidence=confidence,
        provider_message_id=provider_message_id,
    )
    db.add(record)
    state.message_count = (state.message_count or 0) + 1
    state.last_message = message
    state.last_message_at = now
    if commit:
        db.commit()
        db.refresh(record)
    else:
        db.flush()
    return record


def mark_processed(db: Session, message: ConversationMessage) -> ConversationMessage:
    message.processed_at = utcnow()
    db.commit()
    return message


def record_unknown_response(db: Session, state: ConversationState) -> int:
    state.unknown_response_count = (state.unknown_response_count or 0) + 1
    db.commit()
    return state.unknown_response_count


def reset_unknown_responses(db: Session, state: ConversationState) -> None:
    if state.unknown_response_count:
        state.unknown_response_count = 0
        db.commit()


def get_history(
    db: Session, state_id: UUID, limit: int = DEFAULT_HISTORY_LIMIT
) -> list[ConversationMessage]:
    """Most recent messages, returned oldest first."""
    rows = db.scalars(
        select(ConversationMessage)
        .where(ConversationMessage.conversation_state_id == state_id)
        .order_by(ConversationMessage.created_at.desc())
        .limit(limit)
    ).all()
    return list(reversed(rows))


def deactivate(db: Session, state: ConversationState) -> None:
    state.is_active = False
    db.commit()


def clear_context(db: Session, patient_id: UUID, commit: bool = True) -> int:
    """Deactivate every active state for the patient."""
    result = db.execute(
        update(ConversationState)
        .where(
            ConversationState.patient_id == patient_id,
            ConversationState.is_active.is_(True),
        )
        .values(is_active=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    if commit:
        db.commit()
    return result.rowcount or 0


def cleanup_expired(db: Session) -> int:
    result = db.execute(
        update(ConversationState)
        .where(
            ConversationState.is_active.is_(True),
            ConversationState.expires_at <= utcnow(),
        )
        .values(is_active=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    count = result.rowcount or 0
    if count:
        logger.info("Deactivated %s expired conversation states", count)
    return count


def get_active_states(db: Session, limit: int = 100) -> list[ConversationState]:
    return list(
        db.scalars(
            select(ConversationState)
            .where(
                ConversationState.is_active.is_(True),
                ConversationState.expires_at > utcnow(),
                ConversationState.deleted_at.is_(None),
            )
            .order_by(ConversationState.last_message_at.desc())
            .limit(limit)
        )
    )


def find_by_phone(db: Session, phone: str) -> ConversationState | None:
    """Active state for any 62/0 form of the number."""
    candidates = phone_alternatives(phone)
    if not candidates:
        return None
    return db.scalars(
        select(ConversationState)
        .where(
            ConversationState.phone_number.in_(candidates),
            ConversationState.is_active.is_(True),
            ConversationState.expires_at > utcnow(),
        )
        .order_by(ConversationState.updated_at.desc())
        .limit(1)
    ).first()
