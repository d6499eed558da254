"""Tests for conversation state persistence."""

from datetime import timedelta

import pytest
from sqlalchemy import func, select

from prima.db.base import utcnow
from prima.db.enums import (
    ConversationContext,
    ExpectedResponseType,
    MessageDirection,
    MessageType,
)
from prima.db.models import ConversationState
from prima.services import conversation_state_service as states


def _active_count(db, patient_id) -> int:
    return db.scalar(
        select(func.count())
        .select_from(ConversationState)
        .where(ConversationState.patient_id == patient_id, ConversationState.is_active.is_(True))
    )


def test_set_context_creates_active_state(db, make_patient):
    patient = make_patient()
    state = states.set_context(
        db,
        patient.id,
        patient.phone_number,
        ConversationContext.VERIFICATION,
        ExpectedResponseType.YES_NO,
    )
    assert state.is_active is True
    assert state.current_context == "verification"
    assert states.get_active_state(db, patient.id).id == state.id


def test_same_target_refreshes_in_place(db, make_patient):
    patient = make_patient()
    first = states.set_context(
        db, patient.id, patient.phone_number,
        ConversationContext.REMINDER_CONFIRMATION, ExpectedResponseType.CONFIRMATION,
        related_entity_id=patient.id,
    )
    second = states.set_context(
        db, patient.id, patient.phone_number,
        ConversationContext.REMINDER_CONFIRMATION, ExpectedResponseType.CONFIRMATION,
        related_entity_id=patient.id,
    )
    assert first.id == second.id
    assert _active_count(db, patient.id) == 1


def test_new_context_supersedes_old_row(db, make_patient):
    patient = make_patient()
    old = states.set_context(
        db, patient.id, patient.phone_number,
        ConversationContext.VERIFICATION, ExpectedResponseType.YES_NO,
    )
    new = states.set_context(
        db, patient.id, patient.phone_number,
        ConversationContext.GENERAL_INQUIRY, ExpectedResponseType.TEXT,
    )
    db.refresh(old)
    assert old.is_active is False
    assert new.id != old.id
    assert _active_count(db, patient.id) == 1


def test_expired_state_is_deactivated_on_read(db, make_patient):
    patient = make_patient()
    state = states.set_context(
        db, patient.id, patient.phone_number,
        ConversationContext.GENERAL_INQUIRY, ExpectedResponseType.TEXT,
    )
    state.expires_at = utcnow() - timedelta(minutes=1)
    db.commit()

    assert states.get_active_state(db, patient.id) is None
    db.refresh(state)
    assert state.is_active is False


def test_verification_context_uses_longer_ttl(db, make_patient):
    patient = make_patient()
    state = states.set_context(
        db, patient.id, patient.phone_number,
        ConversationContext.VERIFICATION, ExpectedResponseType.YES_NO,
    )
    assert state.expires_at - state.context_set_at == timedelta(hours=48)


def test_history_oldest_first(db, make_patient):
    patient = make_patient()
    state = states.get_or_create_state(db, patient.id, patient.phone_number)
    for text in ("satu", "dua", "tiga"):
        states.add_message(db, state, text, MessageDirection.INBOUND, MessageType.GENERAL)

    history = states.get_history(db, state.id, limit=2)
    assert [m.message for m in history] == ["dua", "tiga"]
    assert state.message_count == 3
    assert state.last_message == "tiga"


def test_confidence_out_of_range_rejected(db, make_patient):
    patient = make_patient()
    state = states.get_or_create_state(db, patient.id, patient.phone_number)
    with pytest.raises(ValueError):
        states.add_message(
            db, state, "halo", MessageDirection.INBOUND, MessageType.GENERAL, confidence=150
        )


def test_clear_context_and_cleanup(db, make_patient):
    patient = make_patient()
    other = make_patient(phone_number="6281200000000")
    states.get_or_create_state(db, patient.id, patient.phone_number)
    expired = states.get_or_create_state(db, other.id, other.phone_number)
    expired.expires_at = utcnow() - timedelta(hours=1)
    db.commit()

    assert states.clear_context(db, patient.id) == 1
    assert states.cleanup_expired(db) == 1
    assert states.get_active_states(db) == []


def test_find_by_phone_uses_alternatives(db, make_patient):
    patient = make_patient(phone_number="6281333852187")
    state = states.get_or_create_state(db, patient.id, patient.phone_number)
    assert states.find_by_phone(db, "081333852187").id == state.id
