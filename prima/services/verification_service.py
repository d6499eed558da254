"""Patient WhatsApp opt-in / opt-out transitions.

pending -> verified | declined, and any status -> unsubscribed. Replies from
patients whose status is already settled are logged but never change it.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.core.structured_logging import RequestContext, build_log_context
from prima.db.base import utcnow
from prima.db.enums import (
    ConversationContext,
    ExpectedResponseType,
    Intent,
    MessagePriority,
    MessageType,
    VerificationAction,
    VerificationResult,
    VerificationStatus,
)
from prima.db.models import Patient, ReminderSchedule, VerificationLog
from prima.schemas.webhooks import ProcessingResult
from prima.services import conversation_state_service, message_queue_service
from prima.services import message_templates as templates
from prima.services.intent_classifier import Classification

logger = logging.getLogger(__name__)

SOURCE = "verification"
UNSUBSCRIBE_METHOD = "whatsapp"
UNSUBSCRIBE_REASON = "Patient requested via WhatsApp"


def _log(
    db: Session,
    patient: Patient,
    action: VerificationAction,
    *,
    result: VerificationResult | None = None,
    response: str | None = None,
    message_sent: str | None = None,
    info: dict | None = None,
) -> VerificationLog:
    entry = VerificationLog(
        patient_id=patient.id,
        action=action.value,
        patient_response=response,
        message_sent=message_sent,
        verification_result=result.value if result else None,
        additional_info=info,
    )
    db.add(entry)
    return entry


def _enqueue_reply(
    db: Session,
    patient: Patient,
    text: str,
    priority: MessagePriority = MessagePriority.HIGH,
    metadata: dict | None = None,
):
    return message_queue_service.enqueue(
        db,
        phone_number=patient.phone_number,
        message=text,
        message_type=MessageType.VERIFICATION,
        priority=priority,
        patient_id=patient.id,
        metadata=metadata,
        commit=False,
    )


def deactivate_reminders(db: Session, patient: Patient) -> int:
    result = db.execute(
        update(ReminderSchedule)
        .where(
            ReminderSchedule.patient_id == patient.id,
            ReminderSchedule.is_active.is_(True),
        )
        .values(is_active=False, updated_at=utcnow())
        .execution_options(synchronize_session="fetch")
    )
    return result.rowcount or 0


def _unsubscribe(
    db: Session, patient: Patient, text: str, classification: Classification, ctx
) -> ProcessingResult:
    previous = patient.verification_status
    now = utcnow()
    patient.verification_status = VerificationStatus.UNSUBSCRIBED.value
    patient.is_active = False
    patient.unsubscribed_at = now
    patient.unsubscribe_reason = UNSUBSCRIBE_REASON
    patient.unsubscribe_method = UNSUBSCRIBE_METHOD
    patient.verification_response_at = now

    schedules = deactivate_reminders(db, patient)
    dropped = message_queue_service.remove_patient_messages(db, patient.id, commit=False)
    conversation_state_service.clear_context(db, patient.id, commit=False)

    reply = templates.render(templates.UNSUBSCRIBED, name=patient.name)
    _log(
        db,
        patient,
        VerificationAction.RESPONDED,
        result=VerificationResult.UNSUBSCRIBED,
        response=text,
        message_sent=reply,
        info={
            "previous_status": previous,
            "matched_keyword": classification.matched_keyword,
            "reminders_deactivated": schedules,
            "queued_messages_dropped": dropped,
        },
    )
    item = _enqueue_reply(db, patient, reply)
    db.commit()
    logger.info(
        "Patient unsubscribed via WhatsApp (%s reminders deactivated)",
        schedules,
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )
    return ProcessingResult(
        action="unsubscribed", source=SOURCE, reply=reply, queue_item_id=item.id
    )


def _already_settled(
    db: Session, patient: Patient, text: str, classification: Classification, ctx
) -> ProcessingResult:
    _log(
        db,
        patient,
        VerificationAction.RESPONDED,
        result=VerificationResult.ALREADY_SETTLED,
        response=text,
        info={
            "current_status": patient.verification_status,
            "intent": classification.intent.value,
        },
    )
    db.commit()
    logger.info(
        "Verification reply ignored, status already %s",
        patient.verification_status,
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )
    return ProcessingResult(processed=False, action="already_settled", source=SOURCE)


def reply_is_settled(verification_status: str, intent: Intent) -> bool:
    """True when a reply cannot change the patient's verification status."""
    status = VerificationStatus(verification_status)
    if intent == Intent.UNSUBSCRIBE:
        return status == VerificationStatus.UNSUBSCRIBED
    return status != VerificationStatus.PENDING


def handle_verification_response(
    db: Session,
    patient: Patient,
    text: str,
    classification: Classification,
    ctx: RequestContext | None = None,
) -> ProcessingResult:
    """
    Apply a patient's reply to their verification status.

    Writes exactly one VerificationLog row. Settled outcomes clear the
    conversation context and queue an acknowledgment.
    """
    intent = classification.intent

    if reply_is_settled(patient.verification_status, intent):
        return _already_settled(db, patient, text, classification, ctx)
    if intent == Intent.UNSUBSCRIBE:
        return _unsubscribe(db, patient, text, classification, ctx)

    now = utcnow()
    if intent == Intent.ACCEPT:
        patient.verification_status = VerificationStatus.VERIFIED.value
        result = VerificationResult.VERIFIED
        reply = templates.render(templates.VERIFICATION_ACCEPTED, name=patient.name)
    elif intent == Intent.DECLINE:
        patient.verification_status = VerificationStatus.DECLINED.value
        result = VerificationResult.DECLINED
        reply = templates.render(templates.VERIFICATION_DECLINED, name=patient.name)
    else:
        reply = templates.render(templates.VERIFICATION_CLARIFICATION, name=patient.name)
        _log(
            db,
            patient,
            VerificationAction.RESPONDED,
            result=VerificationResult.INVALID,
            response=text,
            message_sent=reply,
            info={"intent": intent.value},
        )
        item = _enqueue_reply(db, patient, reply, MessagePriority.MEDIUM)
        db.commit()
        return ProcessingResult(
            action="clarification_sent", source=SOURCE, reply=reply, queue_item_id=item.id
        )

    patient.verification_response_at = now
    patient.verification_message = text
    _log(
        db,
        patient,
        VerificationAction.RESPONDED,
        result=result,
        response=text,
        message_sent=reply,
        info={"matched_keyword": classification.matched_keyword},
    )
    item = _enqueue_reply(db, patient, reply)
    conversation_state_service.clear_context(db, patient.id, commit=False)
    db.commit()
    logger.info(
        "Patient verification %s",
        result.value,
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )
    return ProcessingResult(
        action=result.value, source=SOURCE, reply=reply, queue_item_id=item.id
    )


def send_verification_request(
    db: Session, patient: Patient, ctx: RequestContext | None = None
) -> ProcessingResult:
    """Queue the YA/TIDAK prompt and open a verification conversation."""
    ttl_hours = settings.VERIFICATION_TTL_HOURS
    message = templates.render(
        templates.VERIFICATION_REQUEST, name=patient.name, ttl_hours=ttl_hours
    )
    previous = patient.verification_status
    patient.verification_status = VerificationStatus.PENDING.value
    patient.verification_sent_at = utcnow()
    patient.verification_attempts = (patient.verification_attempts or 0) + 1
    action = (
        VerificationAction.REACTIVATED
        if previous != VerificationStatus.PENDING.value
        else VerificationAction.SENT
    )
    _log(
        db,
        patient,
        action,
        message_sent=message,
        info={"attempt": patient.verification_attempts, "previous_status": previous},
    )
    item = _enqueue_reply(db, patient, message)
    db.commit()
    conversation_state_service.set_context(
        db,
        patient.id,
        patient.phone_number,
        ConversationContext.VERIFICATION,
        ExpectedResponseType.YES_NO,
        related_entity_id=patient.id,
        related_entity_type="patient",
        ttl_hours=ttl_hours,
    )
    logger.info(
        "Verification request queued (attempt %s)",
        patient.verification_attempts,
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )
    return ProcessingResult(
        action="verification_sent", source=SOURCE, reply=message, queue_item_id=item.id
    )


def expire_stale_verifications(db: Session, older_than_hours: int | None = None) -> int:
    hours = older_than_hours or settings.VERIFICATION_TTL_HOURS
    cutoff = utcnow() - timedelta(hours=hours)
    stale = list(
        db.scalars(
            select(Patient).where(
                Patient.verification_status == VerificationStatus.PENDING.value,
                Patient.verification_sent_at.is_not(None),
                Patient.verification_sent_at < cutoff,
                Patient.deleted_at.is_(None),
            )
        )
    )
    for patient in stale:
        patient.verification_status = VerificationStatus.EXPIRED.value
        _log(db, patient, VerificationAction.EXPIRED, info={"expired_after_hours": hours})
    db.commit()
    if stale:
        logger.info("Expired %s pending verifications", len(stale))
    return len(stale)
