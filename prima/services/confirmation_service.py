"""Reminder confirmation reconciliation and delivery status updates."""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.core.structured_logging import RequestContext, build_log_context
from prima.db.base import utcnow
from prima.db.enums import (
    ConfirmationStatus,
    DeliveryStatus,
    Intent,
    MessagePriority,
    MessageType,
)
from prima.db.models import MessageQueueItem, Patient, ReminderLog
from prima.schemas.webhooks import AckEvent, ProcessingResult
from prima.services import conversation_state_service, message_queue_service
from prima.services import message_templates as templates

logger = logging.getLogger(__name__)

SOURCE = "simple_reminder_confirmation"
NO_PENDING_CONFIRMATION = "no_pending_confirmation"

_INTENT_STATUS = {
    Intent.CONFIRMATION_TAKEN: ConfirmationStatus.CONFIRMED,
    Intent.CONFIRMATION_MISSED: ConfirmationStatus.MISSED,
}
_REPLIES = {
    ConfirmationStatus.CONFIRMED: templates.CONFIRMATION_TAKEN,
    ConfirmationStatus.MISSED: templates.CONFIRMATION_MISSED,
}
# Delivery states only move forward
_DELIVERY_RANK = {
    DeliveryStatus.SENT.value: 0,
    DeliveryStatus.DELIVERED.value: 1,
    DeliveryStatus.FAILED.value: 1,
}


def find_pending_confirmation(
    db: Session, patient_id: UUID, window_hours: int | None = None
) -> ReminderLog | None:
    """
    The patient's confirmation target: the newest PENDING reminder.

    Only reminders sent within the confirmation window qualify.
    """
    hours = window_hours or settings.CONFIRMATION_WINDOW_HOURS
    cutoff = utcnow() - timedelta(hours=hours)
    asked_at = func.coalesce(ReminderLog.confirmation_sent_at, ReminderLog.sent_at)
    return db.scalars(
        select(ReminderLog)
        .where(
            ReminderLog.patient_id == patient_id,
            ReminderLog.confirmation_status == ConfirmationStatus.PENDING.value,
            ReminderLog.sent_at >= cutoff,
        )
        .order_by(asked_at.desc(), ReminderLog.sent_at.desc())
        .limit(1)
    ).first()


def has_pending_confirmation(db: Session, patient_id: UUID) -> bool:
    return find_pending_confirmation(db, patient_id) is not None


def handle_confirmation_response(
    db: Session,
    patient: Patient,
    text: str,
    intent: Intent,
    ctx: RequestContext | None = None,
) -> ProcessingResult:
    """
    Reconcile a reply against the pending reminder.

    Updates that single ReminderLog row; never creates one. Anything other
    than taken/missed (including "later") settles as UNKNOWN.
    """
    reminder = find_pending_confirmation(db, patient.id)
    if reminder is None:
        logger.info(
            "No pending confirmation for reply",
            extra=build_log_context(ctx, patient_id=str(patient.id)),
        )
        return ProcessingResult(processed=False, action=NO_PENDING_CONFIRMATION, source=SOURCE)

    status = _INTENT_STATUS.get(intent, ConfirmationStatus.UNKNOWN)
    now = utcnow()
    reminder.confirmation_status = status.value
    reminder.confirmation_response = text
    reminder.confirmation_response_at = now

    if intent == Intent.CONFIRMATION_LATER:
        template = templates.CONFIRMATION_LATER
    else:
        template = _REPLIES.get(status, templates.CONFIRMATION_UNCLEAR)
    reply = templates.render(template, name=patient.name)
    item = _enqueue_reply(db, patient, reply, reminder)
    conversation_state_service.clear_context(db, patient.id, commit=False)
    db.commit()
    logger.info(
        "Reminder %s confirmation %s",
        reminder.id,
        status.value,
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )
    return ProcessingResult(
        action=f"confirmation_{status.value.lower()}",
        source=SOURCE,
        reply=reply,
        queue_item_id=item.id,
    )


def _enqueue_reply(db: Session, patient: Patient, reply: str, reminder: ReminderLog):
    return message_queue_service.enqueue(
        db,
        phone_number=patient.phone_number,
        message=reply,
        message_type=MessageType.CONFIRMATION,
        priority=MessagePriority.MEDIUM,
        patient_id=patient.id,
        metadata={"reminder_log_id": str(reminder.id)},
        commit=False,
    )


def record_delivery_status(
    db: Session, ack: AckEvent, ctx: RequestContext | None = None
) -> ProcessingResult:
    """Apply a provider delivery receipt to reminder logs and queue rows."""
    reminders = list(
        db.scalars(
            select(ReminderLog).where(ReminderLog.provider_message_id.in_(ack.message_ids))
        )
    )
    updated = 0
    for reminder in reminders:
        if _DELIVERY_RANK.get(ack.status.value, 0) > _DELIVERY_RANK.get(reminder.status, 0):
            reminder.status = ack.status.value
            updated += 1

    queued = list(
        db.scalars(
            select(MessageQueueItem).where(
                MessageQueueItem.provider_message_id.in_(ack.message_ids)
            )
        )
    )
    for item in queued:
        meta = dict(item.meta or {})
        meta["delivery_status"] = ack.status.value
        item.meta = meta
    db.commit()
    logger.info(
        "Delivery receipt %s applied to %s reminder(s)",
        ack.status.value,
        updated,
        extra=build_log_context(ctx),
    )
    return ProcessingResult(
        processed=bool(reminders or queued), action="message_status_updated"
    )
