"""Hand patients over to human volunteers."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from prima.core.structured_logging import RequestContext, build_log_context
from prima.db.enums import MessagePriority, VolunteerNotificationStatus
from prima.db.models import Patient, VolunteerNotification

logger = logging.getLogger(__name__)

REASON_EMERGENCY = "emergency"
REASON_UNRESOLVED = "unresolved_inquiry"
REASON_INQUIRY = "inquiry_escalation"


def escalate_to_volunteer(
    db: Session,
    patient: Patient,
    message: str,
    reason: str,
    priority: MessagePriority = MessagePriority.MEDIUM,
    data: dict | None = None,
    ctx: RequestContext | None = None,
    commit: bool = True,
) -> VolunteerNotification:
    notification = VolunteerNotification(
        patient_id=patient.id,
        message=message,
        reason=reason,
        priority=MessagePriority(priority).value,
        status=VolunteerNotificationStatus.PENDING.value,
        escalation_data=data,
    )
    db.add(notification)
    if commit:
        db.commit()
        db.refresh(notification)
    else:
        db.flush()
    log = logger.warning if priority == MessagePriority.URGENT else logger.info
    log(
        "Escalated to volunteer (%s, priority=%s)",
        reason,
        notification.priority,
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )
    return notification
