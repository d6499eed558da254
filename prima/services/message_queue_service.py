"""Outbound message queue: priority ordering, atomic claim, retry with backoff."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.core.structured_logging import mask_phone
from prima.db.base import utcnow
from prima.db.enums import PRIORITY_SCORES, MessagePriority, MessageType, QueueStatus
from prima.db.models import MessageQueueItem
from prima.utils.phone import format_whatsapp_number

logger = logging.getLogger(__name__)


def priority_score(priority: MessagePriority | str) -> int:
    return PRIORITY_SCORES[MessagePriority(priority)]


def compute_backoff(retry_count: int) -> timedelta:
    """
    Delay before the next attempt after `retry_count` failures.

    30s, 60s, 120s, ... capped at MESSAGE_QUEUE_MAX_DELAY_SECONDS.
    """
    exponent = max(retry_count - 1, 0)
    seconds = settings.MESSAGE_QUEUE_BASE_DELAY_SECONDS * (2**exponent)
    return timedelta(seconds=min(seconds, settings.MESSAGE_QUEUE_MAX_DELAY_SECONDS))


def enqueue(
    db: Session,
    *,
    phone_number: str,
    message: str,
    message_type: MessageType,
    priority: MessagePriority = MessagePriority.MEDIUM,
    patient_id: UUID | None = None,
    max_retries: int | None = None,
    metadata: dict | None = None,
    send_at: datetime | None = None,
    commit: bool = True,
) -> MessageQueueItem:
    """
    Queue an outbound message.

    Sends never happen inside the webhook request; the worker picks the row up.
    Pass commit=False to join the caller's transaction.
    """
    priority = MessagePriority(priority)
    item = MessageQueueItem(
        patient_id=patient_id,
        phone_number=format_whatsapp_number(phone_number),
        message=message,
        message_type=MessageType(message_type).value,
        priority=priority.value,
        priority_score=priority_score(priority),
        status=QueueStatus.PENDING.value,
        retry_count=0,
        max_retries=settings.MESSAGE_QUEUE_MAX_RETRIES if max_retries is None else max_retries,
        next_retry_at=send_at or utcnow(),
        meta=metadata,
    )
    db.add(item)
    if commit:
        db.commit()
        db.refresh(item)
    else:
        db.flush()
    logger.info(
        "Queued %s message %s for %s (priority=%s)",
        item.message_type,
        item.id,
        mask_phone(item.phone_number),
        item.priority,
    )
    return item


def get_pending_messages(db: Session, limit: int = 10) -> list[MessageQueueItem]:
    """Pending rows that are due, most urgent first."""
    now = utcnow()
    return list(
        db.scalars(
            select(MessageQueueItem)
            .where(
                MessageQueueItem.status == QueueStatus.PENDING.value,
                MessageQueueItem.next_retry_at <= now,
            )
            .order_by(MessageQueueItem.priority_score, MessageQueueItem.created_at)
            .limit(limit)
        )
    )


def _try_claim(db: Session, item_id: UUID, worker_id: str) -> bool:
    result = db.execute(
        update(MessageQueueItem)
        .where(
            MessageQueueItem.id == item_id,
            MessageQueueItem.status == QueueStatus.PENDING.value,
        )
        .values(
            status=QueueStatus.PROCESSING.value,
            processed_at=utcnow(),
            claimed_by=worker_id,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def claim_batch(db: Session, limit: int, worker_id: str) -> list[MessageQueueItem]:
    """
    Claim up to `limit` due messages for this worker.

    Each claim is a conditional UPDATE from pending to processing; a row
    another worker flipped first is skipped, never delivered twice.
    """
    now = utcnow()
    candidate_ids = list(
        db.scalars(
            select(MessageQueueItem.id)
            .where(
                MessageQueueItem.status == QueueStatus.PENDING.value,
                MessageQueueItem.next_retry_at <= now,
            )
            .order_by(MessageQueueItem.priority_score, MessageQueueItem.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
    )
    claimed: list[MessageQueueItem] = []
    for item_id in candidate_ids:
        if _try_claim(db, item_id, worker_id):
            item = db.get(MessageQueueItem, item_id, populate_existing=True)
            if item:
                claimed.append(item)
        else:
            logger.debug("Message %s already claimed elsewhere", item_id)
    if not candidate_ids:
        db.commit()
    return claimed


def claim_next(db: Session, worker_id: str) -> MessageQueueItem | None:
    claimed = claim_batch(db, 1, worker_id)
    return claimed[0] if claimed else None


def mark_completed(
    db: Session, item: MessageQueueItem, provider_message_id: str | None = None
) -> MessageQueueItem:
    item.status = QueueStatus.COMPLETED.value
    item.completed_at = utcnow()
    item.provider_message_id = provider_message_id
    item.last_error = None
    db.commit()
    db.refresh(item)
    return item


def mark_failed(
    db: Session, item: MessageQueueItem, error: str, retryable: bool = True
) -> MessageQueueItem:
    """
    Record a failed attempt.

    Returns the row to pending with a backoff delay until retry_count
    reaches max_retries; then it is failed for good.
    """
    item.retry_count += 1
    item.last_error = error[:1000]
    if not retryable or item.retry_count >= item.max_retries:
        item.status = QueueStatus.FAILED.value
        item.completed_at = utcnow()
        logger.error(
            "Message %s failed permanently after %s attempts: %s",
            item.id,
            item.retry_count,
            item.last_error,
        )
    else:
        item.status = QueueStatus.PENDING.value
        item.next_retry_at = utcnow() + compute_backoff(item.retry_count)
        item.claimed_by = None
        logger.warning(
            "Message %s attempt %s failed, retrying at %s",
            item.id,
            item.retry_count,
            item.next_retry_at.isoformat(),
        )
    db.commit()
    db.refresh(item)
    return item


def recover_stuck(db: Session, older_than_minutes: int | None = None) -> int:
    """Count abandoned `processing` rows (worker crashed) as failed attempts."""
    minutes = older_than_minutes or settings.MESSAGE_QUEUE_STUCK_MINUTES
    cutoff = utcnow() - timedelta(minutes=minutes)
    stuck = list(
        db.scalars(
            select(MessageQueueItem).where(
                MessageQueueItem.status == QueueStatus.PROCESSING.value,
                MessageQueueItem.processed_at < cutoff,
            )
        )
    )
    for item in stuck:
        mark_failed(db, item, "Worker did not finish processing")
    return len(stuck)


def requeue_failed(db: Session, item_id: UUID) -> MessageQueueItem | None:
    """
    Queue a fresh copy of a failed message.

    The failed row stays failed; the copy starts with a clean retry budget.
    """
    failed = db.get(MessageQueueItem, item_id)
    if not failed or failed.status != QueueStatus.FAILED.value:
        return None
    meta = dict(failed.meta or {})
    meta["requeued_from"] = str(failed.id)
    return enqueue(
        db,
        phone_number=failed.phone_number,
        message=failed.message,
        message_type=MessageType(failed.message_type),
        priority=MessagePriority(failed.priority),
        patient_id=failed.patient_id,
        max_retries=failed.max_retries,
        metadata=meta,
    )


def cleanup_failed(db: Session, older_than_hours: int = 24) -> int:
    cutoff = utcnow() - timedelta(hours=older_than_hours)
    result = db.execute(
        delete(MessageQueueItem)
        .where(
            MessageQueueItem.status == QueueStatus.FAILED.value,
            MessageQueueItem.completed_at < cutoff,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount or 0


def get_messages_by_patient(
    db: Session,
    patient_id: UUID,
    status: QueueStatus | None = None,
    limit: int = 50,
) -> list[MessageQueueItem]:
    query = select(MessageQueueItem).where(MessageQueueItem.patient_id == patient_id)
    if status:
        query = query.where(MessageQueueItem.status == status.value)
    return list(db.scalars(query.order_by(MessageQueueItem.created_at.desc()).limit(limit)))


def remove_patient_messages(db: Session, patient_id: UUID, commit: bool = True) -> int:
    """Drop a patient's undelivered pending messages (e.g. after unsubscribe)."""
    result = db.execute(
        delete(MessageQueueItem)
        .where(
            MessageQueueItem.patient_id == patient_id,
            MessageQueueItem.status == QueueStatus.PENDING.value,
        )
        .execution_options(synchronize_session="fetch")
    )
    if commit:
        db.commit()
    return result.rowcount or 0


def get_stats(db: Session) -> dict:
    rows = db.execute(
        select(MessageQueueItem.status, func.count()).group_by(MessageQueueItem.status)
    ).all()
    by_status = {status.value: 0 for status in QueueStatus}
    for status, count in rows:
        by_status[status] = count
    pending_rows = db.execute(
        select(MessageQueueItem.priority, func.count())
        .where(MessageQueueItem.status == QueueStatus.PENDING.value)
        .group_by(MessageQueueItem.priority)
    ).all()
    return {
        "by_status": by_status,
        "pending_by_priority": {priority: count for priority, count in pending_rows},
        "total": sum(by_status.values()),
    }
