"""Tests for the outbound message queue."""

from datetime import timedelta

import pytest

from prima.core.config import settings
from prima.db.base import utcnow
from prima.db.enums import MessagePriority, MessageType, QueueStatus
from prima.services import message_queue_service as queue


def _enqueue(db, priority=MessagePriority.MEDIUM, **kwargs):
    return queue.enqueue(
        db,
        phone_number=kwargs.pop("phone_number", "081333852187"),
        message=kwargs.pop("message", "halo"),
        message_type=kwargs.pop("message_type", MessageType.GENERAL),
        priority=priority,
        **kwargs,
    )


def test_enqueue_formats_phone_and_scores_priority(db):
    item = _enqueue(db, MessagePriority.URGENT)
    assert item.phone_number == "6281333852187"
    assert item.priority_score == 1
    assert item.status == QueueStatus.PENDING.value
    assert item.max_retries == settings.MESSAGE_QUEUE_MAX_RETRIES


def test_claim_order_is_by_priority(db):
    low = _enqueue(db, MessagePriority.LOW)
    urgent = _enqueue(db, MessagePriority.URGENT)
    medium = _enqueue(db, MessagePriority.MEDIUM)
    high = _enqueue(db, MessagePriority.HIGH)

    claimed = queue.claim_batch(db, 10, "worker-a")
    assert [i.id for i in claimed] == [urgent.id, high.id, medium.id, low.id]
    assert all(i.status == QueueStatus.PROCESSING.value for i in claimed)
    assert all(i.claimed_by == "worker-a" for i in claimed)


def test_future_messages_not_claimed(db):
    _enqueue(db, send_at=utcnow() + timedelta(minutes=5))
    assert queue.claim_batch(db, 5, "worker-a") == []


def test_claimed_row_cannot_be_claimed_again(db):
    item = _enqueue(db)
    assert queue.claim_next(db, "worker-a").id == item.id
    assert queue.claim_next(db, "worker-b") is None
    # The conditional update itself refuses a second claim
    assert queue._try_claim(db, item.id, "worker-b") is False


@pytest.mark.parametrize(
    "retry_count,seconds",
    [(1, 30), (2, 60), (3, 120), (8, 3600), (20, 3600)],
)
def test_backoff_is_exponential_and_capped(retry_count, seconds):
    assert queue.compute_backoff(retry_count) == timedelta(seconds=seconds)


def test_failure_reschedules_then_fails_for_good(db):
    item = _enqueue(db, max_retries=2)
    item = queue.claim_next(db, "worker-a")

    item = queue.mark_failed(db, item, "HTTP 503")
    assert item.status == QueueStatus.PENDING.value
    assert item.retry_count == 1
    assert item.next_retry_at > utcnow()
    assert item.claimed_by is None

    # Not due yet
    assert queue.claim_next(db, "worker-a") is None
    item.next_retry_at = utcnow() - timedelta(seconds=1)
    db.commit()

    item = queue.claim_next(db, "worker-a")
    item = queue.mark_failed(db, item, "HTTP 503")
    assert item.status == QueueStatus.FAILED.value
    assert item.retry_count == 2
    assert item.completed_at is not None

    # Terminal
    assert queue.get_pending_messages(db) == []


def test_non_retryable_failure_is_terminal(db):
    _enqueue(db)
    item = queue.claim_next(db, "w")
    item = queue.mark_failed(db, item, "bad token", retryable=False)
    assert item.status == QueueStatus.FAILED.value
    assert item.retry_count == 1


def test_mark_completed(db):
    _enqueue(db)
    item = queue.claim_next(db, "w")
    item = queue.mark_completed(db, item, "wamid-9")
    assert item.status == QueueStatus.COMPLETED.value
    assert item.provider_message_id == "wamid-9"


def test_requeue_creates_fresh_copy(db):
    original = _enqueue(db, max_retries=1)
    item = queue.claim_next(db, "w")
    queue.mark_failed(db, item, "boom")

    copy = queue.requeue_failed(db, original.id)
    db.refresh(original)
    assert original.status == QueueStatus.FAILED.value
    assert copy.id != original.id
    assert copy.status == QueueStatus.PENDING.value
    assert copy.retry_count == 0
    assert copy.meta == {"requeued_from": str(original.id)}

    # Only failed rows can be requeued
    assert queue.requeue_failed(db, copy.id) is None


def test_recover_stuck_processing(db):
    _enqueue(db)
    item = queue.claim_next(db, "w")
    item.processed_at = utcnow() - timedelta(minutes=30)
    db.commit()

    assert queue.recover_stuck(db) == 1
    db.refresh(item)
    assert item.status == QueueStatus.PENDING.value
    assert item.retry_count == 1


def test_cleanup_failed(db):
    _enqueue(db, max_retries=1)
    item = queue.claim_next(db, "w")
    item = queue.mark_failed(db, item, "boom")
    item.completed_at = utcnow() - timedelta(hours=48)
    db.commit()
    assert queue.cleanup_failed(db) == 1


def test_stats(db):
    _enqueue(db, MessagePriority.HIGH)
    _enqueue(db, MessagePriority.HIGH)
    _enqueue(db, MessagePriority.LOW)
    queue.claim_next(db, "w")

    stats = queue.get_stats(db)
    assert stats["total"] == 3
    assert stats["by_status"]["processing"] == 1
    assert stats["by_status"]["pending"] == 2
    assert stats["pending_by_priority"] == {"high": 1, "low": 1}
