"""Tests for the duplicate-delivery guard."""

from limits.storage import storage_from_string

from prima.db.enums import DeliveryStatus
from prima.schemas.webhooks import AckEvent, InboundMessage
from prima.services.idempotency_service import (
    IdempotencyGuard,
    build_key,
    key_for_event,
    message_fingerprint,
)


def _message(**overrides) -> InboundMessage:
    values = {
        "provider": "fonnte",
        "sender": "6281333852187",
        "message": "sudah",
        "id": "msg-1",
        "timestamp": 1700000000,
    }
    values.update(overrides)
    return InboundMessage(**values)


def _guard() -> IdempotencyGuard:
    return IdempotencyGuard(storage_from_string("memory://"), ttl_seconds=60)


def test_same_message_same_key():
    assert key_for_event(_message()) == key_for_event(_message())


def test_key_layout():
    key = key_for_event(_message())
    assert key.startswith("webhook:fonnte:incoming:")
    ack = AckEvent(
        provider="waha", message_ids=["a"], status=DeliveryStatus.SENT, raw_status="1"
    )
    assert key_for_event(ack).startswith("webhook:waha:message-ack:")


def test_fingerprint_without_id_uses_content():
    first = message_fingerprint(_message(id=None))
    assert first == message_fingerprint(_message(id=None))
    assert first != message_fingerprint(_message(id=None, message="belum"))
    assert first != message_fingerprint(_message(id=None, timestamp=1700000001))


def test_check_and_mark_flags_second_delivery():
    guard = _guard()
    key = build_key("fonnte", "incoming", "abc")
    assert guard.check_and_mark(key) is False
    assert guard.check_and_mark(key) is True
    assert guard.is_duplicate(key) is True


def test_release_allows_reprocessing():
    guard = _guard()
    key = build_key("fonnte", "incoming", "abc")
    guard.check_and_mark(key)
    guard.release(key)
    assert guard.is_duplicate(key) is False
    assert guard.check_and_mark(key) is False


def test_mark_seen():
    guard = _guard()
    key = build_key("gowa", "incoming", "xyz")
    assert guard.is_duplicate(key) is False
    guard.mark_seen(key)
    assert guard.is_duplicate(key) is True


def test_broken_store_fails_open():
    class BrokenStorage:
        def incr(self, *args, **kwargs):
            raise ConnectionError("down")

    guard = IdempotencyGuard(BrokenStorage(), ttl_seconds=60)
    assert guard.check_and_mark("webhook:fonnte:incoming:abc") is False
