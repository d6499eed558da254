"""Duplicate-delivery guard for webhook events.

Keys live in the shared `limits` storage (Redis when configured, in-process
otherwise) so every API worker sees the same fingerprints.
"""

from __future__ import annotations

import hashlib
import json
import logging

from limits.storage import Storage

from prima.core.config import settings
from prima.core.rate_limit import get_storage
from prima.schemas.webhooks import AckEvent, InboundMessage

logger = logging.getLogger(__name__)

EVENT_INCOMING = "incoming"
EVENT_MESSAGE_ACK = "message-ack"


def _hash(parts: list) -> str:
    encoded = json.dumps(parts, sort_keys=True, default=str, ensure_ascii=False)
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def message_fingerprint(message: InboundMessage) -> str:
    """
    Stable hash of an inbound message.

    The provider id alone is not trusted across providers, so sender,
    timestamp and text are always included; a missing id still yields a
    composite hash.
    """
    return _hash([message.id or "", message.sender, message.timestamp or "", message.message])


def ack_fingerprint(ack: AckEvent) -> str:
    return _hash([sorted(ack.message_ids), ack.status.value, ack.timestamp or ""])


def build_key(provider: str, event_type: str, fingerprint: str) -> str:
    return f"webhook:{provider}:{event_type}:{fingerprint}"


def key_for_event(event: InboundMessage | AckEvent) -> str:
    if isinstance(event, AckEvent):
        return build_key(event.provider, EVENT_MESSAGE_ACK, ack_fingerprint(event))
    return build_key(event.provider, EVENT_INCOMING, message_fingerprint(event))


class IdempotencyGuard:
    """Remembers event keys for a TTL window."""

    def __init__(self, storage: Storage, ttl_seconds: int):
        self._storage = storage
        self.ttl_seconds = ttl_seconds

    def is_duplicate(self, key: str) -> bool:
        return self._storage.get(key) > 0

    def mark_seen(self, key: str, ttl: int | None = None) -> None:
        self._storage.incr(key, ttl or self.ttl_seconds)

    def check_and_mark(self, key: str, ttl: int | None = None) -> bool:
        """
        Record the key and report whether it was already present.

        A single increment, so two concurrent deliveries cannot both pass.
        A broken store fails open (the event is processed).
        """
        try:
            count = self._storage.incr(key, ttl or self.ttl_seconds)
        except Exception as e:
            logger.warning("Idempotency store unavailable, processing anyway: %s", type(e).__name__)
            return False
        return count > 1

    def release(self, key: str) -> None:
        """Forget a key so a retried delivery is processed again."""
        try:
            self._storage.clear(key)
        except Exception as e:
            logger.warning("Could not release idempotency key: %s", type(e).__name__)


def get_idempotency_guard() -> IdempotencyGuard:
    return IdempotencyGuard(get_storage(), settings.IDEMPOTENCY_TTL_SECONDS)
