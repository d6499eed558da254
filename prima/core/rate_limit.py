"""Rate limiting for webhook intake.

Two independent windows share one storage backend:
- per source IP, enforced by slowapi on each webhook route (429 on excess);
- per patient phone, a moving-window check the pipeline runs after
  deduplication (soft drop on excess so the provider does not retry).
"""

import logging
import os

from limits import parse
from limits.storage import Storage, storage_from_string
from limits.strategies import MovingWindowRateLimiter
from slowapi import Limiter
from slowapi.util import get_remote_address

from prima.core.config import settings
from prima.core.redis_client import REDIS_DISABLED_URL, get_storage_uri

logger = logging.getLogger(__name__)

IS_TESTING = os.getenv("TESTING", "").lower() in ("1", "true", "yes")


def _resolve_storage_uri() -> str:
    if IS_TESTING:
        return REDIS_DISABLED_URL
    uri = get_storage_uri()
    if uri == REDIS_DISABLED_URL:
        return uri
    # Try Redis, fall back to memory if connection fails
    try:
        import redis

        r = redis.from_url(uri, socket_connect_timeout=1)
        r.ping()
        return uri
    except Exception as e:
        logger.warning(f"Redis unavailable for rate limiting, using in-memory: {e}")
        return REDIS_DISABLED_URL


STORAGE_URI = _resolve_storage_uri()


def client_ip(request) -> str:
    """Client address, honoring the first X-Forwarded-For hop when present."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded and settings.TRUST_PROXY_HEADERS:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def webhook_ip_limit() -> str:
    return settings.RATE_LIMIT_WEBHOOK_PER_IP


limiter = Limiter(
    key_func=client_ip,
    storage_uri=STORAGE_URI,
    default_limits=[],
)

_storage: Storage | None = None


def get_storage() -> Storage:
    """Shared `limits` storage used by the phone limiter and idempotency guard."""
    global _storage
    if _storage is None:
        _storage = storage_from_string(STORAGE_URI)
    return _storage


def reset_storage() -> None:
    """Drop all counters (tests and local tooling)."""
    if _storage is not None:
        _storage.reset()
    limiter.reset()


class PhoneRateLimiter:
    """Sliding-window limiter keyed by normalized patient phone number."""

    namespace = "webhook:phone"

    def __init__(self, storage: Storage, limit: str):
        self._strategy = MovingWindowRateLimiter(storage)
        self._item = parse(limit)

    def hit(self, phone: str) -> bool:
        """Record one message; False when the phone is over its window."""
        try:
            return self._strategy.hit(self._item, self.namespace, phone)
        except Exception as e:
            # Fail open: a broken store must not drop patient replies.
            logger.warning("Phone rate limit check failed, allowing: %s", type(e).__name__)
            return True

    def remaining(self, phone: str) -> int:
        stats = self._strategy.get_window_stats(self._item, self.namespace, phone)
        return stats.remaining


def get_phone_limiter() -> PhoneRateLimiter:
    return PhoneRateLimiter(get_storage(), settings.RATE_LIMIT_PER_PHONE)
