"""Provider adapter interface and shared webhook helpers."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from typing import Any, Mapping, Protocol
from urllib.parse import parse_qsl

from fastapi import HTTPException, Request

from prima.core.config import settings
from prima.core.errors import InvalidPayload, Unauthorized
from prima.schemas.webhooks import InboundEvent

# Provider timestamps above this are milliseconds
_MS_THRESHOLD = 10**12


class ProviderAdapter(Protocol):
    name: str

    def authenticate(self, body: bytes, headers: Mapping[str, str]) -> None:
        """Raise Unauthorized unless the request carries valid credentials."""

    def normalize(self, body: bytes, headers: Mapping[str, str]) -> InboundEvent:
        """Turn a raw provider body into a canonical event."""


async def read_body_safe(request: Request, max_bytes: int | None = None) -> bytes:
    limit = max_bytes or settings.WEBHOOK_MAX_PAYLOAD_BYTES
    content_length = request.headers.get("content-length")
    if content_length:
        try:
            if int(content_length) > limit:
                raise HTTPException(413, "Payload too large")
        except ValueError:
            pass

    chunks: list[bytes] = []
    total = 0
    async for chunk in request.stream():
        if not chunk:
            continue
        total += len(chunk)
        if total > limit:
            raise HTTPException(413, "Payload too large")
        chunks.append(chunk)
    return b"".join(chunks)


def lower_headers(headers: Mapping[str, str]) -> dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def parse_body(body: bytes, headers: Mapping[str, str]) -> dict[str, Any]:
    """
    Decode a JSON or form-encoded body into a dict.

    Raises:
        InvalidPayload: If the body is empty or cannot be decoded
    """
    if not body or not body.strip():
        raise InvalidPayload("Empty body")
    content_type = lower_headers(headers).get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type:
        try:
            return dict(parse_qsl(body.decode("utf-8"), keep_blank_values=True))
        except UnicodeDecodeError as exc:
            raise InvalidPayload("Invalid form body") from exc
    try:
        data = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise InvalidPayload("Invalid JSON") from exc
    if not isinstance(data, dict):
        raise InvalidPayload("Expected a JSON object")
    return data


def first_value(data: Mapping[str, Any], *keys: str) -> Any:
    """First non-empty value among candidate field names."""
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


def as_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def is_truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def require_secret(secret: str, provider: str) -> bool:
    """
    Whether a check must run for this secret.

    An unset secret skips the check in dev only; elsewhere the provider is
    treated as unconfigured and every request is refused.
    """
    if secret:
        return True
    if settings.is_dev:
        return False
    raise Unauthorized(f"{provider} webhook secret not configured")


def verify_token(provided: str | None, expected: str) -> bool:
    if not provided:
        return False
    if provided.lower().startswith("bearer "):
        provided = provided[7:]
    return hmac.compare_digest(provided.strip(), expected)


def verify_hmac_signature(
    body: bytes,
    signature: str,
    secret: str,
    digestmod=hashlib.sha256,
    prefix: str = "",
) -> bool:
    expected = hmac.new(secret.encode("utf-8"), body, digestmod).hexdigest()
    provided = signature.strip()
    if prefix and provided.startswith(prefix):
        provided = provided[len(prefix):]
    return hmac.compare_digest(expected, provided.lower())


def check_replay_window(timestamp: str | None, now: float | None = None) -> None:
    """
    Reject stale or future-dated deliveries.

    The WAHA and GOWA signatures cover the body only, so this header is not
    tamper-proof. A replayed signed body is caught by the idempotency guard.

    Raises:
        Unauthorized: If the timestamp is not numeric or outside the window
    """
    if timestamp is None:
        return
    try:
        value = float(timestamp)
    except (TypeError, ValueError):
        raise Unauthorized("Invalid webhook timestamp")
    if value > _MS_THRESHOLD:
        value = value / 1000
    now = time.time() if now is None else now
    if abs(now - value) > settings.WEBHOOK_REPLAY_WINDOW_SECONDS:
        raise Unauthorized("Webhook timestamp outside allowed window")


def as_timestamp(value: Any) -> str | int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    return as_text(value)
