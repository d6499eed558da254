"""WAHA bridge adapter (event envelope with a nested payload)."""

from __future__ import annotations

import hashlib
import logging
from typing import Any, Mapping

from prima.core.config import settings
from prima.core.errors import Unauthorized
from prima.db.enums import DeliveryStatus
from prima.schemas.webhooks import AckEvent, Ignored, InboundEvent, InboundMessage
from prima.services.webhooks.base import (
    as_text,
    as_timestamp,
    check_replay_window,
    is_truthy,
    lower_headers,
    parse_body,
    require_secret,
    verify_hmac_signature,
    verify_token,
)
from prima.utils.phone import MIN_SENDER_DIGITS, normalize_phone

logger = logging.getLogger(__name__)

PROVIDER = "waha"
MESSAGE_EVENTS = {"message", "message.any"}
ACK_EVENT = "message.ack"

# WAHA ack levels: -1 error, 0 pending, 1 server, 2 device, 3 read, 4 played
_ACK_LEVELS = {
    -1: DeliveryStatus.FAILED,
    0: DeliveryStatus.SENT,
    1: DeliveryStatus.SENT,
    2: DeliveryStatus.DELIVERED,
    3: DeliveryStatus.DELIVERED,
    4: DeliveryStatus.DELIVERED,
}
_ACK_NAMES = {
    "error": -1,
    "pending": 0,
    "server": 1,
    "device": 2,
    "read": 3,
    "played": 4,
}


def map_waha_ack(ack: Any, ack_name: Any = None) -> DeliveryStatus | None:
    level = None
    if isinstance(ack, int) and not isinstance(ack, bool):
        level = ack
    elif isinstance(ack, str) and ack.lstrip("-").isdigit():
        level = int(ack)
    elif isinstance(ack_name, str):
        level = _ACK_NAMES.get(ack_name.strip().lower())
    if level is None:
        return None
    return _ACK_LEVELS.get(level)


def _message_id(value: Any) -> str | None:
    # Older WAHA engines send {"_serialized": "..."} instead of a string
    if isinstance(value, dict):
        value = value.get("_serialized") or value.get("id")
    return as_text(value)


class WahaAdapter:
    name = PROVIDER

    def authenticate(self, body: bytes, headers: Mapping[str, str]) -> None:
        h = lower_headers(headers)
        token_secret = settings.WAHA_WEBHOOK_TOKEN
        if require_secret(token_secret, self.name):
            token = h.get("x-api-key") or h.get("x-webhook-token")
            if not verify_token(token, token_secret):
                logger.warning("WAHA webhook invalid token")
                raise Unauthorized("Invalid webhook token")

        hmac_secret = settings.WAHA_WEBHOOK_HMAC_SECRET
        if hmac_secret:
            signature = h.get("x-webhook-hmac", "")
            if not signature:
                logger.warning("WAHA webhook missing HMAC")
                raise Unauthorized("Missing signature")
            if not verify_hmac_signature(body, signature, hmac_secret, hashlib.sha512):
                logger.warning("WAHA webhook invalid HMAC")
                raise Unauthorized("Invalid signature")
        # Unsigned header; replays of a signed body fall to idempotency
        check_replay_window(h.get("x-webhook-timestamp"))

    def normalize(self, body: bytes, headers: Mapping[str, str]) -> InboundEvent:
        return self.normalize_payload(parse_body(body, headers))

    def normalize_payload(self, data: Mapping[str, Any]) -> InboundEvent:
        event = as_text(data.get("event"))
        payload = data.get("payload")
        if not isinstance(payload, dict):
            return Ignored(provider=self.name, reason="missing_payload")

        if event == ACK_EVENT:
            return self._ack(payload)
        if event not in MESSAGE_EVENTS:
            return Ignored(provider=self.name, reason="not_message_event")

        if is_truthy(payload.get("fromMe")) or payload.get("source") == "api":
            return Ignored(provider=self.name, reason="own_message")

        raw_from = as_text(payload.get("from")) or ""
        if raw_from.endswith("@g.us"):
            return Ignored(provider=self.name, reason="group_message")
        sender = normalize_phone(raw_from)
        if not sender:
            return Ignored(provider=self.name, reason="missing_sender")
        if len(sender) < MIN_SENDER_DIGITS:
            return Ignored(provider=self.name, reason="invalid_sender")

        text = as_text(payload.get("body"))
        if not text:
            return Ignored(provider=self.name, reason="empty_message")

        raw_data = payload.get("_data") if isinstance(payload.get("_data"), dict) else {}
        return InboundMessage(
            provider=self.name,
            sender=sender,
            message=text,
            device=as_text(data.get("session")),
            name=as_text(payload.get("pushName") or raw_data.get("notifyName")),
            id=_message_id(payload.get("id")),
            timestamp=as_timestamp(payload.get("timestamp")),
        )

    def _ack(self, payload: Mapping[str, Any]) -> InboundEvent:
        message_id = _message_id(payload.get("id"))
        if not message_id:
            return Ignored(provider=self.name, reason="missing_message_id")
        status = map_waha_ack(payload.get("ack"), payload.get("ackName"))
        if status is None:
            return Ignored(provider=self.name, reason="unknown_status")
        raw = payload.get("ackName") or payload.get("ack")
        return AckEvent(
            provider=self.name,
            message_ids=[message_id],
            status=status,
            raw_status=str(raw),
            timestamp=as_timestamp(payload.get("timestamp")),
        )
