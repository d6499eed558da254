"""Fonnte gateway adapter (flat JSON or form body)."""

from __future__ import annotations

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
    first_value,
    is_truthy,
    lower_headers,
    parse_body,
    require_secret,
    verify_token,
)
from prima.utils.phone import MIN_SENDER_DIGITS, normalize_phone

logger = logging.getLogger(__name__)

PROVIDER = "fonnte"

_STATUS_MAP = {
    "sent": DeliveryStatus.SENT,
    "queued": DeliveryStatus.SENT,
    "pending": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.DELIVERED,
    "opened": DeliveryStatus.DELIVERED,
    "received": DeliveryStatus.DELIVERED,
    "failed": DeliveryStatus.FAILED,
    "error": DeliveryStatus.FAILED,
    "undelivered": DeliveryStatus.FAILED,
    "invalid": DeliveryStatus.FAILED,
}


def map_fonnte_status(raw: str | None) -> DeliveryStatus | None:
    if not raw:
        return None
    return _STATUS_MAP.get(raw.strip().lower())


class FonnteAdapter:
    name = PROVIDER

    def authenticate(self, body: bytes, headers: Mapping[str, str]) -> None:
        secret = settings.FONNTE_WEBHOOK_TOKEN
        if not require_secret(secret, self.name):
            return
        h = lower_headers(headers)
        token = h.get("x-webhook-token") or h.get("authorization")
        if not verify_token(token, secret):
            logger.warning("Fonnte webhook invalid token")
            raise Unauthorized("Invalid webhook token")
        check_replay_window(h.get("x-webhook-timestamp"))

    def normalize(self, body: bytes, headers: Mapping[str, str]) -> InboundEvent:
        return self.normalize_payload(parse_body(body, headers))

    def normalize_payload(self, data: Mapping[str, Any]) -> InboundEvent:
        if is_truthy(first_value(data, "fromMe", "from_me", "isFromMe")):
            return Ignored(provider=self.name, reason="own_message")

        text = as_text(first_value(data, "message", "text", "body", "pesan"))
        message_id = as_text(first_value(data, "id", "message_id", "msgId"))
        raw_status = as_text(first_value(data, "status", "state"))

        # Status callbacks carry an id and a status but no text
        if not text and raw_status and message_id:
            status = map_fonnte_status(raw_status)
            if status is None:
                return Ignored(provider=self.name, reason="unknown_status")
            return AckEvent(
                provider=self.name,
                message_ids=[message_id],
                status=status,
                raw_status=raw_status,
                timestamp=as_timestamp(first_value(data, "timestamp", "time", "created_at")),
            )

        if is_truthy(data.get("isgroup")) or is_truthy(data.get("is_group")):
            return Ignored(provider=self.name, reason="group_message")

        sender = normalize_phone(
            first_value(data, "sender", "phone", "from", "number", "wa_number")
        )
        if not sender:
            return Ignored(provider=self.name, reason="missing_sender")
        if len(sender) < MIN_SENDER_DIGITS:
            return Ignored(provider=self.name, reason="invalid_sender")
        if not text:
            return Ignored(provider=self.name, reason="missing_message")

        return InboundMessage(
            provider=self.name,
            sender=sender,
            message=text,
            device=as_text(first_value(data, "device", "gateway", "instance")),
            name=as_text(
                first_value(data, "name", "sender_name", "contact_name", "pushname")
            ),
            id=message_id,
            timestamp=as_timestamp(first_value(data, "timestamp", "time", "created_at")),
        )
