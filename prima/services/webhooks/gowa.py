"""GOWA (go-whatsapp-web-multidevice) bridge adapter."""

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
    is_truthy,
    lower_headers,
    parse_body,
    require_secret,
    verify_hmac_signature,
)
from prima.utils.phone import MIN_SENDER_DIGITS, normalize_phone

logger = logging.getLogger(__name__)

PROVIDER = "gowa"
SIGNATURE_HEADER = "x-hub-signature-256"
ACK_EVENT = "message.ack"
MEDIA_FIELDS = ("image", "video", "document", "audio", "sticker")

_RECEIPT_TYPES = {
    "sent": DeliveryStatus.SENT,
    "server": DeliveryStatus.SENT,
    "delivered": DeliveryStatus.DELIVERED,
    "read": DeliveryStatus.DELIVERED,
    "read-self": DeliveryStatus.DELIVERED,
    "played": DeliveryStatus.DELIVERED,
    "error": DeliveryStatus.FAILED,
    "failed": DeliveryStatus.FAILED,
}


def map_gowa_receipt(receipt_type: str | None) -> DeliveryStatus | None:
    if not receipt_type:
        return None
    return _RECEIPT_TYPES.get(receipt_type.strip().lower())


def _split_from(raw_from: str) -> tuple[str, str | None]:
    # Group deliveries read "<sender>@s.whatsapp.net in <group>@g.us"
    sender, _, chat = raw_from.partition(" in ")
    return sender.strip(), chat.strip() or None


def _media_caption(data: Mapping[str, Any]) -> tuple[bool, str | None]:
    for field in MEDIA_FIELDS:
        media = data.get(field)
        if media:
            caption = media.get("caption") if isinstance(media, dict) else None
            return True, as_text(caption)
    return False, None


class GowaAdapter:
    name = PROVIDER

    def authenticate(self, body: bytes, headers: Mapping[str, str]) -> None:
        secret = settings.GOWA_WEBHOOK_SECRET
        if not require_secret(secret, self.name):
            return
        h = lower_headers(headers)
        signature = h.get(SIGNATURE_HEADER, "")
        if not signature:
            logger.warning("GOWA webhook missing signature")
            raise Unauthorized("Missing signature")
        if not verify_hmac_signature(body, signature, secret, prefix="sha256="):
            logger.warning("GOWA webhook invalid signature")
            raise Unauthorized("Invalid signature")
        # Unsigned header; replays of a signed body fall to idempotency
        check_replay_window(h.get("x-webhook-timestamp"))

    def normalize(self, body: bytes, headers: Mapping[str, str]) -> InboundEvent:
        return self.normalize_payload(parse_body(body, headers))

    def normalize_payload(self, data: Mapping[str, Any]) -> InboundEvent:
        if data.get("event") == ACK_EVENT:
            return self._ack(data)
        if data.get("action"):
            return Ignored(provider=self.name, reason="unsupported_action")
        if is_truthy(data.get("is_from_me")) or is_truthy(data.get("from_me")):
            return Ignored(provider=self.name, reason="own_message")

        raw_from, chat = _split_from(as_text(data.get("from")) or "")
        chat = chat or as_text(data.get("chat_id"))
        if chat and chat.endswith("@g.us"):
            return Ignored(provider=self.name, reason="group_message")

        sender = normalize_phone(as_text(data.get("sender_id")) or raw_from)
        if not sender:
            return Ignored(provider=self.name, reason="missing_sender")
        if len(sender) < MIN_SENDER_DIGITS:
            return Ignored(provider=self.name, reason="invalid_sender")

        message = data.get("message") if isinstance(data.get("message"), dict) else {}
        text = as_text(message.get("text"))
        if not text:
            has_media, caption = _media_caption(data)
            text = caption
            if not text:
                reason = "empty_message" if has_media else "missing_message"
                return Ignored(provider=self.name, reason=reason)

        return InboundMessage(
            provider=self.name,
            sender=sender,
            message=text,
            device=as_text(data.get("device_id")),
            name=as_text(data.get("pushname")),
            id=as_text(message.get("id")),
            timestamp=as_timestamp(data.get("timestamp")),
        )

    def _ack(self, data: Mapping[str, Any]) -> InboundEvent:
        payload = data.get("payload")
        if not isinstance(payload, dict):
            return Ignored(provider=self.name, reason="missing_payload")
        ids = payload.get("ids") or []
        if isinstance(ids, str):
            ids = [ids]
        message_ids = [str(i) for i in ids if i]
        if not message_ids:
            return Ignored(provider=self.name, reason="missing_message_id")
        receipt_type = as_text(payload.get("receipt_type"))
        status = map_gowa_receipt(receipt_type)
        if status is None:
            return Ignored(provider=self.name, reason="unknown_status")
        return AckEvent(
            provider=self.name,
            message_ids=message_ids,
            status=status,
            raw_status=receipt_type,
            timestamp=as_timestamp(data.get("timestamp")),
        )
