"""Inbound webhook pipeline.

adapter -> idempotency -> phone rate limit -> patient lookup -> conversation
engine. Everything before patient lookup runs without touching the database.
"""

from __future__ import annotations

import logging
from typing import Mapping

from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.core.errors import InternalFault, WebhookError
from prima.core.rate_limit import PhoneRateLimiter, get_phone_limiter
from prima.core.structured_logging import RequestContext, build_log_context
from prima.schemas.webhooks import AckEvent, Ignored, InboundMessage
from prima.services import (
    confirmation_service,
    conversation_engine,
    patient_lookup_service,
    verification_service,
)
from prima.services.idempotency_service import (
    IdempotencyGuard,
    get_idempotency_guard,
    key_for_event,
)
from prima.services.webhooks.registry import get_adapter

logger = logging.getLogger(__name__)


def _handle_message(
    db: Session, event: InboundMessage, ctx: RequestContext
) -> dict:
    patient = patient_lookup_service.find_patient_by_phone(db, event.sender, ctx)
    if patient is None:
        patient = patient_lookup_service.find_unsubscribed_patient_by_phone(db, event.sender)
    if patient is None:
        if not settings.AUTO_ONBOARD_UNKNOWN_SENDERS:
            return {"ok": True, "ignored": True, "reason": "no_patient_match"}
        patient, created = patient_lookup_service.find_or_create_patient_for_onboarding(
            db, event.sender, ctx
        )
        if created and event.name:
            patient.name = event.name
            db.commit()
        result = verification_service.send_verification_request(
            db, patient, ctx.with_patient(patient.id)
        )
        return {"ok": True, **result.to_response()}

    ctx = ctx.with_patient(patient.id)
    result = conversation_engine.process_message(db, patient, event, ctx)
    return {"ok": True, **result.to_response()}


def process_webhook(
    db: Session,
    provider: str,
    body: bytes,
    headers: Mapping[str, str],
    ctx: RequestContext,
    *,
    guard: IdempotencyGuard | None = None,
    phone_limiter: PhoneRateLimiter | None = None,
) -> dict:
    """
    Run one provider delivery through the pipeline and build the response body.

    Raises:
        KeyError: Unknown provider
        Unauthorized: Bad credentials
        InvalidPayload: Unparseable body
        InternalFault: Anything unexpected after the event was accepted
    """
    adapter = get_adapter(provider)
    adapter.authenticate(body, headers)
    event = adapter.normalize(body, headers)

    if isinstance(event, Ignored):
        logger.info(
            "Webhook ignored: %s", event.reason, extra=build_log_context(ctx)
        )
        return {"ok": True, "ignored": True, "reason": event.reason}

    guard = guard or get_idempotency_guard()
    key = key_for_event(event)
    if guard.check_and_mark(key):
        logger.info("Duplicate webhook delivery", extra=build_log_context(ctx))
        return {"ok": True, "duplicate": True}

    try:
        if isinstance(event, AckEvent):
            result = confirmation_service.record_delivery_status(db, event, ctx)
            return {"ok": True, **result.to_response()}

        phone_limiter = phone_limiter or get_phone_limiter()
        if not phone_limiter.hit(event.sender):
            logger.warning(
                "Phone rate limit exceeded", extra=build_log_context(ctx, phone=event.sender)
            )
            return {"ok": True, "processed": False, "action": "rate_limited"}

        return _handle_message(db, event, ctx)
    except WebhookError:
        guard.release(key)
        raise
    except Exception as exc:
        db.rollback()
        # Let the provider's retry through instead of answering "duplicate"
        guard.release(key)
        logger.exception(
            "Webhook processing failed", extra=build_log_context(ctx)
        )
        raise InternalFault() from exc
