"""Webhooks router - inbound WhatsApp provider callbacks."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from prima.core.deps import get_db
from prima.core.rate_limit import client_ip, limiter, webhook_ip_limit
from prima.core.structured_logging import RequestContext, build_log_context
from prima.schemas.webhooks import WebhookPingResponse
from prima.services.webhook_processing_service import process_webhook
from prima.services.webhooks.base import read_body_safe
from prima.services.webhooks.registry import provider_names

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_provider(provider: str) -> str:
    name = provider.lower()
    if name not in provider_names():
        raise HTTPException(status_code=404, detail="Unknown provider")
    return name


@router.get("/{provider}", response_model=WebhookPingResponse)
async def ping_webhook(provider: str, mode: str = Query("ping")):
    """Reachability check used when registering the webhook URL with a provider."""
    name = _require_provider(provider)
    return WebhookPingResponse(ok=True, route=f"/webhooks/{name}", mode=mode)


@router.post("/{provider}")
@limiter.limit(webhook_ip_limit)
async def receive_webhook(
    provider: str,
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive one provider callback.

    Security:
    - Payload size capped before parsing
    - Provider token / HMAC signature and replay window checked by the adapter
    - Per-IP rate limit (slowapi) and per-phone rate limit (pipeline)

    Responds 200 for every accepted delivery, including ignored and duplicate
    events, so providers do not retry them.
    """
    name = _require_provider(provider)
    body = await read_body_safe(request)
    ctx = RequestContext.new(
        provider=name,
        client_ip=client_ip(request),
        route=request.url.path,
    )
    logger.debug("Webhook received", extra=build_log_context(ctx))
    return process_webhook(db, name, body, request.headers, ctx)
