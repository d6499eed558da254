"""Outbound WhatsApp send clients, one per provider."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Protocol

import httpx

from prima.core.config import settings
from prima.core.errors import DownstreamSendFailure
from prima.core.structured_logging import mask_phone
from prima.utils.phone import format_whatsapp_number

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_RETRY_STATUSES = {429, 500, 502, 503, 504}


@dataclass
class SendResult:
    provider: str
    provider_message_id: str | None = None


class WhatsAppSender(Protocol):
    provider: str

    async def send(self, phone: str, message: str) -> SendResult:
        """Deliver one text message; raise DownstreamSendFailure on error."""


async def request_with_retries(
    request_fn: Callable[[], Awaitable[httpx.Response]],
    *,
    max_attempts: int = 2,
    base_delay: float = 0.5,
    max_delay: float = 2.0,
) -> httpx.Response:
    """Short in-request retries for transient errors; the queue owns long backoff."""
    for attempt in range(max_attempts):
        try:
            response = await request_fn()
        except httpx.RequestError as exc:
            if attempt >= max_attempts - 1:
                raise DownstreamSendFailure(f"Provider unreachable: {type(exc).__name__}") from exc
            logger.warning("Provider request failed, retrying", exc_info=exc)
        else:
            if response.status_code not in DEFAULT_RETRY_STATUSES or attempt >= max_attempts - 1:
                return response
            logger.warning("Provider returned %s, retrying", response.status_code)
        delay = min(max_delay, base_delay * (2**attempt))
        await asyncio.sleep(delay + random.uniform(0, delay / 2))
    raise DownstreamSendFailure("Provider request retries exhausted")


def _raise_for_status(provider: str, response: httpx.Response) -> None:
    if response.status_code < 400:
        return
    retryable = response.status_code in DEFAULT_RETRY_STATUSES
    raise DownstreamSendFailure(
        f"{provider} send failed with HTTP {response.status_code}",
        status_code=response.status_code,
        retryable=retryable,
    )


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class FonnteSender:
    provider = "fonnte"

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def send(self, phone: str, message: str) -> SendResult:
        if not settings.FONNTE_TOKEN:
            raise DownstreamSendFailure("FONNTE_TOKEN not configured", retryable=False)
        target = format_whatsapp_number(phone)
        url = f"{settings.FONNTE_BASE_URL.rstrip('/')}/send"

        async def _call(client: httpx.AsyncClient) -> httpx.Response:
            return await request_with_retries(
                lambda: client.post(
                    url,
                    headers={"Authorization": settings.FONNTE_TOKEN},
                    data={"target": target, "message": message, "countryCode": "62"},
                )
            )

        response = await _with_client(self._client, _call)
        _raise_for_status(self.provider, response)
        data = _json(response)
        if data.get("status") is False:
            raise DownstreamSendFailure(
                f"fonnte rejected message: {data.get('reason') or 'unknown reason'}"
            )
        ids = data.get("id")
        message_id = ids[0] if isinstance(ids, list) and ids else ids
        return SendResult(self.provider, str(message_id) if message_id else None)


class WahaSender:
    provider = "waha"

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def send(self, phone: str, message: str) -> SendResult:
        chat_id = f"{format_whatsapp_number(phone)}@c.us"
        url = f"{settings.WAHA_BASE_URL.rstrip('/')}/api/sendText"
        headers = {"X-Api-Key": settings.WAHA_API_KEY} if settings.WAHA_API_KEY else {}

        async def _call(client: httpx.AsyncClient) -> httpx.Response:
            return await request_with_retries(
                lambda: client.post(
                    url,
                    headers=headers,
                    json={"session": settings.WAHA_SESSION, "chatId": chat_id, "text": message},
                )
            )

        response = await _with_client(self._client, _call)
        _raise_for_status(self.provider, response)
        message_id = _json(response).get("id")
        if isinstance(message_id, dict):
            message_id = message_id.get("_serialized")
        return SendResult(self.provider, str(message_id) if message_id else None)


class GowaSender:
    provider = "gowa"

    def __init__(self, client: httpx.AsyncClient | None = None):
        self._client = client

    async def send(self, phone: str, message: str) -> SendResult:
        url = f"{settings.GOWA_BASE_URL.rstrip('/')}/send/message"
        auth = None
        if settings.GOWA_BASIC_AUTH_USER:
            auth = httpx.BasicAuth(settings.GOWA_BASIC_AUTH_USER, settings.GOWA_BASIC_AUTH_PASSWORD)
        payload = {"phone": f"{format_whatsapp_number(phone)}@s.whatsapp.net", "message": message}

        async def _call(client: httpx.AsyncClient) -> httpx.Response:
            return await request_with_retries(lambda: client.post(url, json=payload, auth=auth))

        response = await _with_client(self._client, _call)
        _raise_for_status(self.provider, response)
        data = _json(response)
        results = data.get("results") if isinstance(data.get("results"), dict) else {}
        message_id = results.get("message_id")
        return SendResult(self.provider, str(message_id) if message_id else None)


async def _with_client(
    client: httpx.AsyncClient | None,
    call: Callable[[httpx.AsyncClient], Awaitable[httpx.Response]],
) -> httpx.Response:
    if client is not None:
        return await call(client)
    async with httpx.AsyncClient(timeout=DEFAULT_TIMEOUT_SECONDS) as owned:
        return await call(owned)


_SENDERS: dict[str, type] = {
    "fonnte": FonnteSender,
    "waha": WahaSender,
    "gowa": GowaSender,
}


def get_sender(provider: str | None = None, client: httpx.AsyncClient | None = None) -> WhatsAppSender:
    name = (provider or settings.WHATSAPP_PROVIDER).lower()
    sender_cls = _SENDERS.get(name)
    if not sender_cls:
        raise ValueError(f"Unknown WhatsApp provider: {name}")
    logger.debug("Using %s sender", name)
    return sender_cls(client)


def describe_target(phone: str) -> str:
    return mask_phone(format_whatsapp_number(phone))
