"""Structured logging helpers (PHI-safe)."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from typing import Any


def mask_phone(phone: str | None) -> str:
    """Keep only the last four digits of a phone number for logs."""
    if not phone:
        return ""
    return f"***{phone[-4:]}"


@dataclass(frozen=True)
class RequestContext:
    """Per-webhook context threaded explicitly through lookup and log calls."""

    request_id: str
    provider: str | None = None
    client_ip: str | None = None
    route: str | None = None
    patient_id: str | None = None

    @classmethod
    def new(
        cls,
        *,
        provider: str | None = None,
        client_ip: str | None = None,
        route: str | None = None,
    ) -> "RequestContext":
        return cls(
            request_id=uuid.uuid4().hex,
            provider=provider,
            client_ip=client_ip,
            route=route,
        )

    def with_patient(self, patient_id: Any) -> "RequestContext":
        return replace(self, patient_id=str(patient_id) if patient_id else None)


def build_log_context(
    ctx: RequestContext | None = None,
    *,
    request_id: str | None = None,
    provider: str | None = None,
    patient_id: str | None = None,
    phone: str | None = None,
    route: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict."""
    context: dict[str, Any] = {}
    if ctx is not None:
        request_id = request_id or ctx.request_id
        provider = provider or ctx.provider
        patient_id = patient_id or ctx.patient_id
        route = route or ctx.route
    if request_id:
        context["request_id"] = request_id
    if provider:
        context["provider"] = provider
    if patient_id:
        context["patient_id"] = str(patient_id)
    if phone:
        context["phone"] = mask_phone(phone)
    if route:
        context["route"] = route
    return context
