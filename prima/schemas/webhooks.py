"""Canonical inbound event shapes produced by the provider adapters."""

from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from prima.db.enums import DeliveryStatus


class InboundMessage(BaseModel):
    """A patient's text message, stripped of the provider envelope."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["message"] = "message"
    provider: str
    sender: str = Field(min_length=6, pattern=r"^\d+$")
    message: str = Field(min_length=1)
    device: str | None = None
    name: str | None = None
    id: str | None = None
    timestamp: str | int | float | None = None


class AckEvent(BaseModel):
    """Delivery status update for messages we sent."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["ack"] = "ack"
    provider: str
    message_ids: list[str] = Field(min_length=1)
    status: DeliveryStatus
    raw_status: str
    timestamp: str | int | float | None = None


class Ignored(BaseModel):
    """Event that is valid to receive but carries nothing to process."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["ignored"] = "ignored"
    provider: str
    reason: str


InboundEvent = Annotated[
    Union[InboundMessage, AckEvent, Ignored],
    Field(discriminator="kind"),
]


class WebhookPingResponse(BaseModel):
    ok: bool = True
    route: str
    mode: str


class ProcessingResult(BaseModel):
    """Outcome of one handler run, reported back to the provider."""

    processed: bool = True
    action: str
    source: str | None = None
    reply: str | None = None
    confidence: int | None = None
    queue_item_id: UUID | None = None

    def to_response(self) -> dict:
        body = {"ok": True, "processed": self.processed, "action": self.action}
        if self.source:
            body["source"] = self.source
        return body
