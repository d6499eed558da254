"""Free-text inquiry delegation.

Answers to open questions come from an external capability (an LLM service
in production). The core only depends on the `InquiryResponder` protocol.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from prima.db.models import ConversationMessage, Patient
from prima.services import message_templates as templates


@dataclass
class InquiryAnswer:
    reply: str
    # 0-100 when the responder scores itself
    confidence: int | None = None
    escalate: bool = False
    detected_intent: str | None = None
    data: dict = field(default_factory=dict)


class InquiryResponder(Protocol):
    def answer(
        self,
        patient: Patient,
        message: str,
        history: Sequence[ConversationMessage],
    ) -> InquiryAnswer:
        """Produce a reply for a free-text patient message."""


class AcknowledgeResponder:
    """Default responder: acknowledge receipt and leave the reply to volunteers."""

    def answer(self, patient, message, history) -> InquiryAnswer:
        return InquiryAnswer(
            reply=templates.render(templates.INQUIRY_RECEIVED, name=patient.name),
        )


_responder: InquiryResponder = AcknowledgeResponder()


def get_inquiry_responder() -> InquiryResponder:
    return _responder


def set_inquiry_responder(responder: InquiryResponder) -> None:
    global _responder
    _responder = responder
