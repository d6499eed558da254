"""Routes a patient's message to the handler that owns it.

Precedence, highest first:
1. emergency keywords, from any state;
2. unsubscribe, from any status;
3. a pending verification (the patient's durable status decides), or a
   patient who already opted out;
4. confirmation replies while a reminder awaits one;
5. everything else goes to the general inquiry path.
An active conversation state only breaks ties for ambiguous free text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.core.structured_logging import RequestContext, build_log_context
from prima.db.enums import (
    ConversationContext,
    ExpectedResponseType,
    Intent,
    MessageDirection,
    MessagePriority,
    MessageType,
    VerificationStatus,
)
from prima.db.models import ConversationState, Patient
from prima.schemas.webhooks import InboundMessage, ProcessingResult
from prima.services import (
    confirmation_service,
    conversation_state_service,
    escalation_service,
    inquiry_service,
    message_queue_service,
    verification_service,
)
from prima.services import message_templates as templates
from prima.services.intent_classifier import (
    CONFIRMATION_INTENTS,
    Classification,
    classify,
    detect_emergency,
)

logger = logging.getLogger(__name__)


class Route(str, Enum):
    EMERGENCY = "emergency"
    VERIFICATION = "verification"
    CONFIRMATION = "confirmation"
    GENERAL_INQUIRY = "general_inquiry"


_ROUTE_CONTEXT = {
    Route.EMERGENCY: (ConversationContext.EMERGENCY, ExpectedResponseType.TEXT),
    Route.VERIFICATION: (ConversationContext.VERIFICATION, ExpectedResponseType.YES_NO),
    Route.CONFIRMATION: (
        ConversationContext.REMINDER_CONFIRMATION,
        ExpectedResponseType.CONFIRMATION,
    ),
    Route.GENERAL_INQUIRY: (ConversationContext.GENERAL_INQUIRY, ExpectedResponseType.TEXT),
}

_ROUTE_MESSAGE_TYPE = {
    Route.EMERGENCY: MessageType.EMERGENCY,
    Route.VERIFICATION: MessageType.VERIFICATION,
    Route.CONFIRMATION: MessageType.CONFIRMATION,
    Route.GENERAL_INQUIRY: MessageType.GENERAL,
}


@dataclass(frozen=True)
class RouteDecision:
    route: Route
    classification: Classification
    emergency_keyword: str | None = None

    @property
    def context(self) -> ConversationContext:
        return _ROUTE_CONTEXT[self.route][0]

    @property
    def expected_response_type(self) -> ExpectedResponseType:
        return _ROUTE_CONTEXT[self.route][1]

    @property
    def message_type(self) -> MessageType:
        return _ROUTE_MESSAGE_TYPE[self.route]


def decide_route(
    text: str,
    *,
    verification_status: str,
    has_pending_reminder: bool,
    active_context: str | None = None,
) -> RouteDecision:
    """Pure routing decision for one message."""
    pending = verification_status == VerificationStatus.PENDING.value
    classification = classify(text, verification_pending=pending)

    emergency = detect_emergency(text)
    if emergency:
        return RouteDecision(Route.EMERGENCY, classification, emergency)

    if classification.intent == Intent.UNSUBSCRIBE or pending:
        return RouteDecision(Route.VERIFICATION, classification)

    # Opted-out patients only ever reach the verification log
    if verification_status == VerificationStatus.UNSUBSCRIBED.value:
        return RouteDecision(Route.VERIFICATION, classification)

    if active_context == ConversationContext.VERIFICATION.value:
        yes_no = classify(text, verification_pending=True)
        if yes_no.intent in (Intent.ACCEPT, Intent.DECLINE):
            return RouteDecision(Route.VERIFICATION, yes_no)

    in_confirmation = active_context == ConversationContext.REMINDER_CONFIRMATION.value
    if classification.intent in CONFIRMATION_INTENTS and (
        has_pending_reminder or in_confirmation
    ):
        return RouteDecision(Route.CONFIRMATION, classification)

    # Free text never settles a reminder, even mid-confirmation
    return RouteDecision(Route.GENERAL_INQUIRY, classification)


def _enter_context(
    db: Session,
    patient: Patient,
    state: ConversationState | None,
    decision: RouteDecision,
) -> ConversationState:
    if state and state.current_context == decision.context.value:
        return state
    related_id = None
    related_type = None
    if decision.route == Route.VERIFICATION:
        related_id, related_type = patient.id, "patient"
    elif decision.route == Route.CONFIRMATION:
        reminder = confirmation_service.find_pending_confirmation(db, patient.id)
        if reminder:
            related_id, related_type = reminder.id, "reminder_log"
    return conversation_state_service.set_context(
        db,
        patient.id,
        patient.phone_number,
        decision.context,
        decision.expected_response_type,
        related_entity_id=related_id,
        related_entity_type=related_type,
    )


def _handle_emergency(
    db: Session,
    patient: Patient,
    message: InboundMessage,
    decision: RouteDecision,
    ctx: RequestContext | None,
) -> ProcessingResult:
    escalation_service.escalate_to_volunteer(
        db,
        patient,
        message.message,
        escalation_service.REASON_EMERGENCY,
        MessagePriority.URGENT,
        data={"keyword": decision.emergency_keyword, "provider": message.provider},
        ctx=ctx,
        commit=False,
    )
    reply = templates.render(templates.EMERGENCY_RECEIVED, name=patient.name)
    item = message_queue_service.enqueue(
        db,
        phone_number=patient.phone_number,
        message=reply,
        message_type=MessageType.EMERGENCY,
        priority=MessagePriority.URGENT,
        patient_id=patient.id,
        commit=False,
    )
    db.commit()
    return ProcessingResult(
        action="emergency_escalated", source="emergency", reply=reply, queue_item_id=item.id
    )


def _handle_general_inquiry(
    db: Session,
    patient: Patient,
    state: ConversationState,
    message: InboundMessage,
    decision: RouteDecision,
    ctx: RequestContext | None,
) -> ProcessingResult:
    if decision.classification.intent == Intent.UNKNOWN:
        unknown_count = conversation_state_service.record_unknown_response(db, state)
    else:
        conversation_state_service.reset_unknown_responses(db, state)
        unknown_count = 0

    threshold = settings.UNKNOWN_RESPONSE_ESCALATION_THRESHOLD
    if threshold > 0 and unknown_count >= threshold:
        escalation_service.escalate_to_volunteer(
            db,
            patient,
            message.message,
            escalation_service.REASON_UNRESOLVED,
            MessagePriority.MEDIUM,
            data={"unknown_responses": unknown_count},
            ctx=ctx,
            commit=False,
        )
        state.unknown_response_count = 0
        reply = templates.render(templates.INQUIRY_RECEIVED, name=patient.name)
        item = message_queue_service.enqueue(
            db,
            phone_number=patient.phone_number,
            message=reply,
            message_type=MessageType.GENERAL,
            priority=MessagePriority.MEDIUM,
            patient_id=patient.id,
            commit=False,
        )
        db.commit()
        return ProcessingResult(
            action="escalated_to_volunteer", source="volunteer", reply=reply, queue_item_id=item.id
        )

    history = conversation_state_service.get_history(db, state.id)
    answer = inquiry_service.get_inquiry_responder().answer(patient, message.message, history)
    if answer.escalate:
        escalation_service.escalate_to_volunteer(
            db,
            patient,
            message.message,
            escalation_service.REASON_INQUIRY,
            MessagePriority.HIGH,
            data={"confidence": answer.confidence, **answer.data},
            ctx=ctx,
            commit=False,
        )
    item = message_queue_service.enqueue(
        db,
        phone_number=patient.phone_number,
        message=answer.reply,
        message_type=MessageType.GENERAL,
        priority=MessagePriority.LOW,
        patient_id=patient.id,
        commit=False,
    )
    db.commit()
    return ProcessingResult(
        action="inquiry_answered",
        source="general_inquiry",
        reply=answer.reply,
        confidence=answer.confidence,
        queue_item_id=item.id,
    )


def process_message(
    db: Session,
    patient: Patient,
    message: InboundMessage,
    ctx: RequestContext | None = None,
) -> ProcessingResult:
    """Classify, transition conversation state, run the owning handler."""
    state = conversation_state_service.get_active_state(db, patient.id)
    has_pending = confirmation_service.has_pending_confirmation(db, patient.id)
    decision = decide_route(
        message.message,
        verification_status=patient.verification_status,
        has_pending_reminder=has_pending,
        active_context=state.current_context if state else None,
    )
    logger.info(
        "Routing message to %s (intent=%s)",
        decision.route.value,
        decision.classification.intent.value,
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )

    settled = decision.route == Route.VERIFICATION and verification_service.reply_is_settled(
        patient.verification_status, decision.classification.intent
    )
    if settled:
        # Log-only reply: no new context, and a leftover verification one is retired
        if state and state.current_context == ConversationContext.VERIFICATION.value:
            conversation_state_service.deactivate(db, state)
    else:
        state = _enter_context(db, patient, state, decision)

    if decision.route == Route.EMERGENCY:
        result = _handle_emergency(db, patient, message, decision, ctx)
    elif decision.route == Route.VERIFICATION:
        result = verification_service.handle_verification_response(
            db, patient, message.message, decision.classification, ctx
        )
    elif decision.route == Route.CONFIRMATION:
        result = confirmation_service.handle_confirmation_response(
            db, patient, message.message, decision.classification.intent, ctx
        )
    else:
        result = _handle_general_inquiry(db, patient, state, message, decision, ctx)

    if state is None:
        return result

    inbound = conversation_state_service.add_message(
        db,
        state,
        message.message,
        MessageDirection.INBOUND,
        decision.message_type,
        intent=decision.classification.intent,
        confidence=result.confidence,
        provider_message_id=message.id,
        commit=False,
    )
    if result.reply:
        conversation_state_service.add_message(
            db,
            state,
            result.reply,
            MessageDirection.OUTBOUND,
            decision.message_type,
            commit=False,
        )
    db.commit()
    conversation_state_service.mark_processed(db, inbound)
    return result
