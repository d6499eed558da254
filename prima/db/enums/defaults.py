"""Centralized defaults for enums."""

from prima.db.enums.conversations import ConversationContext, ExpectedResponseType
from prima.db.enums.messaging import MessagePriority, QueueStatus
from prima.db.enums.patients import VerificationStatus
from prima.db.enums.reminders import DeliveryStatus


DEFAULT_VERIFICATION_STATUS: VerificationStatus = VerificationStatus.PENDING
DEFAULT_CONVERSATION_CONTEXT: ConversationContext = ConversationContext.GENERAL_INQUIRY
DEFAULT_EXPECTED_RESPONSE_TYPE: ExpectedResponseType = ExpectedResponseType.TEXT
DEFAULT_MESSAGE_PRIORITY: MessagePriority = MessagePriority.MEDIUM
DEFAULT_QUEUE_STATUS: QueueStatus = QueueStatus.PENDING
DEFAULT_DELIVERY_STATUS: DeliveryStatus = DeliveryStatus.SENT
