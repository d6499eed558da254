"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when no long-running worker is deployed.
"""

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.core.deps import get_db
from prima.services import (
    conversation_state_service,
    message_queue_service,
    verification_service,
)
from prima.worker import WORKER_ID, process_batch


router = APIRouter(prefix="/internal", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if x_internal_secret != expected:
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class MessageQueueRunResponse(BaseModel):
    recovered: int
    claimed: int
    sent: int
    retrying: int
    failed: int


class ConversationCleanupResponse(BaseModel):
    conversations_expired: int
    verifications_expired: int


@router.post(
    "/scheduled/message-queue",
    response_model=MessageQueueRunResponse,
    dependencies=[Depends(verify_internal_secret)],
)
async def run_message_queue(db: Session = Depends(get_db)):
    """Recover stuck items, then claim and deliver one batch."""
    recovered = message_queue_service.recover_stuck(db)
    stats = await process_batch(db, worker_id=f"cron:{WORKER_ID}")
    return MessageQueueRunResponse(recovered=recovered, **stats)


@router.post(
    "/scheduled/conversation-cleanup",
    response_model=ConversationCleanupResponse,
    dependencies=[Depends(verify_internal_secret)],
)
def run_conversation_cleanup(db: Session = Depends(get_db)):
    """Deactivate expired conversation states and lapse stale verifications."""
    return ConversationCleanupResponse(
        conversations_expired=conversation_state_service.cleanup_expired(db),
        verifications_expired=verification_service.expire_stale_verifications(db),
    )


@router.get(
    "/message-queue/stats",
    dependencies=[Depends(verify_internal_secret)],
)
def message_queue_stats(db: Session = Depends(get_db)):
    return message_queue_service.get_stats(db)
