"""
Background worker for the outbound WhatsApp message queue.

Usage:
    python -m prima.worker

Polls for due messages, claims them atomically, and sends them through the
active provider. Several workers may run side by side; a message is only
ever claimed by one of them.
"""

import asyncio
import logging
import os
import socket
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from prima.core.config import settings
from prima.core.deps import session_scope
from prima.core.errors import DownstreamSendFailure
from prima.db.enums import QueueStatus
from prima.services import message_queue_service
from prima.services.whatsapp_sender import WhatsAppSender, describe_target, get_sender

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = int(
    os.getenv("WORKER_POLL_INTERVAL", str(settings.WORKER_POLL_INTERVAL_SECONDS))
)
BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", str(settings.WORKER_BATCH_SIZE)))
WORKER_ID = f"{socket.gethostname()}:{os.getpid()}"

# Outcome of the most recent poll, surfaced by the worker service health check.
LAST_CYCLE: dict = {"finished_at": None, "error": None}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


async def process_batch(
    db: Session,
    sender: WhatsAppSender | None = None,
    limit: int | None = None,
    worker_id: str = WORKER_ID,
) -> dict[str, int]:
    """
    Claim and deliver one batch.

    Sends run concurrently; database updates stay sequential on the one
    session.
    """
    sender = sender or get_sender()
    items = message_queue_service.claim_batch(db, limit or BATCH_SIZE, worker_id)
    stats = {"claimed": len(items), "sent": 0, "retrying": 0, "failed": 0}
    if not items:
        return stats

    logger.info("Claimed %s queued messages", len(items))
    outcomes = await asyncio.gather(
        *(sender.send(item.phone_number, item.message) for item in items),
        return_exceptions=True,
    )

    for item, outcome in zip(items, outcomes):
        if isinstance(outcome, DownstreamSendFailure):
            item = message_queue_service.mark_failed(db, item, str(outcome), outcome.retryable)
        elif isinstance(outcome, Exception):
            logger.error(
                "Unexpected send error for message %s", item.id, exc_info=outcome
            )
            item = message_queue_service.mark_failed(db, item, type(outcome).__name__)
        elif isinstance(outcome, BaseException):
            raise outcome
        else:
            message_queue_service.mark_completed(db, item, outcome.provider_message_id)
            stats["sent"] += 1
            logger.info(
                "Message %s sent to %s via %s",
                item.id,
                describe_target(item.phone_number),
                outcome.provider,
            )
            continue

        if item.status == QueueStatus.FAILED.value:
            stats["failed"] += 1
        else:
            stats["retrying"] += 1
    return stats


async def worker_loop() -> None:
    """Main worker loop - polls for and delivers queued messages."""
    logger.info(
        f"Worker starting (poll interval: {POLL_INTERVAL_SECONDS}s, batch size: {BATCH_SIZE})"
    )
    sender = get_sender()

    while True:
        try:
            with session_scope() as db:
                recovered = message_queue_service.recover_stuck(db)
                if recovered:
                    logger.warning(f"Recovered {recovered} stuck messages")
                stats = await process_batch(db, sender)
            LAST_CYCLE.update(stats, recovered=recovered, error=None, finished_at=_now_iso())
        except Exception as e:
            LAST_CYCLE.update(error=type(e).__name__, finished_at=_now_iso())
            logger.error(f"Error in worker loop: {e}")

        await asyncio.sleep(POLL_INTERVAL_SECONDS)


def main() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    asyncio.run(worker_loop())


if __name__ == "__main__":
    main()
