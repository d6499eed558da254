"""Tests for internal scheduled endpoints."""

from datetime import timedelta

import pytest

from prima import worker
from prima.core.config import settings
from prima.db.base import utcnow
from prima.db.enums import MessageType, QueueStatus, VerificationStatus
from prima.services import conversation_state_service, message_queue_service
from prima.services.whatsapp_sender import SendResult

SECRET = "cron-secret"


class RecordingSender:
    provider = "fake"

    def __init__(self):
        self.sent = []

    async def send(self, phone, message):
        self.sent.append(phone)
        return SendResult(self.provider, f"id-{len(self.sent)}")


@pytest.fixture
def internal_secret(monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", SECRET)
    return {"X-Internal-Secret": SECRET}


@pytest.mark.asyncio
async def test_secret_not_configured(client, monkeypatch):
    monkeypatch.setattr(settings, "INTERNAL_SECRET", "")
    response = await client.get(
        "/internal/message-queue/stats", headers={"X-Internal-Secret": "x"}
    )
    assert response.status_code == 501


@pytest.mark.asyncio
async def test_wrong_secret(client, internal_secret):
    response = await client.get(
        "/internal/message-queue/stats", headers={"X-Internal-Secret": "nope"}
    )
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_run_message_queue(client, db, internal_secret, monkeypatch):
    sender = RecordingSender()
    monkeypatch.setattr(worker, "get_sender", lambda: sender)
    item = message_queue_service.enqueue(
        db, phone_number="081333852187", message="halo", message_type=MessageType.GENERAL
    )

    response = await client.post("/internal/scheduled/message-queue", headers=internal_secret)

    assert response.status_code == 200
    assert response.json() == {
        "recovered": 0,
        "claimed": 1,
        "sent": 1,
        "retrying": 0,
        "failed": 0,
    }
    assert sender.sent == ["6281333852187"]
    db.refresh(item)
    assert item.status == QueueStatus.COMPLETED.value


@pytest.mark.asyncio
async def test_conversation_cleanup(client, db, internal_secret, make_patient):
    patient = make_patient(status=VerificationStatus.PENDING)
    patient.verification_sent_at = utcnow() - timedelta(hours=72)
    state = conversation_state_service.get_or_create_state(db, patient.id, patient.phone_number)
    state.expires_at = utcnow() - timedelta(minutes=5)
    db.commit()

    response = await client.post(
        "/internal/scheduled/conversation-cleanup", headers=internal_secret
    )

    assert response.json() == {"conversations_expired": 1, "verifications_expired": 1}


@pytest.mark.asyncio
async def test_stats(client, db, internal_secret):
    message_queue_service.enqueue(
        db, phone_number="081333852187", message="halo", message_type=MessageType.GENERAL
    )
    response = await client.get("/internal/message-queue/stats", headers=internal_secret)
    body = response.json()
    assert body["total"] == 1
    assert body["pending_by_priority"] == {"medium": 1}


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["redis"] == "disabled"
