"""End-to-end tests for the webhook endpoints."""

import hashlib
import hmac
import json
import time

import pytest
from sqlalchemy import func, select

from prima.core.config import settings
from prima.db.base import Base
from prima.db.enums import ConfirmationStatus, VerificationStatus
from prima.db.models import MessageQueueItem, Patient, ReminderLog, VerificationLog
from prima.services import conversation_engine


def _row_counts(db) -> dict[str, int]:
    return {
        table.name: db.scalar(select(func.count()).select_from(table))
        for table in Base.metadata.sorted_tables
    }


def _gowa_signature(body: bytes, secret: str) -> str:
    return "sha256=" + hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


class TestPing:
    @pytest.mark.asyncio
    async def test_ping(self, client):
        response = await client.get("/webhooks/waha", params={"mode": "test"})
        assert response.status_code == 200
        assert response.json() == {"ok": True, "route": "/webhooks/waha", "mode": "test"}

    @pytest.mark.asyncio
    async def test_unknown_provider(self, client):
        assert (await client.get("/webhooks/twilio")).status_code == 404
        assert (await client.post("/webhooks/twilio", json={})).status_code == 404


class TestRejections:
    @pytest.mark.asyncio
    async def test_bad_token_is_401(self, client, monkeypatch):
        monkeypatch.setattr(settings, "FONNTE_WEBHOOK_TOKEN", "s3cret")
        response = await client.post(
            "/webhooks/fonnte",
            json={"sender": "6281333852187", "message": "YA"},
            headers={"X-Webhook-Token": "wrong"},
        )
        assert response.status_code == 401
        assert response.json()["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_invalid_json_is_400(self, client):
        response = await client.post(
            "/webhooks/fonnte",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_payload"

    @pytest.mark.asyncio
    async def test_oversized_body_is_413(self, client, monkeypatch):
        monkeypatch.setattr(settings, "WEBHOOK_MAX_PAYLOAD_BYTES", 64)
        response = await client.post(
            "/webhooks/fonnte",
            json={"sender": "6281333852187", "message": "x" * 200},
        )
        assert response.status_code == 413


class TestBenignOutcomes:
    @pytest.mark.asyncio
    async def test_own_message_ignored(self, client):
        response = await client.post(
            "/webhooks/waha",
            json={
                "event": "message",
                "payload": {"from": "6281333852187@c.us", "fromMe": True, "body": "hi"},
            },
        )
        assert response.status_code == 200
        assert response.json() == {"ok": True, "ignored": True, "reason": "own_message"}

    @pytest.mark.asyncio
    async def test_unknown_sender(self, client, db):
        response = await client.post(
            "/webhooks/fonnte", json={"sender": "6281299990000", "message": "halo"}
        )
        assert response.json() == {"ok": True, "ignored": True, "reason": "no_patient_match"}
        assert db.scalar(select(func.count()).select_from(Patient)) == 0

    @pytest.mark.asyncio
    async def test_unknown_sender_onboarded_when_enabled(self, client, db, monkeypatch):
        monkeypatch.setattr(settings, "AUTO_ONBOARD_UNKNOWN_SENDERS", True)
        response = await client.post(
            "/webhooks/fonnte",
            json={"sender": "6281299990000", "message": "halo", "name": "Budi"},
        )
        body = response.json()
        assert body["action"] == "verification_sent"
        patient = db.scalars(select(Patient)).one()
        assert patient.name == "Budi"
        assert patient.verification_status == VerificationStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_delivery_ack(self, client, db, make_patient, make_reminder):
        reminder = make_reminder(make_patient(), provider_message_id="wamid-7")
        response = await client.post(
            "/webhooks/waha",
            json={"event": "message.ack", "payload": {"id": "wamid-7", "ack": 2}},
        )
        assert response.json()["action"] == "message_status_updated"
        db.refresh(reminder)
        assert reminder.status == "DELIVERED"


class TestPatientFlows:
    @pytest.mark.asyncio
    async def test_pending_patient_replies_ya(self, client, db, make_patient):
        patient = make_patient(status=VerificationStatus.PENDING)

        response = await client.post(
            "/webhooks/waha",
            json={
                "event": "message",
                "session": "default",
                "payload": {
                    "id": "false_6281333852187@c.us_AAA",
                    "from": "6281333852187@c.us",
                    "body": "YA",
                    "timestamp": 1700000000,
                },
            },
        )

        assert response.status_code == 200
        assert response.json() == {
            "ok": True,
            "processed": True,
            "action": "verified",
            "source": "verification",
        }
        db.refresh(patient)
        assert patient.verification_status == VerificationStatus.VERIFIED.value
        logs = list(db.scalars(select(VerificationLog)))
        assert len(logs) == 1
        assert (logs[0].action, logs[0].verification_result) == ("responded", "verified")
        assert db.scalar(select(func.count()).select_from(MessageQueueItem)) == 1

    @pytest.mark.asyncio
    async def test_verified_patient_confirms_reminder(
        self, client, db, make_patient, make_reminder, monkeypatch
    ):
        monkeypatch.setattr(settings, "GOWA_WEBHOOK_SECRET", "gowa-secret")
        patient = make_patient(phone_number="081333852187")
        reminder = make_reminder(patient)
        body = json.dumps(
            {
                "sender_id": "6281333852187",
                "chat_id": "6281333852187@s.whatsapp.net",
                "message": {"text": "sudah", "id": "3EB0AAA"},
            }
        ).encode()

        response = await client.post(
            "/webhooks/gowa",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Hub-Signature-256": _gowa_signature(body, "gowa-secret"),
            },
        )

        assert response.json()["action"] == "confirmation_confirmed"
        db.refresh(reminder)
        assert reminder.confirmation_status == ConfirmationStatus.CONFIRMED.value
        assert db.scalar(select(func.count()).select_from(ReminderLog)) == 1

    @pytest.mark.asyncio
    async def test_berhenti_deactivates_patient_and_schedules(
        self, client, db, make_patient, make_schedule
    ):
        patient = make_patient(status=VerificationStatus.DECLINED)
        schedule = make_schedule(patient)

        response = await client.post(
            "/webhooks/fonnte",
            data={"sender": "6281333852187", "message": "BERHENTI"},
        )

        assert response.json()["action"] == "unsubscribed"
        db.refresh(patient)
        db.refresh(schedule)
        assert patient.is_active is False
        assert schedule.is_active is False


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_duplicate_delivery_writes_nothing(self, client, db, make_patient, make_reminder):
        make_reminder(make_patient())
        payload = {
            "sender": "6281333852187",
            "message": "sudah",
            "id": "fonnte-123",
            "timestamp": 1700000000,
        }

        first = await client.post("/webhooks/fonnte", json=payload)
        assert first.json()["processed"] is True
        counts = _row_counts(db)

        second = await client.post("/webhooks/fonnte", json=payload)
        assert second.status_code == 200
        assert second.json() == {"ok": True, "duplicate": True}
        assert _row_counts(db) == counts

    @pytest.mark.asyncio
    async def test_signed_replay_without_timestamp_is_duplicate(
        self, client, db, make_patient, make_reminder, monkeypatch
    ):
        monkeypatch.setattr(settings, "GOWA_WEBHOOK_SECRET", "gowa-secret")
        make_reminder(make_patient())
        body = json.dumps(
            {
                "sender_id": "6281333852187",
                "chat_id": "6281333852187@s.whatsapp.net",
                "message": {"text": "sudah", "id": "3EB0BBB"},
            }
        ).encode()
        headers = {
            "Content-Type": "application/json",
            "X-Hub-Signature-256": _gowa_signature(body, "gowa-secret"),
        }

        first = await client.post(
            "/webhooks/gowa",
            content=body,
            headers={**headers, "X-Webhook-Timestamp": str(int(time.time()))},
        )
        assert first.json()["processed"] is True
        counts = _row_counts(db)

        stale = await client.post(
            "/webhooks/gowa",
            content=body,
            headers={**headers, "X-Webhook-Timestamp": "1700000000"},
        )
        assert stale.status_code == 401

        # The signature covers the body only, so dropping the header still authenticates
        replay = await client.post("/webhooks/gowa", content=body, headers=headers)
        assert replay.json() == {"ok": True, "duplicate": True}
        assert _row_counts(db) == counts

    @pytest.mark.asyncio
    async def test_internal_fault_releases_key(self, client, make_patient, monkeypatch):
        make_patient()
        payload = {"sender": "6281333852187", "message": "halo", "id": "fonnte-9"}
        original = conversation_engine.process_message

        def explode(*args, **kwargs):
            raise RuntimeError("database went away: password=hunter2")

        monkeypatch.setattr(conversation_engine, "process_message", explode)
        failed = await client.post("/webhooks/fonnte", json=payload)
        assert failed.status_code == 500
        assert "hunter2" not in failed.text
        assert failed.json()["error"] == "internal_error"

        monkeypatch.setattr(conversation_engine, "process_message", original)
        retried = await client.post("/webhooks/fonnte", json=payload)
        assert retried.status_code == 200
        assert retried.json()["processed"] is True
