"""
Test configuration and fixtures.

Provides:
- In-memory SQLite schema, rebuilt for every test
- HTTPX AsyncClient bound to the ASGI app
- Patient and reminder factories
"""
import os
import uuid
from datetime import timedelta
from typing import AsyncGenerator, Generator

# Must be set before any prima module builds settings, engine or limiter
os.environ["TESTING"] = "1"
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["REDIS_URL"] = "memory://"

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy.orm import Session

from prima.main import app
from prima.core.deps import get_db
from prima.core.rate_limit import reset_storage
from prima.db.base import Base, utcnow
from prima.db.session import engine, SessionLocal
from prima.db.enums import ConfirmationStatus, VerificationStatus
from prima.db.models import Patient, ReminderLog, ReminderSchedule
from prima.services import inquiry_service


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh schema per test.

    App code commits freely; the tables are dropped afterwards instead of
    rolling back a savepoint.
    """
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def _reset_shared_state():
    """Rate limit counters and idempotency keys live in process memory."""
    reset_storage()
    responder = inquiry_service.get_inquiry_responder()
    yield
    inquiry_service.set_inquiry_responder(responder)
    reset_storage()


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_patient(db: Session):
    def _make(
        phone_number: str = "6281333852187",
        status: VerificationStatus = VerificationStatus.VERIFIED,
        name: str = "Siti",
        is_active: bool = True,
    ) -> Patient:
        patient = Patient(
            id=uuid.uuid4(),
            name=name,
            phone_number=phone_number,
            verification_status=status.value,
            verification_sent_at=utcnow() - timedelta(hours=1),
            is_active=is_active,
        )
        db.add(patient)
        db.commit()
        return patient

    return _make


@pytest.fixture
def make_schedule(db: Session):
    def _make(patient: Patient, medication_name: str = "Tamoxifen") -> ReminderSchedule:
        schedule = ReminderSchedule(
            patient_id=patient.id,
            medication_name=medication_name,
            dosage="20 mg",
            is_active=True,
        )
        db.add(schedule)
        db.commit()
        return schedule

    return _make


@pytest.fixture
def make_reminder(db: Session):
    def _make(
        patient: Patient,
        confirmation_status: ConfirmationStatus | None = ConfirmationStatus.PENDING,
        sent_hours_ago: float = 1,
        provider_message_id: str | None = None,
    ) -> ReminderLog:
        sent_at = utcnow() - timedelta(hours=sent_hours_ago)
        reminder = ReminderLog(
            patient_id=patient.id,
            message="Waktunya minum obat",
            sent_at=sent_at,
            provider_message_id=provider_message_id,
            confirmation_status=confirmation_status.value if confirmation_status else None,
            confirmation_sent_at=sent_at if confirmation_status else None,
        )
        db.add(reminder)
        db.commit()
        return reminder

    return _make


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session) -> AsyncGenerator[AsyncClient, None]:
    """
    AsyncClient for the webhook and internal endpoints.
    """
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as c:
        yield c

    app.dependency_overrides.clear()
