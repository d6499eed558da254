"""Tests for phone-to-patient resolution."""

from sqlalchemy import func, select

from prima.db.base import utcnow
from prima.db.enums import VerificationStatus
from prima.db.models import Patient
from prima.services import patient_lookup_service


def test_exact_match(db, make_patient):
    patient = make_patient(phone_number="6281333852187")
    found = patient_lookup_service.find_patient_by_phone(db, "6281333852187")
    assert found.id == patient.id


def test_international_sender_matches_local_record(db, make_patient):
    patient = make_patient(phone_number="081333852187")
    found = patient_lookup_service.find_patient_by_phone(db, "6281333852187")
    assert found.id == patient.id


def test_local_sender_matches_international_record(db, make_patient):
    patient = make_patient(phone_number="6281333852187")
    found = patient_lookup_service.find_patient_by_phone(db, "081333852187")
    assert found.id == patient.id


def test_inactive_and_deleted_patients_skipped(db, make_patient):
    make_patient(is_active=False)
    deleted = make_patient()
    deleted.deleted_at = utcnow()
    db.commit()
    assert patient_lookup_service.find_patient_by_phone(db, "6281333852187") is None


def test_pending_preferred_over_verified(db, make_patient):
    make_patient(status=VerificationStatus.VERIFIED, name="Lama")
    pending = make_patient(status=VerificationStatus.PENDING, name="Baru")
    found = patient_lookup_service.find_patient_by_phone(db, "6281333852187")
    assert found.id == pending.id


def test_onboarding_creates_stub_once(db):
    patient, created = patient_lookup_service.find_or_create_patient_for_onboarding(
        db, "6281299990000"
    )
    assert created is True
    assert patient.name == "Patient 0000"
    assert patient.verification_status == VerificationStatus.PENDING.value

    again, created_again = patient_lookup_service.find_or_create_patient_for_onboarding(
        db, "081299990000"
    )
    assert created_again is False
    assert again.id == patient.id
    assert db.scalar(select(func.count()).select_from(Patient)) == 1


def test_unsubscribed_patient_found_separately(db, make_patient):
    patient = make_patient(status=VerificationStatus.UNSUBSCRIBED, is_active=False)
    patient.unsubscribed_at = utcnow()
    db.commit()

    assert patient_lookup_service.find_patient_by_phone(db, "081333852187") is None
    found = patient_lookup_service.find_unsubscribed_patient_by_phone(db, "081333852187")
    assert found.id == patient.id
