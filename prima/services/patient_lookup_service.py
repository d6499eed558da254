"""Resolve inbound phone numbers to patients."""

from __future__ import annotations

import logging

from sqlalchemy import case, select
from sqlalchemy.orm import Session

from prima.core.structured_logging import RequestContext, build_log_context, mask_phone
from prima.db.enums import VerificationStatus
from prima.db.models import Patient
from prima.utils.phone import normalize_phone, phone_alternatives, phone_last4

logger = logging.getLogger(__name__)

# Lower ranks win when several active rows share one number
_STATUS_RANK = case(
    (Patient.verification_status == VerificationStatus.PENDING.value, 0),
    (Patient.verification_status == VerificationStatus.VERIFIED.value, 1),
    else_=2,
)


def _find_exact(db: Session, phone: str) -> Patient | None:
    return db.scalars(
        select(Patient)
        .where(
            Patient.phone_number == phone,
            Patient.is_active.is_(True),
            Patient.deleted_at.is_(None),
        )
        .order_by(_STATUS_RANK, Patient.created_at.desc())
        .limit(1)
    ).first()


def find_patient_by_phone(
    db: Session, phone: str, ctx: RequestContext | None = None
) -> Patient | None:
    """
    Find the active patient for a phone number.

    Tries the normalized number, then its 62/0 alternative. Within each form
    pending patients are preferred over verified ones, then any status.
    """
    for candidate in phone_alternatives(phone):
        patient = _find_exact(db, candidate)
        if patient:
            if candidate != normalize_phone(phone):
                logger.info(
                    "Patient matched on alternative phone form",
                    extra=build_log_context(ctx, patient_id=str(patient.id), phone=candidate),
                )
            return patient
    logger.info("No patient for phone", extra=build_log_context(ctx, phone=phone))
    return None


def find_or_create_patient_for_onboarding(
    db: Session, phone: str, ctx: RequestContext | None = None
) -> tuple[Patient, bool]:
    """
    Return the patient for a number, creating a pending stub if none exists.

    Returns:
        (patient, created)
    """
    existing = find_patient_by_phone(db, phone, ctx)
    if existing:
        return existing, False

    normalized = normalize_phone(phone)
    if not normalized:
        raise ValueError("Phone number is empty")

    patient = Patient(
        name=f"Patient {phone_last4(normalized)}",
        phone_number=normalized,
        verification_status=VerificationStatus.PENDING.value,
        is_active=True,
    )
    db.add(patient)
    db.commit()
    db.refresh(patient)
    logger.info(
        "Created onboarding patient %s for %s",
        patient.id,
        mask_phone(normalized),
        extra=build_log_context(ctx, patient_id=str(patient.id)),
    )
    return patient, True


def find_unsubscribed_patient_by_phone(db: Session, phone: str) -> Patient | None:
    """
    Inactive patient who opted out on this number.

    Lets late replies from opted-out patients reach the verification log
    instead of vanishing as unknown senders.
    """
    candidates = phone_alternatives(phone)
    if not candidates:
        return None
    return db.scalars(
        select(Patient)
        .where(
            Patient.phone_number.in_(candidates),
            Patient.verification_status == VerificationStatus.UNSUBSCRIBED.value,
            Patient.deleted_at.is_(None),
        )
        .order_by(Patient.unsubscribed_at.desc())
        .limit(1)
    ).first()
