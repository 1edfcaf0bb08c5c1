"""Personalization profile access.

One row per patient, created lazily with neutral defaults.
"""

from __future__ import annotations

from loguru import logger
from sqlalchemy.orm import Session

from mobility_engine.db.models import PersonalizationProfile


def get_or_create_profile(db: Session, patient_id: str) -> PersonalizationProfile:
    """Fetch the patient's profile, inserting a default row on first use."""
    profile = db.get(PersonalizationProfile, patient_id)
    if profile is None:
        profile = PersonalizationProfile(
            patient_id=patient_id,
            progression_level=1,
            days_at_current_level=0,
            consecutive_successful_sessions=0,
            in_setback_recovery=False,
        )
        db.add(profile)
        db.flush()
        logger.debug(f"Created personalization profile for patient {patient_id}")
    return profile


def find_profile(db: Session, patient_id: str) -> PersonalizationProfile | None:
    return db.get(PersonalizationProfile, patient_id)
