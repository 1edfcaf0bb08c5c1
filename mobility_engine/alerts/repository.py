"""Clinician alert persistence."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from mobility_engine.db.models import Alert
from mobility_engine.db.session import get_session


class AlertPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class AlertType(StrEnum):
    FATIGUE_DETECTED = "fatigue_detected"
    SETBACK_DETECTED = "setback_detected"
    SETBACK_RECOVERED = "setback_recovered"
    PLATEAU_DETECTED = "plateau_detected"
    PROGRESSION_APPLIED = "progression_applied"


def add_alert(
    db: Session,
    patient_id: str,
    alert_type: AlertType | str,
    priority: AlertPriority | str,
    message: str,
    action_required: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> Alert:
    """Add an alert to the caller's transaction."""
    alert = Alert(
        patient_id=patient_id,
        type=str(alert_type),
        priority=str(priority),
        message=message,
        action_required=action_required,
        alert_metadata=metadata or {},
        acknowledged=False,
    )
    db.add(alert)
    logger.info(f"[ALERTS] {priority} {alert_type} for patient {patient_id}: {message}")
    return alert


def create_alert(
    patient_id: str,
    alert_type: AlertType | str,
    priority: AlertPriority | str,
    message: str,
    action_required: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> str | None:
    """Persist an alert in its own transaction.

    Returns:
        The alert id, or None if the write failed
    """
    try:
        with get_session() as db:
            alert = add_alert(db, patient_id, alert_type, priority, message, action_required, metadata)
            db.flush()
            return alert.id
    except Exception as e:
        logger.error(f"[ALERTS] Failed to create {alert_type} alert for patient {patient_id}: {e}")
        return None


def list_alerts(db: Session, patient_id: str, alert_type: AlertType | str | None = None) -> list[Alert]:
    stmt = select(Alert).where(Alert.patient_id == patient_id)
    if alert_type is not None:
        stmt = stmt.where(Alert.type == str(alert_type))
    return list(db.execute(stmt.order_by(Alert.triggered_at.desc())).scalars().all())
