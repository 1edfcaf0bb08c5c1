"""Risk assessment persistence.

Assessments are append-only; the latest row per patient feeds protocol
matching.
"""

from __future__ import annotations

from dataclasses import dataclass

from loguru import logger
from sqlalchemy import select

from mobility_engine.db.models import RiskAssessment
from mobility_engine.db.session import get_session
from mobility_engine.risk.model import RiskResult


@dataclass(frozen=True)
class RiskScores:
    """Latest outcome probabilities used by the protocol matcher."""

    fall_risk: float = 0.1
    deconditioning_risk: float = 0.2
    vte_risk: float = 0.05
    pressure_risk: float = 0.05


def save_risk_assessment(patient_id: str, result: RiskResult) -> str | None:
    """Persist a risk calculation.

    Returns:
        The new assessment id, or None if the write failed
    """
    try:
        with get_session() as db:
            row = RiskAssessment(
                patient_id=patient_id,
                deconditioning=result.deconditioning.model_dump(mode="json"),
                vte=result.vte.model_dump(mode="json"),
                falls=result.falls.model_dump(mode="json"),
                pressure=result.pressure.model_dump(mode="json"),
                mobility_recommendation=result.mobility_recommendation.model_dump(mode="json"),
                input_snapshot=result.input_echo,
            )
            db.add(row)
            db.flush()
            assessment_id = row.id
    except Exception as e:
        logger.error(f"[RISK] Failed to save risk assessment for patient {patient_id}: {e}")
        return None

    logger.info(f"[RISK] Saved risk assessment {assessment_id} for patient {patient_id}")
    return assessment_id


def _probability(payload: dict | None, default: float) -> float:
    if not isinstance(payload, dict):
        return default
    value = payload.get("probability")
    if not isinstance(value, int | float) or value <= 0:
        return default
    return float(value)


def get_latest_risk_scores(patient_id: str) -> RiskScores:
    """Latest stored probabilities, or conservative defaults.

    Defaults apply when the patient has no assessment yet or a stored
    outcome payload lacks a usable probability.
    """
    with get_session() as db:
        row = (
            db.execute(
                select(RiskAssessment)
                .where(RiskAssessment.patient_id == patient_id)
                .order_by(RiskAssessment.created_at.desc())
            )
            .scalars()
            .first()
        )
        if row is None:
            logger.debug(f"[RISK] No risk assessment for patient {patient_id}, using defaults")
            return RiskScores()

        defaults = RiskScores()
        return RiskScores(
            fall_risk=_probability(row.falls, defaults.fall_risk),
            deconditioning_risk=_probability(row.deconditioning, defaults.deconditioning_risk),
            vte_risk=_probability(row.vte, defaults.vte_risk),
            pressure_risk=_probability(row.pressure, defaults.pressure_risk),
        )
