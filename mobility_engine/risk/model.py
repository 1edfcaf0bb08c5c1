"""Additive log-odds risk model.

For each outcome:
    logit = intercept + sum(weight of every present factor)
    probability = min(sigmoid(logit), 0.95)

The odds ratio compares the patient against the same patient made fully
mobile (mobility "independent", no immobility streak), isolating how much
of the risk is attributable to immobility.
"""

from __future__ import annotations

import math

from loguru import logger
from pydantic import BaseModel, Field

from mobility_engine.patients.schemas import PatientRiskInput
from mobility_engine.prescription.baseline import PrescriptionBaseline, estimate_baseline_prescription
from mobility_engine.risk.features import PatientFeatureFlags, extract_features
from mobility_engine.risk.weights import (
    FACTOR_ORDER,
    FALLS_INTERACTIONS,
    INTERACTION_AFTER,
    INTERCEPTS,
    MOBILITY_WEIGHTS,
    PROBABILITY_CAP,
    RISK_BANDS,
    Outcome,
    RiskLevel,
    weight_for,
)

_ODDS_EPSILON = 1e-9


class OutcomeResult(BaseModel):
    """Risk estimate for one outcome."""

    probability: float = Field(..., ge=0.0, le=PROBABILITY_CAP)
    odds_ratio_vs_reference: float = Field(..., ge=0.0)
    risk_level: RiskLevel
    contributing_factors: list[str] = Field(default_factory=list)


class RiskResult(BaseModel):
    """All four outcome estimates plus the baseline prescription."""

    deconditioning: OutcomeResult
    vte: OutcomeResult
    falls: OutcomeResult
    pressure: OutcomeResult
    mobility_recommendation: PrescriptionBaseline
    input_echo: dict = Field(default_factory=dict)

    def outcome(self, outcome: Outcome) -> OutcomeResult:
        return getattr(self, outcome.value)


def sigmoid(x: float) -> float:
    return 1.0 / (1.0 + math.exp(-x))


def _odds(probability: float) -> float:
    return probability / max(_ODDS_EPSILON, 1.0 - probability)


def classify_risk(outcome: Outcome, probability: float) -> RiskLevel:
    moderate, high = RISK_BANDS[outcome]
    if probability >= high:
        return RiskLevel.HIGH
    if probability >= moderate:
        return RiskLevel.MODERATE
    return RiskLevel.LOW


def score_outcome(outcome: Outcome, features: PatientFeatureFlags) -> tuple[float, list[str]]:
    """Sum the log-odds contributions for one outcome.

    Returns:
        (score, factors) where factors lists every contributing factor name
        in the fixed report order of the outcome.
    """
    score = 0.0
    factors: list[str] = []

    # Always reported, including the zero-weight "independent" level
    score += MOBILITY_WEIGHTS[outcome][features.mobility]
    factors.append(f"mobility:{features.mobility}")

    interaction_anchor = INTERACTION_AFTER.get(outcome)
    for factor in FACTOR_ORDER[outcome]:
        if features.is_set(factor):
            score += weight_for(outcome, factor)
            factors.append(factor)
        if factor == interaction_anchor:
            interaction = FALLS_INTERACTIONS.get((features.mobility, features.cognition))
            if interaction is not None:
                score += interaction
                factors.append(f"interaction:{features.mobility}+{features.cognition}")

    return score, factors


def compute_outcome(outcome: Outcome, features: PatientFeatureFlags) -> OutcomeResult:
    score, factors = score_outcome(outcome, features)
    intercept = INTERCEPTS[outcome]
    probability = min(sigmoid(intercept + score), PROBABILITY_CAP)

    reference_score, _ = score_outcome(outcome, features.with_reference_mobility())
    reference_probability = min(sigmoid(intercept + reference_score), PROBABILITY_CAP)
    odds_ratio = _odds(probability) / max(_ODDS_EPSILON, _odds(reference_probability))

    return OutcomeResult(
        probability=round(probability, 4),
        odds_ratio_vs_reference=round(odds_ratio, 2),
        risk_level=classify_risk(outcome, probability),
        contributing_factors=factors,
    )


def calculate_risks(patient: PatientRiskInput) -> RiskResult:
    """Score all four outcomes and derive the baseline prescription.

    Args:
        patient: Validated clinical snapshot

    Returns:
        RiskResult with per-outcome estimates, mobility recommendation and an
        echo of the input
    """
    features = extract_features(patient)
    outcomes = {outcome.value: compute_outcome(outcome, features) for outcome in Outcome}

    logger.info(
        "[RISK] Calculated risks: "
        + ", ".join(f"{name}={result.probability:.3f} ({result.risk_level})" for name, result in outcomes.items())
    )

    return RiskResult(
        **outcomes,
        mobility_recommendation=estimate_baseline_prescription(patient),
        input_echo=patient.model_dump(),
    )
