"""Personalized protocol matching.

Scores every active protocol against a patient's diagnosis, comorbidities,
age, mobility, latest risk scores and personalization profile. The score is
the share of available points earned, scaled to 0-100:

    diagnosis        40  (code match 35, else keyword overlap x 30)
    contraindication     -50 from the running total, floor 0
    age              15  (in range 15, within 5 years 8, no criteria 10)
    mobility         15  (allowed 15, excluded -10, no criteria 10)
    risk             20  (fall 10, deconditioning 10; only when enabled)
    personalization  10  (fatigue pattern 5, level > 1 5; only with a profile)

Threshold breaches on risk produce suggested adjustments rather than
rejections, so a clinician can still pick the protocol.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from loguru import logger
from pydantic import BaseModel, Field

from mobility_engine.config.settings import settings
from mobility_engine.core.rounding import round_int
from mobility_engine.db.models import PatientProfile
from mobility_engine.db.session import get_session
from mobility_engine.personalization.profile_repository import find_profile
from mobility_engine.protocols import engine, repository
from mobility_engine.protocols.types import ProtocolDefinition
from mobility_engine.risk.repository import RiskScores, get_latest_risk_scores

DIAGNOSIS_POINTS = 40
CODE_MATCH_POINTS = 35
KEYWORD_POINTS = 30
CONTRAINDICATION_PENALTY = 50
AGE_POINTS = 15
AGE_NEAR_BOUNDARY_POINTS = 8
AGE_BOUNDARY_YEARS = 5
MOBILITY_POINTS = 15
MOBILITY_EXCLUDED_PENALTY = 10
NO_CRITERIA_POINTS = 10
RISK_POINTS = 20
RISK_FACTOR_POINTS = 10
PERSONALIZATION_POINTS = 10
PERSONALIZATION_FACTOR_POINTS = 5
FATIGUE_DURATION_RATIO = 0.9

DEFAULT_PHASE_DURATION = 15
DEFAULT_PHASE_RESISTANCE = 3
DEFAULT_PHASE_FREQUENCY = "BID"
ESCALATED_FREQUENCY = "TID"

ADVANCED_START_MAX_FALL_RISK = 0.15
MOBILITY_SCORES: dict[str, int] = {
    "bedbound": 0,
    "chair_bound": 1,
    "standing_assist": 2,
    "walking_assist": 3,
    "independent": 4,
}

ICD10_PATTERN = re.compile(r"[A-Z]\d{2}(?:\.\d{1,4})?", re.IGNORECASE)

DIAGNOSIS_TERM_CODES: dict[str, tuple[str, ...]] = {
    "knee replacement": ("Z96.641", "Z96.642", "M17"),
    "hip replacement": ("Z96.641", "Z96.642", "M16"),
    "tka": ("Z96.641", "Z96.642"),
    "tha": ("Z96.641", "Z96.642"),
    "pneumonia": ("J18.9", "J15.9", "J12.9"),
    "copd": ("J44.9", "J44.1"),
    "heart failure": ("I50.9", "I50.1", "I50.2"),
    "chf": ("I50.9",),
    "stroke": ("I63.9", "I64"),
    "hip fracture": ("S72.0", "S72.1"),
    "sepsis": ("A41.9", "R65.20"),
    "covid": ("U07.1", "J12.82"),
}


def _default_minimum_score() -> int:
    return settings.match_minimum_score


def _default_max_results() -> int:
    return settings.match_max_results


@dataclass(frozen=True)
class MatchingConfig:
    include_risk_based_matching: bool = True
    include_personalization: bool = True
    minimum_match_score: int = field(default_factory=_default_minimum_score)
    max_results: int = field(default_factory=_default_max_results)


@dataclass(frozen=True)
class MatchingCriteria:
    """Detached protocol_matching_criteria values."""

    min_age: int | None = None
    max_age: int | None = None
    required_mobility_levels: list[str] | None = None
    excluded_mobility_levels: list[str] | None = None
    max_fall_risk: float | None = None
    max_deconditioning_risk: float | None = None


@dataclass(frozen=True)
class PersonalizationSummary:
    progression_level: int = 1
    avg_fatigue_onset_minutes: float | None = None
    best_performance_window: str | None = None


@dataclass(frozen=True)
class PatientMatchProfile:
    patient_id: str
    age: int
    mobility_status: str
    cognitive_status: str
    level_of_care: str
    comorbidities: list[str]
    diagnosis_codes: list[str]
    risk_scores: RiskScores = field(default_factory=RiskScores)
    sex: str | None = None
    baseline_function: str | None = None
    admission_diagnosis: str | None = None
    personalization: PersonalizationSummary | None = None


class ProtocolAdjustment(BaseModel):
    parameter: str = Field(..., description="duration, resistance or frequency")
    original_value: float | str
    adjusted_value: float | str
    reason: str


class ProtocolMatch(BaseModel):
    protocol_id: str
    protocol_name: str
    indication: str
    match_score: int = Field(..., ge=0, le=100)
    match_reasons: list[str] = Field(default_factory=list)
    contraindications: list[str] = Field(default_factory=list, description="Active contraindications found")
    is_personalized: bool = False
    personalization_factors: list[str] = Field(default_factory=list)
    recommended_phase: str
    adjustments: list[ProtocolAdjustment] = Field(default_factory=list)


class AutoAssignResult(BaseModel):
    success: bool
    protocol: ProtocolMatch | None = None
    reason: str | None = None


# ============================================================================
# PURE SCORING
# ============================================================================


def extract_diagnosis_codes(diagnosis: str, comorbidities: list[str]) -> list[str]:
    """ICD-10 codes found in the text plus codes implied by common terms.

    Order of first appearance, without duplicates.
    """
    codes: list[str] = [c.upper() for c in ICD10_PATTERN.findall(diagnosis or "")]
    for comorbidity in comorbidities:
        codes.extend(c.upper() for c in ICD10_PATTERN.findall(comorbidity))

    diagnosis_lower = (diagnosis or "").lower()
    for term, term_codes in DIAGNOSIS_TERM_CODES.items():
        if term in diagnosis_lower:
            codes.extend(term_codes)

    return list(dict.fromkeys(codes))


def keyword_match_score(indication: str, diagnosis: str) -> float:
    """Fraction of indication words (longer than 3 chars) found in the diagnosis."""
    if not indication or not diagnosis:
        return 0.0
    indication_words = [w for w in indication.lower().split() if len(w) > 3]
    diagnosis_words = [w for w in diagnosis.lower().split() if len(w) > 3]
    if not indication_words:
        return 0.0

    matched = sum(
        1 for word in indication_words if any(dw in word or word in dw for dw in diagnosis_words)
    )
    return matched / len(indication_words)


def _codes_match(patient_codes: list[str], protocol_codes: list[str]) -> bool:
    return any(
        pc == code or code.startswith(pc) or pc.startswith(code)
        for code in patient_codes
        for pc in protocol_codes
    )


def determine_starting_phase(protocol: ProtocolDefinition, patient: PatientMatchProfile) -> str:
    """Name of the phase a new assignment should start in."""
    phases = protocol.phases
    if not phases:
        return "Phase 1"

    recommended = phases[0].phase
    mobility_score = MOBILITY_SCORES.get(patient.mobility_status, 0)
    if (
        mobility_score >= 3
        and len(phases) > 1
        and patient.baseline_function == "independent"
        and patient.risk_scores.fall_risk < ADVANCED_START_MAX_FALL_RISK
    ):
        recommended = phases[1].phase

    if patient.personalization and patient.personalization.progression_level > 1:
        level_index = min(patient.personalization.progression_level - 1, len(phases) - 1)
        recommended = phases[level_index].phase

    return recommended


def score_protocol(
    protocol: ProtocolDefinition,
    criteria: MatchingCriteria | None,
    patient: PatientMatchProfile,
    config: MatchingConfig,
) -> ProtocolMatch:
    """Score one protocol against a patient profile."""
    reasons: list[str] = []
    personalization_factors: list[str] = []
    adjustments: list[ProtocolAdjustment] = []
    total = 0
    max_possible = DIAGNOSIS_POINTS
    first_phase = protocol.phases[0] if protocol.phases else None

    # Diagnosis
    if _codes_match(patient.diagnosis_codes, protocol.diagnosis_codes):
        total += CODE_MATCH_POINTS
        reasons.append("Exact diagnosis code match")
    else:
        keyword_score = keyword_match_score(protocol.indication, patient.admission_diagnosis or "")
        total += round_int(keyword_score * KEYWORD_POINTS)
        if keyword_score > 0.5:
            reasons.append(f"Diagnosis keyword match ({round_int(keyword_score * 100)}%)")

    # Contraindications reduce the score but stay visible to the clinician
    comorbidities_lower = [c.lower() for c in patient.comorbidities]
    active_contraindications = [
        ci for ci in protocol.contraindications if any(ci.lower() in c for c in comorbidities_lower)
    ]
    if active_contraindications:
        total = max(0, total - CONTRAINDICATION_PENALTY)
        reasons.append("Warning: Relative contraindication(s) present")

    # Age
    max_possible += AGE_POINTS
    if criteria is not None:
        min_age = criteria.min_age or 0
        max_age = criteria.max_age or 150
        if min_age <= patient.age <= max_age:
            total += AGE_POINTS
            reasons.append("Age within protocol range")
        elif abs(patient.age - min_age) <= AGE_BOUNDARY_YEARS or abs(patient.age - max_age) <= AGE_BOUNDARY_YEARS:
            total += AGE_NEAR_BOUNDARY_POINTS
            reasons.append("Age near protocol range boundary")
    else:
        total += NO_CRITERIA_POINTS

    # Mobility
    max_possible += MOBILITY_POINTS
    if criteria is not None and criteria.required_mobility_levels is not None:
        required = criteria.required_mobility_levels
        excluded = criteria.excluded_mobility_levels or []
        if patient.mobility_status in excluded:
            total -= MOBILITY_EXCLUDED_PENALTY
            reasons.append(f"Mobility status {patient.mobility_status} excluded")
        elif not required or patient.mobility_status in required:
            total += MOBILITY_POINTS
            reasons.append("Mobility status appropriate")
    else:
        total += NO_CRITERIA_POINTS

    # Risk
    if config.include_risk_based_matching:
        max_possible += RISK_POINTS
        risks = patient.risk_scores

        if criteria is not None and criteria.max_fall_risk and risks.fall_risk > criteria.max_fall_risk:
            reasons.append(f"Fall risk ({round_int(risks.fall_risk * 100)}%) exceeds protocol threshold")
            resistance = first_phase.resistance.min if first_phase else DEFAULT_PHASE_RESISTANCE
            adjustments.append(
                ProtocolAdjustment(
                    parameter="resistance",
                    original_value=resistance,
                    adjusted_value=max(1, resistance - 1),
                    reason="Reduced due to elevated fall risk",
                )
            )
        else:
            total += RISK_FACTOR_POINTS

        if (
            criteria is not None
            and criteria.max_deconditioning_risk
            and risks.deconditioning_risk > criteria.max_deconditioning_risk
        ):
            reasons.append("High deconditioning risk - protocol may need acceleration")
            adjustments.append(
                ProtocolAdjustment(
                    parameter="frequency",
                    original_value=first_phase.frequency if first_phase else DEFAULT_PHASE_FREQUENCY,
                    adjusted_value=ESCALATED_FREQUENCY,
                    reason="Increased due to deconditioning risk",
                )
            )
        else:
            total += RISK_FACTOR_POINTS

    # Personalization
    personalization = patient.personalization
    if config.include_personalization and personalization is not None:
        max_possible += PERSONALIZATION_POINTS

        onset = personalization.avg_fatigue_onset_minutes
        if onset:
            protocol_duration = first_phase.duration if first_phase else DEFAULT_PHASE_DURATION
            if onset < protocol_duration:
                adjustments.append(
                    ProtocolAdjustment(
                        parameter="duration",
                        original_value=protocol_duration,
                        adjusted_value=round_int(onset * FATIGUE_DURATION_RATIO),
                        reason=f"Adjusted based on patient fatigue pattern (onset at {onset}min)",
                    )
                )
                personalization_factors.append("Fatigue-aware duration adjustment")
            total += PERSONALIZATION_FACTOR_POINTS

        if personalization.progression_level > 1:
            personalization_factors.append(f"Starting at progression level {personalization.progression_level}")
            total += PERSONALIZATION_FACTOR_POINTS

    final_score = round_int(total / max_possible * 100)

    return ProtocolMatch(
        protocol_id=protocol.id,
        protocol_name=protocol.name,
        indication=protocol.indication,
        match_score=max(0, min(100, final_score)),
        match_reasons=reasons,
        contraindications=active_contraindications,
        is_personalized=bool(personalization_factors),
        personalization_factors=personalization_factors,
        recommended_phase=determine_starting_phase(protocol, patient),
        adjustments=adjustments,
    )


def rank_protocols(
    protocols: list[tuple[ProtocolDefinition, MatchingCriteria | None]],
    patient: PatientMatchProfile,
    config: MatchingConfig,
) -> list[ProtocolMatch]:
    scored = [score_protocol(protocol, criteria, patient, config) for protocol, criteria in protocols]
    valid = [m for m in scored if m.match_score >= config.minimum_match_score]
    valid.sort(key=lambda m: m.match_score, reverse=True)
    return valid[: config.max_results]


# ============================================================================
# DATABASE-BACKED MATCHING
# ============================================================================


def _criteria_from_row(row) -> MatchingCriteria:
    return MatchingCriteria(
        min_age=row.min_age,
        max_age=row.max_age,
        required_mobility_levels=row.required_mobility_levels,
        excluded_mobility_levels=row.excluded_mobility_levels,
        max_fall_risk=row.max_fall_risk,
        max_deconditioning_risk=row.max_deconditioning_risk,
    )


def build_patient_match_profile(
    patient_id: str,
    diagnosis: str | None = None,
    comorbidities: list[str] | None = None,
) -> PatientMatchProfile | None:
    """Assemble the matching view of a patient.

    Args:
        patient_id: Patient ID
        diagnosis: Overrides the stored admission diagnosis
        comorbidities: Overrides the stored comorbidity list

    Returns:
        The profile, or None when the patient has no profile row
    """
    risk_scores = get_latest_risk_scores(patient_id)

    with get_session() as db:
        patient = db.get(PatientProfile, patient_id)
        if patient is None:
            logger.warning(f"[MATCHER] Patient profile not found: {patient_id}")
            return None

        personalization = None
        row = find_profile(db, patient_id)
        if row is not None:
            personalization = PersonalizationSummary(
                progression_level=row.progression_level or 1,
                avg_fatigue_onset_minutes=row.avg_fatigue_onset_minutes,
                best_performance_window=row.best_performance_window,
            )

        final_diagnosis = diagnosis or patient.admission_diagnosis
        final_comorbidities = comorbidities if comorbidities is not None else list(patient.comorbidities or [])

        return PatientMatchProfile(
            patient_id=patient_id,
            age=patient.age,
            sex=patient.sex,
            mobility_status=patient.mobility_status,
            cognitive_status=patient.cognitive_status,
            level_of_care=patient.level_of_care,
            baseline_function=patient.baseline_function,
            admission_diagnosis=final_diagnosis,
            comorbidities=final_comorbidities,
            diagnosis_codes=extract_diagnosis_codes(final_diagnosis or "", final_comorbidities),
            risk_scores=risk_scores,
            personalization=personalization,
        )


def _load_protocols_with_criteria() -> list[tuple[ProtocolDefinition, MatchingCriteria | None]]:
    with get_session() as db:
        protocols = repository.load_active_protocols(db)
        criteria_rows = repository.load_matching_criteria(db)
        return [
            (protocol, _criteria_from_row(criteria_rows[protocol.id]) if protocol.id in criteria_rows else None)
            for protocol in protocols
        ]


def find_matching_protocols(
    patient_id: str,
    config: MatchingConfig | None = None,
    diagnosis: str | None = None,
    comorbidities: list[str] | None = None,
) -> list[ProtocolMatch]:
    """Best matching protocols for a patient, highest score first.

    Failures are logged and yield an empty list.
    """
    config = config or MatchingConfig()
    try:
        profile = build_patient_match_profile(patient_id, diagnosis, comorbidities)
        if profile is None:
            return []
        matches = rank_protocols(_load_protocols_with_criteria(), profile, config)
    except Exception as e:
        logger.error(f"[MATCHER] Protocol matching failed for patient {patient_id}: {e}")
        return []

    top = matches[0].protocol_name if matches else None
    logger.info(f"[MATCHER] Matching completed for patient {patient_id}: {len(matches)} matches, top={top}")
    return matches


def auto_assign_best_protocol(patient_id: str, assigned_by: str | None = None) -> AutoAssignResult:
    """Assign the single best match if it clears the auto-assign threshold.

    A best match carrying active contraindications is returned but not
    assigned.
    """
    threshold = settings.auto_assign_minimum_score
    matches = find_matching_protocols(patient_id, MatchingConfig(minimum_match_score=threshold, max_results=1))
    if not matches:
        return AutoAssignResult(
            success=False,
            reason=f"No suitable protocols found with sufficient match score (>{threshold}%)",
        )

    best = matches[0]
    if best.contraindications:
        logger.warning(
            f"[MATCHER] Not auto-assigning {best.protocol_name} to patient {patient_id}: "
            f"contraindications {best.contraindications}"
        )
        return AutoAssignResult(
            success=False,
            protocol=best,
            reason=f"Protocol has contraindications: {', '.join(best.contraindications)}",
        )

    assignment = engine.assign_protocol(patient_id, best.protocol_id, assigned_by, best.recommended_phase)
    if assignment is None:
        return AutoAssignResult(success=False, protocol=best, reason="Failed to create protocol assignment")

    logger.info(
        f"[MATCHER] Auto-assigned {best.protocol_name} to patient {patient_id} (score {best.match_score})"
    )
    return AutoAssignResult(success=True, protocol=best)
