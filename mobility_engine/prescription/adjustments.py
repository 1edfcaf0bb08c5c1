"""Energy-conserving prescription adjustment.

Total daily energy (power x duration x sessions, watt-minutes) is held
constant while diagnosis and medication profiles redistribute it:

1. Diagnosis pass: scale duration and cadence, back-solve power
2. Medication pass: subtract fixed minute/rpm deltas, back-solve power again
3. Clamp pass: duration [5, 30] min, resistance [1, 6], rpm [15, 60],
   power [20, 70] W

The clamp runs last and can break conservation for extreme inputs. The
energy after the medication pass is reported as conserved_daily_energy so
callers can tell the two apart.
"""

from __future__ import annotations

from collections.abc import Iterable

from loguru import logger
from pydantic import BaseModel, Field

from mobility_engine.core.rounding import round_half_up, round_int
from mobility_engine.prescription.baseline import PrescriptionBaseline
from mobility_engine.prescription.profiles import (
    DIAGNOSIS_KEYWORDS,
    DIAGNOSIS_LABELS,
    DIAGNOSIS_PROFILES,
    DIRECT_DIAGNOSIS_LABELS,
    MEDICATION_KEYWORDS,
    MEDICATION_PROFILES,
    MONITORING_BY_CATEGORY,
    STOP_CRITERIA_BY_CATEGORY,
    DiagnosisCategory,
    MedicationCategory,
)

POWER_CONSTANT = 0.2

BASELINE_RPM_BY_MOBILITY: dict[str, int] = {
    "bedbound": 25,
    "chair_bound": 30,
    "standing_assist": 35,
    "walking_assist": 40,
    "independent": 45,
}
DEFAULT_BASELINE_RPM = 35

DURATION_RANGE = (5, 30)
RESISTANCE_RANGE = (1, 6)
DEVICE_RESISTANCE_RANGE = (1, 9)
RPM_RANGE = (15, 60)
POWER_RANGE = (20.0, 70.0)

RESISTANCE_FOCUS_NOTE = (
    "Focus on resistance/strength training rather than high RPM aerobic exercise "
    "due to heart rate-affecting medications."
)


class PrescriptionDeltas(BaseModel):
    duration_delta: int
    power_delta: float
    resistance_delta: int
    rpm_delta: int


class AdjustedPrescription(BaseModel):
    """Diagnosis- and medication-adjusted cycling prescription."""

    duration: int = Field(..., ge=DURATION_RANGE[0], le=DURATION_RANGE[1])
    power: float = Field(..., ge=POWER_RANGE[0], le=POWER_RANGE[1])
    resistance: int = Field(..., ge=RESISTANCE_RANGE[0], le=RESISTANCE_RANGE[1])
    rpm: int = Field(..., ge=RPM_RANGE[0], le=RPM_RANGE[1])
    sessions_per_day: int
    total_daily_energy: int
    conserved_daily_energy: float = Field(..., description="Energy before the clamp pass, watt-minutes")

    diagnosis_category: DiagnosisCategory
    diagnosis_category_label: str
    medication_categories: list[MedicationCategory]

    diagnosis_rationale: str
    medication_rationale: list[str]
    all_rationale: list[str]
    monitoring_params: list[str]
    stop_criteria: list[str]

    adjustments: PrescriptionDeltas


def watts_to_resistance(watts: float, rpm: float) -> int:
    """Flywheel resistance level for a power at a cadence, clamped to 1-9."""
    resistance = round_int(watts / (POWER_CONSTANT * rpm))
    return max(DEVICE_RESISTANCE_RANGE[0], min(DEVICE_RESISTANCE_RANGE[1], resistance))


def calculate_power(resistance: float, rpm: float) -> float:
    return POWER_CONSTANT * resistance * rpm


def determine_diagnosis_category(diagnosis: str | DiagnosisCategory | None) -> DiagnosisCategory:
    """Resolve diagnosis text (or a category name) to a diagnosis category."""
    if isinstance(diagnosis, DiagnosisCategory):
        return diagnosis
    text = (diagnosis or "").strip().lower()
    if not text:
        return DiagnosisCategory.GENERAL
    if text in {category.value for category in DiagnosisCategory}:
        return DiagnosisCategory(text)

    for label, category in DIRECT_DIAGNOSIS_LABELS:
        if label in text:
            return category
    for keyword, category in DIAGNOSIS_KEYWORDS:
        if keyword in text:
            return category
    return DiagnosisCategory.GENERAL


def determine_medication_categories(medications: Iterable[str]) -> list[MedicationCategory]:
    """Map each medication to its first matching category, deduplicated in order."""
    categories: list[MedicationCategory] = []
    for medication in medications:
        name = medication.strip().lower()
        for keyword, category in MEDICATION_KEYWORDS:
            if keyword in name:
                if category not in categories:
                    categories.append(category)
                break
    return categories or [MedicationCategory.NONE]


def _dedupe(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _clamp(value, bounds):
    low, high = bounds
    return max(low, min(high, value))


def apply_prescription_adjustments(
    baseline: PrescriptionBaseline,
    diagnosis: str | DiagnosisCategory | None,
    medications: Iterable[str],
    mobility_status: str = "standing_assist",
    baseline_resistance: int | None = None,
) -> AdjustedPrescription:
    """Redistribute the baseline's daily energy for diagnosis and medications.

    Args:
        baseline: Baseline prescription (watt goal, minutes, sessions)
        diagnosis: Diagnosis text, dropdown label, or category
        medications: Medication names
        mobility_status: Sets the baseline cadence
        baseline_resistance: Known baseline resistance; derived from power
            and cadence when omitted

    Returns:
        AdjustedPrescription with clamped parameters, deltas and the merged
        rationale, monitoring and stop-criteria lists
    """
    diagnosis_category = determine_diagnosis_category(diagnosis)
    medication_categories = determine_medication_categories(medications)
    diagnosis_profile = DIAGNOSIS_PROFILES[diagnosis_category]

    baseline_power = baseline.watt_goal
    baseline_duration = baseline.duration_min_per_session
    sessions = baseline.sessions_per_day
    baseline_rpm = BASELINE_RPM_BY_MOBILITY.get(mobility_status, DEFAULT_BASELINE_RPM)
    if baseline_resistance is None:
        baseline_resistance = watts_to_resistance(baseline_power, baseline_rpm)

    total_energy = baseline_power * baseline_duration * sessions
    energy_per_session = total_energy / sessions

    # Diagnosis pass
    duration = max(1, round_int(baseline_duration * diagnosis_profile.duration_multiplier))
    rpm = round_int(baseline_rpm * diagnosis_profile.rpm_multiplier)

    # Medication pass
    medication_rationale: list[str] = []
    monitoring = list(MONITORING_BY_CATEGORY[diagnosis_category])
    stop_criteria = list(STOP_CRITERIA_BY_CATEGORY[diagnosis_category])
    resistance_focus = False
    for category in medication_categories:
        if category == MedicationCategory.NONE:
            continue
        profile = MEDICATION_PROFILES[category]
        if profile.duration_reduction > 0:
            duration = max(DURATION_RANGE[0], duration - profile.duration_reduction)
        if profile.rpm_reduction > 0:
            rpm = max(RPM_RANGE[0], rpm - profile.rpm_reduction)
        resistance_focus = resistance_focus or profile.resistance_focus
        medication_rationale.append(profile.rationale)
        monitoring.extend(profile.additional_monitoring)
        stop_criteria.extend(profile.additional_stop_criteria)

    if resistance_focus:
        medication_rationale.append(RESISTANCE_FOCUS_NOTE)

    power = energy_per_session / duration
    conserved_energy = power * duration * sessions
    resistance = watts_to_resistance(power, rpm)

    # Clamp pass
    duration = _clamp(duration, DURATION_RANGE)
    resistance = _clamp(resistance, RESISTANCE_RANGE)
    rpm = _clamp(rpm, RPM_RANGE)
    power = _clamp(power, POWER_RANGE)

    logger.info(
        f"[PRESCRIPTION] Adjusted for {diagnosis_category} with medications "
        f"{[str(c) for c in medication_categories]}: {baseline_power}W x {baseline_duration}min -> "
        f"{power:.1f}W x {duration}min, rpm {rpm}, resistance {resistance}"
    )

    return AdjustedPrescription(
        duration=duration,
        power=round_half_up(power, 1),
        resistance=resistance,
        rpm=rpm,
        sessions_per_day=sessions,
        total_daily_energy=round_int(power * duration * sessions),
        conserved_daily_energy=conserved_energy,
        diagnosis_category=diagnosis_category,
        diagnosis_category_label=DIAGNOSIS_LABELS[diagnosis_category],
        medication_categories=medication_categories,
        diagnosis_rationale=diagnosis_profile.rationale,
        medication_rationale=medication_rationale,
        all_rationale=_dedupe([diagnosis_profile.rationale, *medication_rationale]),
        monitoring_params=_dedupe(monitoring),
        stop_criteria=_dedupe(stop_criteria),
        adjustments=PrescriptionDeltas(
            duration_delta=duration - baseline_duration,
            power_delta=round_half_up(power - baseline_power, 1),
            resistance_delta=resistance - baseline_resistance,
            rpm_delta=rpm - baseline_rpm,
        ),
    )
