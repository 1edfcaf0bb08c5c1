"""Baseline cycling prescription.

Anthropometric-aware watt target for a bedside cycle ergometer:
1. Pick a W/kg band by mobility and start at its midpoint
2. Trim for level of care, age and sex
3. Cap for extreme BMI, then bound globally to [0.18, 0.48] W/kg
4. Convert to watts with body weight (or a mobility fallback table)
5. Scale to the electromagnetic flywheel's usable range (x1.4, 25-70 W)
6. Choose session duration and count from level of care and mobility
"""

from __future__ import annotations

from loguru import logger
from pydantic import BaseModel, Field

from mobility_engine.core.rounding import round_half_up, round_int
from mobility_engine.patients.schemas import PatientRiskInput
from mobility_engine.risk.features import compute_bmi, normalize_level_of_care

WKG_BANDS: dict[str, tuple[float, float]] = {
    "bedbound": (0.20, 0.28),
    "chair_bound": (0.22, 0.30),
    "standing_assist": (0.25, 0.34),
    "walking_assist": (0.28, 0.40),
    "independent": (0.32, 0.45),
}
DEFAULT_WKG_BAND = (0.22, 0.32)

FALLBACK_WATTS: dict[str, float] = {
    "bedbound": 14.0,
    "chair_bound": 18.0,
    "standing_assist": 22.0,
    "walking_assist": 30.0,
    "independent": 36.0,
}
DEFAULT_FALLBACK_WATTS = 18.0

WKG_MIN = 0.18
WKG_MAX = 0.48
DEVICE_SCALE = 1.4
WATTS_MIN = 25.0
WATTS_MAX = 70.0
SESSIONS_PER_DAY = 2


class PrescriptionBaseline(BaseModel):
    """Daily cycling dose before diagnosis and medication adjustment."""

    watt_goal: float = Field(..., ge=WATTS_MIN, le=WATTS_MAX)
    duration_min_per_session: int = Field(..., gt=0)
    sessions_per_day: int = Field(..., gt=0)
    total_daily_energy: int = Field(..., description="watt-minutes per day")
    notes: str
    debug: dict = Field(default_factory=dict)


def _age_multiplier(age: int) -> float:
    if age >= 80:
        return 0.88
    if age >= 70:
        return 0.93
    if age <= 45:
        return 1.05
    return 1.0


def _bmi_cap(bmi: float | None) -> float | None:
    if bmi is None:
        return None
    if bmi >= 40:
        return 0.28
    if bmi >= 35:
        return 0.30
    if bmi < 18.5:
        return 0.26
    return None


def dose_shape(level_of_care: str, mobility: str) -> tuple[int, int]:
    """Return (minutes per session, sessions per day).

    Frailer and ICU patients get shorter bouts.
    """
    if level_of_care == "icu" or mobility in ("bedbound", "chair_bound"):
        return (8 if mobility == "bedbound" else 10), SESSIONS_PER_DAY
    if mobility in ("standing_assist", "walking_assist"):
        return 12, SESSIONS_PER_DAY
    return 15, SESSIONS_PER_DAY


def estimate_resistance_level(watt_goal: float) -> int:
    """Approximate flywheel level (1-9 scale) for a watt goal, used in notes."""
    return round_int((watt_goal - WATTS_MIN) / 45 * 8 + 3)


def estimate_baseline_prescription(patient: PatientRiskInput) -> PrescriptionBaseline:
    """Compute the baseline watt goal and dose shape for a patient."""
    age = patient.age
    sex = (patient.sex or "").lower()
    level_of_care = normalize_level_of_care(patient.level_of_care).value
    mobility = patient.mobility_status or "bedbound"
    weight = patient.weight_kg if patient.weight_kg and patient.weight_kg > 0 else None
    bmi = compute_bmi(weight, patient.height_cm)

    band_lo, band_hi = WKG_BANDS.get(mobility, DEFAULT_WKG_BAND)
    wkg = 0.5 * (band_lo + band_hi)

    if level_of_care == "icu":
        wkg *= 0.85
    elif level_of_care == "stepdown":
        wkg *= 0.93

    wkg *= _age_multiplier(age)

    if sex == "male":
        wkg *= 1.03

    cap = _bmi_cap(bmi)
    if cap is not None:
        wkg = min(wkg, cap)

    wkg = max(WKG_MIN, min(WKG_MAX, wkg))

    if weight is not None:
        watts = wkg * weight
    else:
        watts = FALLBACK_WATTS.get(mobility, DEFAULT_FALLBACK_WATTS)
        if level_of_care == "icu":
            watts *= 0.9
        watts *= _age_multiplier(age)

    # Flywheel output below 25 W is not reliably measurable
    watts = max(watts * DEVICE_SCALE, WATTS_MIN)
    watts = max(WATTS_MIN, min(WATTS_MAX, watts))
    watt_goal = round_half_up(watts, 1)

    duration, sessions = dose_shape(level_of_care, mobility)

    notes = (
        f"Target light-moderate effort ({watt_goal}W ≈ resistance level {estimate_resistance_level(watt_goal)}). "
        "Adjust by symptoms, BP/HR response, and RPE 2-3/10. "
        "If undue fatigue or hemodynamic instability, reduce resistance level and reassess."
    )

    debug = {
        "used_wkg": round_half_up(wkg, 3) if weight is not None else None,
        "bmi": round_half_up(bmi, 1) if bmi is not None else None,
        "age": age,
        "level_of_care": level_of_care,
        "mobility": mobility,
    }
    logger.debug(f"[PRESCRIPTION] Baseline trace: {debug}")

    return PrescriptionBaseline(
        watt_goal=watt_goal,
        duration_min_per_session=duration,
        sessions_per_day=sessions,
        total_daily_energy=round_int(watt_goal * duration * sessions),
        notes=notes,
        debug=debug,
    )
