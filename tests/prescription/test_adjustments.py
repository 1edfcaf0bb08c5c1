"""Tests for energy-conserving prescription adjustment.

Tests cover:
- Diagnosis redistribution with conserved daily energy
- Medication deltas and rationale
- Clamp bounds and the documented break in conservation
- Diagnosis and medication category resolution
"""

import pytest

from mobility_engine.prescription.adjustments import (
    RESISTANCE_FOCUS_NOTE,
    apply_prescription_adjustments,
    determine_diagnosis_category,
    determine_medication_categories,
    watts_to_resistance,
)
from mobility_engine.prescription.baseline import PrescriptionBaseline
from mobility_engine.prescription.profiles import DiagnosisCategory, MedicationCategory


def make_baseline(watt_goal: float = 30.0, duration: int = 15, sessions: int = 2) -> PrescriptionBaseline:
    """Create a baseline prescription for adjustment tests."""
    return PrescriptionBaseline(
        watt_goal=watt_goal,
        duration_min_per_session=duration,
        sessions_per_day=sessions,
        total_daily_energy=round(watt_goal * duration * sessions),
        notes="baseline",
    )


# ============================================================================
# Diagnosis pass
# ============================================================================


def test_orthopedic_redistributes_into_longer_lighter_sessions():
    """Test that orthopedic patients get longer sessions at lower power with energy held."""
    result = apply_prescription_adjustments(make_baseline(), "orthopedic", [])

    assert result.diagnosis_category == DiagnosisCategory.ORTHOPEDIC
    assert result.duration == 19
    assert result.rpm == 40
    assert result.power == pytest.approx(23.7)
    assert result.resistance == 3
    assert result.conserved_daily_energy == pytest.approx(900.0)
    assert result.total_daily_energy == 900


def test_orthopedic_deltas_against_baseline():
    """Test that deltas are measured from the baseline and its derived resistance."""
    result = apply_prescription_adjustments(make_baseline(), "Total Knee Arthroplasty", [])

    assert result.adjustments.duration_delta == 4
    assert result.adjustments.rpm_delta == 5
    assert result.adjustments.resistance_delta == -1
    assert result.adjustments.power_delta == pytest.approx(-6.3)


def test_general_diagnosis_leaves_baseline_unchanged():
    """Test that the general profile and no medications reproduce the baseline."""
    result = apply_prescription_adjustments(make_baseline(), None, [])

    assert result.diagnosis_category == DiagnosisCategory.GENERAL
    assert result.medication_categories == [MedicationCategory.NONE]
    assert result.duration == 15
    assert result.power == pytest.approx(30.0)
    assert result.medication_rationale == []
    assert result.all_rationale == [result.diagnosis_rationale]


def test_explicit_baseline_resistance_used_for_delta():
    """Test that a supplied baseline resistance replaces the derived one."""
    result = apply_prescription_adjustments(make_baseline(), "general", [], baseline_resistance=2)
    assert result.adjustments.resistance_delta == result.resistance - 2


# ============================================================================
# Medication pass
# ============================================================================


def test_beta_blocker_lowers_cadence_and_adds_resistance_focus():
    """Test that beta blockers cut rpm by 5 and append the resistance-focus note."""
    result = apply_prescription_adjustments(make_baseline(), "general", ["Metoprolol 25mg"])

    assert result.medication_categories == [MedicationCategory.BETA_BLOCKER]
    assert result.rpm == 30
    assert result.resistance == 5
    assert result.medication_rationale[-1] == RESISTANCE_FOCUS_NOTE
    assert "Note: HR will not reflect true exertion - use RPE instead" in result.monitoring_params


def test_sedating_and_diuretic_stack_duration_reductions():
    """Test that medication minute reductions accumulate in medication order."""
    result = apply_prescription_adjustments(make_baseline(), "general", ["oxycodone", "Lasix 40mg"])

    assert result.medication_categories == [MedicationCategory.SEDATING, MedicationCategory.DIURETIC]
    assert result.duration == 10
    assert result.rpm == 30
    assert result.conserved_daily_energy == pytest.approx(900.0)
    assert result.power == pytest.approx(45.0)


def test_duplicate_medication_categories_collapse():
    """Test that two beta blockers apply the beta-blocker profile once."""
    result = apply_prescription_adjustments(make_baseline(), "general", ["metoprolol", "atenolol"])

    assert result.medication_categories == [MedicationCategory.BETA_BLOCKER]
    assert result.rpm == 30
    assert len(result.stop_criteria) == len(set(result.stop_criteria))


def test_duration_never_drops_below_five_minutes():
    """Test that medication reductions stop at the five minute floor."""
    result = apply_prescription_adjustments(make_baseline(duration=8), "icu_recovery", ["lorazepam"])
    assert result.duration == 5


# ============================================================================
# Clamp pass
# ============================================================================


def test_clamp_can_break_conservation():
    """Test that clamped power is reported alongside the pre-clamp energy."""
    result = apply_prescription_adjustments(make_baseline(watt_goal=70.0), "frail_elderly", [])

    assert result.duration == 12
    assert result.power == pytest.approx(70.0)
    assert result.resistance == 6
    assert result.conserved_daily_energy == pytest.approx(2100.0)
    assert result.total_daily_energy == 1680


@pytest.mark.parametrize("diagnosis", list(DiagnosisCategory))
@pytest.mark.parametrize("medications", [[], ["metoprolol", "furosemide", "oxycodone", "digoxin"]])
def test_outputs_always_within_bounds(diagnosis, medications):
    """Test that every diagnosis and medication mix respects the clamp ranges."""
    result = apply_prescription_adjustments(make_baseline(watt_goal=55.0), diagnosis, medications, "bedbound")

    assert 5 <= result.duration <= 30
    assert 1 <= result.resistance <= 6
    assert 15 <= result.rpm <= 60
    assert 20 <= result.power <= 70


# ============================================================================
# Category resolution
# ============================================================================


@pytest.mark.parametrize(
    ("text", "expected"),
    [
        ("Hip Fracture", DiagnosisCategory.ORTHOPEDIC),
        ("Stroke/CVA", DiagnosisCategory.NEUROLOGICAL),
        ("acute on chronic CHF", DiagnosisCategory.CARDIAC),
        ("COPD exacerbation", DiagnosisCategory.PULMONARY),
        ("hospital delirium", DiagnosisCategory.DELIRIUM),
        ("delirium", DiagnosisCategory.DELIRIUM),
        ("Other", DiagnosisCategory.GENERAL),
        ("", DiagnosisCategory.GENERAL),
        ("nothing recognizable", DiagnosisCategory.GENERAL),
    ],
)
def test_determine_diagnosis_category(text, expected):
    """Test dropdown labels, category names and keyword fallbacks."""
    assert determine_diagnosis_category(text) == expected


def test_unmatched_medications_map_to_none():
    """Test that unknown medications yield the none category."""
    assert determine_medication_categories(["acetaminophen"]) == [MedicationCategory.NONE]


def test_watts_to_resistance_clamped_to_device_range():
    """Test the device resistance range at both extremes."""
    assert watts_to_resistance(1, 60) == 1
    assert watts_to_resistance(200, 15) == 9
