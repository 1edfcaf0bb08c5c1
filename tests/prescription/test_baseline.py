"""Tests for the baseline cycling prescription."""

import pytest

from mobility_engine.patients.schemas import PatientRiskInput
from mobility_engine.prescription.baseline import (
    WATTS_MAX,
    WATTS_MIN,
    dose_shape,
    estimate_baseline_prescription,
    estimate_resistance_level,
)


def make_patient(**overrides) -> PatientRiskInput:
    fields = {
        "age": 60,
        "level_of_care": "ward",
        "mobility_status": "independent",
        "cognitive_status": "normal",
    }
    fields.update(overrides)
    return PatientRiskInput(**fields)


def test_frail_icu_patient_without_weight_floors_at_minimum_watts():
    """Test that the fallback watt table is floored at the device minimum."""
    result = estimate_baseline_prescription(
        make_patient(age=82, level_of_care="icu", mobility_status="bedbound")
    )

    assert result.watt_goal == WATTS_MIN
    assert result.duration_min_per_session == 8
    assert result.sessions_per_day == 2
    assert result.total_daily_energy == 400
    assert result.debug["used_wkg"] is None


def test_weight_based_watts_with_age_and_sex_trims():
    """Test that a young male's W/kg is scaled up before conversion to watts."""
    result = estimate_baseline_prescription(make_patient(age=40, sex="male", weight_kg=70))

    assert result.watt_goal == pytest.approx(40.8)
    assert result.duration_min_per_session == 15
    assert result.total_daily_energy == 1224


def test_heavy_patient_capped_at_device_maximum():
    """Test that very heavy patients are capped at the maximum watt goal."""
    result = estimate_baseline_prescription(make_patient(age=30, sex="male", weight_kg=150))
    assert result.watt_goal == WATTS_MAX


def test_extreme_bmi_caps_wkg():
    """Test that BMI >= 40 caps the W/kg ratio at 0.28."""
    result = estimate_baseline_prescription(make_patient(weight_kg=120, height_cm=170))

    assert result.debug["used_wkg"] == pytest.approx(0.28)
    assert result.watt_goal == pytest.approx(47.0)


@pytest.mark.parametrize(
    ("level_of_care", "mobility", "expected"),
    [
        ("icu", "walking_assist", (10, 2)),
        ("ward", "bedbound", (8, 2)),
        ("ward", "chair_bound", (10, 2)),
        ("ward", "standing_assist", (12, 2)),
        ("rehab", "independent", (15, 2)),
    ],
)
def test_dose_shape(level_of_care, mobility, expected):
    """Test session length and count by level of care and mobility."""
    assert dose_shape(level_of_care, mobility) == expected


def test_resistance_level_estimate_spans_device_range():
    """Test the note's resistance level at both ends of the watt range."""
    assert estimate_resistance_level(25) == 3
    assert estimate_resistance_level(70) == 11


def test_notes_mention_goal():
    """Test that the notes carry the watt goal and the RPE guidance."""
    result = estimate_baseline_prescription(make_patient(weight_kg=70))
    assert f"{result.watt_goal}W" in result.notes
    assert "RPE 2-3/10" in result.notes


@pytest.mark.parametrize("mobility", ["bedbound", "chair_bound", "standing_assist", "walking_assist", "independent"])
@pytest.mark.parametrize("weight", [None, 40, 80, 140])
def test_watt_goal_always_within_device_range(mobility, weight):
    """Test that every combination lands inside the usable flywheel range."""
    result = estimate_baseline_prescription(make_patient(mobility_status=mobility, weight_kg=weight))
    assert WATTS_MIN <= result.watt_goal <= WATTS_MAX
