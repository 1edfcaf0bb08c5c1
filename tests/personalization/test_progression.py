"""Tests for progressive overload and setback recovery.

Tests cover:
- Setback classification (performance decline, adherence drop)
- Progression rules (resistance, duration, near target, caps)
- Plateau detection
- Recovery entry and completion with goal restoration
- Session feedback and performance prediction
"""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from mobility_engine.alerts.repository import list_alerts
from mobility_engine.db.models import ExerciseSession, PatientGoal, PersonalizationProfile
from mobility_engine.personalization.progression import (
    RECOVERY_SUBTITLE,
    ProgressionConfig,
    ProgressiveOverloadEngine,
    SetbackConfig,
    calculate_progression_confidence,
    check_bilateral_setback,
    classify_adherence_drop,
    classify_performance_decline,
    create_recovery_plan,
    detect_plateau,
    detect_setback,
    evaluate_progression_rules,
)
from mobility_engine.personalization.schemas import (
    ProgressionDirection,
    ProgressionParameter,
    SessionOutcome,
    SetbackSeverity,
    SetbackType,
)

NOW = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_session(
    days_ago: float,
    avg_power: float = 30.0,
    duration_seconds: int = 900,
    resistance: float | None = 3.0,
    target_duration_seconds: int | None = None,
    patient_id: str = "patient-001",
) -> ExerciseSession:
    return ExerciseSession(
        patient_id=patient_id,
        start_time=NOW - timedelta(days=days_ago),
        duration_seconds=duration_seconds,
        target_duration_seconds=target_duration_seconds,
        avg_power=avg_power,
        resistance=resistance,
    )


def make_goal(goal_type: str, target_value: float, patient_id: str = "patient-001", **fields) -> PatientGoal:
    units = {"duration": "min", "power": "W", "resistance": "level"}
    return PatientGoal(
        patient_id=patient_id,
        goal_type=goal_type,
        target_value=target_value,
        unit=units.get(goal_type, ""),
        label=f"{goal_type.title()} goal",
        **fields,
    )


def add_all(db_session, *rows):
    db_session.add_all(rows)
    db_session.flush()


# ============================================================================
# Setback classification
# ============================================================================


@pytest.mark.parametrize(
    ("recent_power", "expected"),
    [(20.0, SetbackSeverity.MAJOR), (24.0, SetbackSeverity.MODERATE), (25.0, SetbackSeverity.MINOR)],
)
def test_performance_decline_severity(recent_power, expected):
    """Test that the newest three sessions are compared with the oldest four."""
    sessions = [make_session(i, avg_power=recent_power) for i in range(3)] + [
        make_session(i, avg_power=30.0) for i in range(3, 7)
    ]

    severity, decline = classify_performance_decline(sessions, SetbackConfig(rebaseline_after_days=5))

    assert severity == expected
    assert decline == pytest.approx((30.0 - recent_power) / 30.0)


def test_performance_decline_needs_four_sessions():
    sessions = [make_session(i, avg_power=10.0) for i in range(3)]
    assert classify_performance_decline(sessions, SetbackConfig(rebaseline_after_days=5)) is None


@pytest.mark.parametrize(
    ("days_ago", "expected"),
    [(2.9, None), (3, SetbackSeverity.MINOR), (5.5, SetbackSeverity.MODERATE), (8, SetbackSeverity.MAJOR)],
)
def test_adherence_drop_by_whole_days(days_ago, expected):
    """Test that missed days are counted in whole days since the newest session."""
    result = classify_adherence_drop([make_session(days_ago)], NOW, SetbackConfig(rebaseline_after_days=5))
    assert (result[0] if result else None) == expected


def test_no_sessions_is_a_major_adherence_drop():
    detection = detect_setback([], NOW, SetbackConfig(rebaseline_after_days=5))

    assert detection.type == SetbackType.ADHERENCE_DROP
    assert detection.severity == SetbackSeverity.MAJOR
    assert detection.metrics.missed_sessions_days == 7


def test_performance_decline_checked_before_adherence():
    sessions = [make_session(4 + i, avg_power=15.0) for i in range(3)] + [
        make_session(8 + i, avg_power=30.0) for i in range(4)
    ]
    detection = detect_setback(sessions, NOW, SetbackConfig(rebaseline_after_days=5))
    assert detection.type == SetbackType.PERFORMANCE_DECLINE


def test_bilateral_setback_hook_never_fires():
    assert check_bilateral_setback([make_session(0)]) is None


@pytest.mark.parametrize(
    ("severity", "reduction", "encouragement", "consult"),
    [
        (SetbackSeverity.MINOR, 0.125, "medium", False),
        (SetbackSeverity.MODERATE, 0.25, "high", False),
        (SetbackSeverity.MAJOR, 0.375, "high", True),
    ],
)
def test_recovery_plan_by_severity(severity, reduction, encouragement, consult):
    plan = create_recovery_plan(severity, SetbackConfig(rebaseline_after_days=5))

    assert plan.goal_reduction == pytest.approx(reduction)
    assert plan.encouragement_frequency == encouragement
    assert plan.clinician_consultation_needed is consult
    assert plan.rebaseline_after_days == 5


# ============================================================================
# Progression rules
# ============================================================================


def test_resistance_progression_when_duration_and_power_met():
    """Test that three sessions at full duration and >= 100% power raise resistance by 0.5."""
    sessions = [make_session(i, avg_power=32.0) for i in range(3)]
    goals = [make_goal("duration", 15), make_goal("power", 30)]

    check = evaluate_progression_rules(sessions, goals, 1, ProgressionConfig())

    assert check.should_progress
    assert check.direction == ProgressionDirection.INCREASE
    assert check.parameter == ProgressionParameter.RESISTANCE
    assert check.current_value == 3.0
    assert check.new_value == 3.5
    assert check.reason == "Consistently meeting duration (100%) and power (107%) targets."
    assert check.confidence == pytest.approx(0.84)


def test_duration_progression_when_power_short():
    sessions = [make_session(i, avg_power=24.0) for i in range(3)]

    check = evaluate_progression_rules(sessions, [make_goal("power", 30)], 1, ProgressionConfig())

    assert check.parameter == ProgressionParameter.DURATION
    assert check.current_value == 15
    assert check.new_value == 17
    assert check.reason == "Meeting duration targets (100%). Increasing duration to build endurance."


def test_near_target_maintains():
    sessions = [make_session(i, duration_seconds=780) for i in range(3)]

    check = evaluate_progression_rules(sessions, [], 1, ProgressionConfig())

    assert not check.should_progress
    assert check.direction == ProgressionDirection.MAINTAIN
    assert check.parameter is None
    assert check.reason == "Progress improving. Duration achievement: 87%. Continue current level."


def test_far_from_target_maintains():
    sessions = [make_session(i, duration_seconds=300, avg_power=12.0) for i in range(3)]

    check = evaluate_progression_rules(sessions, [], 2, ProgressionConfig())

    assert check.current_value == 2
    assert check.reason == "Not yet meeting targets. Duration: 33%, Power: 40%. Maintain current level."


def test_session_target_duration_overrides_goal():
    """Test that a session's own target duration is used for achievement."""
    sessions = [make_session(i, duration_seconds=540, target_duration_seconds=600, avg_power=30.0) for i in range(3)]

    check = evaluate_progression_rules(sessions, [make_goal("duration", 20)], 1, ProgressionConfig())

    assert check.should_progress
    assert check.parameter == ProgressionParameter.RESISTANCE


def test_resistance_capped_at_device_maximum():
    sessions = [make_session(i, avg_power=40.0, resistance=9.0) for i in range(3)]

    check = evaluate_progression_rules(sessions, [], 5, ProgressionConfig())

    assert check.parameter == ProgressionParameter.RESISTANCE
    assert check.new_value == 9
    assert not check.should_progress


def test_progression_confidence_components():
    assert calculate_progression_confidence(5, 0.95, 0.95) == pytest.approx(1.0)
    assert calculate_progression_confidence(3, 0.85, 0.5) == pytest.approx(0.44)
    assert calculate_progression_confidence(0, 0.0, 0.0) == 0.0


def test_plateau_requires_five_flat_sessions():
    """Test that five sessions with under 5% normalized trend are a plateau."""
    flat = [make_session(i, avg_power=30.0 + (i % 2) * 0.5) for i in range(5)]
    rising = [make_session(i, avg_power=40.0 - 3 * i) for i in range(5)]

    assert detect_plateau(flat, ProgressionConfig()).startswith("Performance plateaued.")
    assert detect_plateau(flat[:4], ProgressionConfig()) is None
    assert detect_plateau(rising, ProgressionConfig()) is None


# ============================================================================
# Engine: progression
# ============================================================================


def test_evaluate_progression_applies_resistance_increase(db_session, test_patient_id):
    """Test that a progression raises the level, the resistance goal and alerts the clinician."""
    resistance_goal = make_goal("resistance", 3.0)
    add_all(
        db_session,
        make_goal("duration", 15),
        make_goal("power", 30),
        resistance_goal,
        *[make_session(0.1 + i, avg_power=32.0) for i in range(3)],
    )

    check = ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    assert check.should_progress
    assert check.parameter == ProgressionParameter.RESISTANCE
    profile = db_session.get(PersonalizationProfile, test_patient_id)
    assert profile.progression_level == 2
    assert profile.consecutive_successful_sessions == 0
    assert profile.last_progression_date == NOW
    assert resistance_goal.target_value == 3.5
    assert resistance_goal.ai_recommended
    alerts = list_alerts(db_session, test_patient_id, "progression_applied")
    assert [a.priority for a in alerts] == ["low"]


def test_evaluate_progression_needs_three_recent_sessions(db_session, test_patient_id):
    add_all(db_session, make_session(1), make_session(2))

    check = ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    assert check.direction == ProgressionDirection.MAINTAIN
    assert check.reason == "Need 3 sessions for progression evaluation. Have 2."
    assert check.confidence == 0.5


def test_evaluate_progression_reports_plateau(db_session, test_patient_id):
    add_all(db_session, *[make_session(0.2 + i) for i in range(5)])

    check = ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    assert not check.should_progress
    assert check.reason.startswith("Plateau detected.")
    assert check.confidence == 0.75
    assert [a.priority for a in list_alerts(db_session, test_patient_id, "plateau_detected")] == ["medium"]


def test_evaluate_progression_never_raises(monkeypatch, test_patient_id):
    @contextmanager
    def failing_session():
        raise RuntimeError("database unavailable")
        yield

    monkeypatch.setattr("mobility_engine.personalization.progression.get_session", failing_session)

    check = ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    assert check.direction == ProgressionDirection.MAINTAIN
    assert check.confidence == 0
    assert check.reason == "Error: database unavailable"


# ============================================================================
# Engine: setbacks and recovery
# ============================================================================


def test_missed_week_enters_recovery(db_session, test_patient_id):
    """Test that a last session 8 days ago is a major adherence setback that reduces goals."""
    power_goal = make_goal("power", 30.0)
    db_session.add(PersonalizationProfile(patient_id=test_patient_id, progression_level=3))
    add_all(db_session, power_goal, make_session(8))

    check = ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    assert check.direction == ProgressionDirection.DECREASE
    assert check.reason == "Setback detected: adherence_drop. Initiating recovery protocol."
    assert check.confidence == 0.9

    profile = db_session.get(PersonalizationProfile, test_patient_id)
    assert profile.in_setback_recovery
    assert profile.pre_setback_level == 3
    assert profile.progression_level == 2
    assert power_goal.pre_setback_target == 30.0
    assert power_goal.target_value == pytest.approx(30.0 * (1 - 0.375))
    assert power_goal.subtitle == RECOVERY_SUBTITLE

    alert = list_alerts(db_session, test_patient_id, "setback_detected")[0]
    assert alert.priority == "high"
    assert alert.action_required == "Clinician consultation recommended"
    assert alert.alert_metadata["metrics"] == {"missed_sessions_days": 8}


def test_check_for_setback_has_no_side_effects(db_session, test_patient_id):
    """Test that checking for a setback neither creates a profile nor raises alerts."""
    add_all(db_session, make_session(8))

    detection = ProgressiveOverloadEngine().check_for_setback(test_patient_id, now=NOW)

    assert detection.type == SetbackType.ADHERENCE_DROP
    assert detection.severity == SetbackSeverity.MAJOR
    assert db_session.get(PersonalizationProfile, test_patient_id) is None
    assert list_alerts(db_session, test_patient_id) == []


def test_check_for_setback_skips_patients_in_recovery(db_session, test_patient_id):
    add_all(db_session, PersonalizationProfile(patient_id=test_patient_id, in_setback_recovery=True), make_session(8))

    detection = ProgressiveOverloadEngine().check_for_setback(test_patient_id, now=NOW)

    assert not detection.detected


def test_recovery_holds_until_rebaseline_period(db_session, test_patient_id):
    db_session.add(
        PersonalizationProfile(
            patient_id=test_patient_id,
            in_setback_recovery=True,
            setback_start_date=NOW - timedelta(days=2),
        )
    )
    add_all(db_session, *[make_session(0.5 + i, avg_power=40.0) for i in range(3)])

    check = ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    assert check.reason == "Patient in setback recovery mode. Monitoring for improvement."
    assert check.confidence == 0.8


def test_recovery_completes_and_restores_goals(db_session, test_patient_id):
    """Test that recovery ends once power is back to 85% of the pre-setback target."""
    power_goal = make_goal("power", 18.75, pre_setback_target=30.0, subtitle=RECOVERY_SUBTITLE)
    db_session.add(
        PersonalizationProfile(
            patient_id=test_patient_id,
            progression_level=2,
            in_setback_recovery=True,
            setback_start_date=NOW - timedelta(days=6),
            pre_setback_level=3,
        )
    )
    add_all(db_session, power_goal, *[make_session(0.5 + i, avg_power=27.0) for i in range(3)])

    ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    profile = db_session.get(PersonalizationProfile, test_patient_id)
    assert not profile.in_setback_recovery
    assert profile.setback_start_date is None
    assert power_goal.target_value == 30.0
    assert power_goal.pre_setback_target is None
    assert power_goal.subtitle is None
    recovered = list_alerts(db_session, test_patient_id, "setback_recovered")
    assert recovered[0].message == "Patient has recovered from setback. Performance restored to 90% of target."


def test_recovery_waits_for_power(db_session, test_patient_id):
    power_goal = make_goal("power", 18.75, pre_setback_target=30.0)
    db_session.add(
        PersonalizationProfile(
            patient_id=test_patient_id,
            in_setback_recovery=True,
            setback_start_date=NOW - timedelta(days=6),
        )
    )
    add_all(db_session, power_goal, *[make_session(0.5 + i, avg_power=20.0) for i in range(3)])

    check = ProgressiveOverloadEngine().evaluate_progression(test_patient_id, now=NOW)

    assert check.confidence == 0.8
    assert db_session.get(PersonalizationProfile, test_patient_id).in_setback_recovery
    assert power_goal.target_value == 18.75


# ============================================================================
# Session feedback and prediction
# ============================================================================


def test_update_from_session_tracks_best_window(db_session, test_patient_id):
    """Test the time-of-day averages, best window and success streak."""
    engine = ProgressiveOverloadEngine()

    assert engine.update_from_session(
        test_patient_id, SessionOutcome(avg_power=30, duration_minutes=15, time_of_day="morning", target_achieved=True)
    )
    assert engine.update_from_session(
        test_patient_id, SessionOutcome(avg_power=40, duration_minutes=15, time_of_day="Afternoon", target_achieved=True)
    )

    profile = db_session.get(PersonalizationProfile, test_patient_id)
    assert profile.avg_morning_power == pytest.approx(30.0)
    assert profile.avg_afternoon_power == pytest.approx(40.0)
    assert profile.best_performance_window == "afternoon"
    assert profile.consecutive_successful_sessions == 2

    engine.update_from_session(
        test_patient_id, SessionOutcome(avg_power=35, duration_minutes=10, time_of_day="morning", target_achieved=False)
    )
    assert profile.avg_morning_power == pytest.approx(30 * 0.7 + 35 * 0.3)
    assert profile.consecutive_successful_sessions == 0


def test_update_from_session_leaves_recovery_alone(db_session, test_patient_id):
    add_all(db_session, PersonalizationProfile(patient_id=test_patient_id, in_setback_recovery=True))

    ProgressiveOverloadEngine().update_from_session(
        test_patient_id, SessionOutcome(avg_power=30, duration_minutes=15, time_of_day="evening", target_achieved=True)
    )

    profile = db_session.get(PersonalizationProfile, test_patient_id)
    assert profile.in_setback_recovery
    assert profile.best_performance_window == "evening"


def test_prediction_needs_five_sessions(db_session, test_patient_id):
    add_all(db_session, *[make_session(i + 1) for i in range(4)])

    prediction = ProgressiveOverloadEngine().predict_performance(test_patient_id, now=NOW)

    assert prediction.predicted == []
    assert prediction.confidence == 0.0


def test_prediction_widens_with_horizon(db_session, test_patient_id):
    """Test the projected trend and the widening 95% band."""
    # Oldest session first: 20, 22, 24, 26, 28 W
    add_all(db_session, *[make_session(5 - i, avg_power=20.0 + 2 * i) for i in range(5)])

    prediction = ProgressiveOverloadEngine().predict_performance(test_patient_id, days_ahead=14, now=NOW)

    assert len(prediction.dates) == 15
    assert prediction.dates[0] == "2026-03-10"
    assert prediction.predicted[0] == pytest.approx(28.0)
    assert prediction.lower_bound[0] == pytest.approx(22.5)
    assert prediction.upper_bound[0] == pytest.approx(33.5)
    assert prediction.predicted[7] == pytest.approx(44.3)
    widths = [upper - lower for lower, upper in zip(prediction.lower_bound, prediction.upper_bound)]
    assert widths[-1] > widths[0]
    assert prediction.confidence == pytest.approx(1 - 8**0.5 / 28, abs=1e-6)
