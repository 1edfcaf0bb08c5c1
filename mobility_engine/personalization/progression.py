"""Progressive overload and setback recovery.

evaluate_progression() runs after every completed session. In order:

1. Setback check (skipped while already recovering). A performance decline
   or an adherence drop puts the patient into recovery: level - 1, goals
   temporarily reduced, clinician alert.
2. While recovering, only the recovery-completion check runs. Recovery
   restores the goals but not the level; the level has to be re-earned.
3. Otherwise, with at least 3 sessions in the last 7 days: plateau check,
   then the progression rules (resistance +0.5 when duration and power
   targets are met, duration +2 min when only duration is met).

Each evaluation holds the patient's lock and runs in one transaction.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import select
from sqlalchemy.orm import Session

from mobility_engine.alerts.repository import AlertPriority, AlertType, add_alert
from mobility_engine.analysis.trends import normalized_trend, population_std
from mobility_engine.config.settings import settings
from mobility_engine.core.clock import ensure_utc, utcnow
from mobility_engine.core.locks import patient_lock
from mobility_engine.core.rounding import round_half_up, round_int
from mobility_engine.db.models import ExerciseSession, PatientGoal, PersonalizationProfile
from mobility_engine.db.session import get_session
from mobility_engine.personalization.profile_repository import find_profile, get_or_create_profile
from mobility_engine.personalization.schemas import (
    PerformancePrediction,
    ProgressionCheck,
    ProgressionDirection,
    ProgressionParameter,
    SessionOutcome,
    SetbackDetection,
    SetbackMetrics,
    SetbackRecoveryPlan,
    SetbackSeverity,
    SetbackType,
)

DEFAULT_RESISTANCE = 3.0
RECOVERY_SUBTITLE = "Temporarily reduced (recovery mode)"
TIME_OF_DAY_FIELDS: dict[str, str] = {
    "morning": "avg_morning_power",
    "afternoon": "avg_afternoon_power",
    "evening": "avg_evening_power",
}
POWER_EMA_ALPHA = 0.3

SEVERITY_MULTIPLIERS: dict[SetbackSeverity, float] = {
    SetbackSeverity.MINOR: 0.5,
    SetbackSeverity.MODERATE: 1.0,
    SetbackSeverity.MAJOR: 1.5,
}
ENCOURAGEMENT_FREQUENCY: dict[SetbackSeverity, str] = {
    SetbackSeverity.MINOR: "medium",
    SetbackSeverity.MODERATE: "high",
    SetbackSeverity.MAJOR: "high",
}


@dataclass(frozen=True)
class ProgressionConfig:
    consecutive_sessions_required: int = 3
    target_achievement_threshold: float = 0.90
    near_target_threshold: float = 0.80
    resistance_increment: float = 0.5
    duration_increment_minutes: int = 2
    max_resistance_level: float = 9
    max_duration_minutes: int = 30
    evaluation_window_days: int = 7
    plateau_min_sessions: int = 5
    plateau_improvement_threshold: float = 0.05
    default_duration_target_minutes: float = 15
    default_power_target: float = 30


def _default_rebaseline_days() -> int:
    return settings.setback_rebaseline_days


@dataclass(frozen=True)
class SetbackConfig:
    minor_decline: float = 0.15
    performance_decline_threshold: float = 0.20
    major_decline: float = 0.30
    missed_sessions_days_threshold: int = 3
    moderate_missed_days: int = 5
    major_missed_days: int = 7
    bilateral_imbalance_threshold: float = 0.25
    goal_reduction_percent: float = 0.25
    rebaseline_after_days: int = field(default_factory=_default_rebaseline_days)
    detection_window_days: int = 14
    recovery_window_days: int = 5
    recovery_power_ratio: float = 0.85


# ============================================================================
# PURE RULES
# ============================================================================


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def classify_performance_decline(
    sessions: list[ExerciseSession], config: SetbackConfig
) -> tuple[SetbackSeverity, float] | None:
    """Recent 3 sessions vs the oldest 4 in the window (sessions newest first)."""
    if len(sessions) < 4:
        return None
    recent = _mean([s.avg_power or 0 for s in sessions[:3]])
    baseline = _mean([s.avg_power or 0 for s in sessions[-4:]])
    if baseline <= 0:
        return None

    decline = (baseline - recent) / baseline
    if decline >= config.major_decline:
        return SetbackSeverity.MAJOR, decline
    if decline >= config.performance_decline_threshold:
        return SetbackSeverity.MODERATE, decline
    if decline >= config.minor_decline:
        return SetbackSeverity.MINOR, decline
    return None


def classify_adherence_drop(
    sessions: list[ExerciseSession], now: datetime, config: SetbackConfig
) -> tuple[SetbackSeverity, int] | None:
    """Whole days since the newest session; no sessions at all counts as a week."""
    if not sessions:
        days = config.major_missed_days
    else:
        days = math.floor((now - ensure_utc(sessions[0].start_time)).total_seconds() / 86400)

    if days >= config.major_missed_days:
        return SetbackSeverity.MAJOR, days
    if days >= config.moderate_missed_days:
        return SetbackSeverity.MODERATE, days
    if days >= config.missed_sessions_days_threshold:
        return SetbackSeverity.MINOR, days
    return None


def check_bilateral_setback(sessions: list[ExerciseSession]) -> tuple[SetbackSeverity, float] | None:
    """Bilateral-imbalance setback hook.

    Always reports no setback. Session rows carry no per-leg force data yet,
    and the imbalance rule needs clinical sign-off before it is enabled.
    """
    return None


def create_recovery_plan(severity: SetbackSeverity, config: SetbackConfig) -> SetbackRecoveryPlan:
    return SetbackRecoveryPlan(
        goal_reduction=config.goal_reduction_percent * SEVERITY_MULTIPLIERS[severity],
        encouragement_frequency=ENCOURAGEMENT_FREQUENCY[severity],
        rebaseline_after_days=config.rebaseline_after_days,
        clinician_consultation_needed=severity == SetbackSeverity.MAJOR,
    )


def detect_setback(sessions: list[ExerciseSession], now: datetime, config: SetbackConfig) -> SetbackDetection:
    """First triggered setback wins: performance, then adherence, then bilateral."""
    decline = classify_performance_decline(sessions, config)
    if decline is not None:
        severity, percent = decline
        return SetbackDetection(
            detected=True,
            type=SetbackType.PERFORMANCE_DECLINE,
            severity=severity,
            metrics=SetbackMetrics(performance_decline_percent=percent),
            recommendation=create_recovery_plan(severity, config),
        )

    adherence = classify_adherence_drop(sessions, now, config)
    if adherence is not None:
        severity, days = adherence
        return SetbackDetection(
            detected=True,
            type=SetbackType.ADHERENCE_DROP,
            severity=severity,
            metrics=SetbackMetrics(missed_sessions_days=days),
            recommendation=create_recovery_plan(severity, config),
        )

    bilateral = check_bilateral_setback(sessions)
    if bilateral is not None:
        severity, percent = bilateral
        return SetbackDetection(
            detected=True,
            type=SetbackType.BILATERAL_IMBALANCE,
            severity=severity,
            metrics=SetbackMetrics(bilateral_imbalance_percent=percent),
            recommendation=create_recovery_plan(severity, config),
        )

    return SetbackDetection(detected=False)


def calculate_progression_confidence(session_count: int, duration_achievement: float, power_achievement: float) -> float:
    confidence = min(session_count / 5, 1) * 0.4
    if duration_achievement >= 0.9:
        confidence += 0.3
    elif duration_achievement >= 0.8:
        confidence += 0.2
    if power_achievement >= 0.9:
        confidence += 0.3
    elif power_achievement >= 0.8:
        confidence += 0.2
    return min(confidence, 1.0)


def detect_plateau(sessions: list[ExerciseSession], config: ProgressionConfig) -> str | None:
    """Plateau description, or None. Sessions newest first."""
    if len(sessions) < config.plateau_min_sessions:
        return None
    chronological = list(reversed(sessions))
    power_trend = normalized_trend([s.avg_power or 0 for s in chronological])
    duration_trend = normalized_trend([s.duration_seconds or 0 for s in chronological])

    if (
        abs(power_trend) < config.plateau_improvement_threshold
        and abs(duration_trend) < config.plateau_improvement_threshold
    ):
        return f"Performance plateaued. Power trend: {power_trend * 100:.1f}%, Duration trend: {duration_trend * 100:.1f}%"
    return None


def evaluate_progression_rules(
    sessions: list[ExerciseSession],
    goals: list[PatientGoal],
    progression_level: int,
    config: ProgressionConfig,
) -> ProgressionCheck:
    """Decide the next progression step from the newest sessions and active goals."""
    duration_goal = next((g for g in goals if g.goal_type == "duration"), None)
    power_goal = next((g for g in goals if g.goal_type == "power"), None)
    duration_target_minutes = (duration_goal.target_value if duration_goal else 0) or config.default_duration_target_minutes
    power_target = (power_goal.target_value if power_goal else 0) or config.default_power_target

    recent = sessions[: min(len(sessions), config.consecutive_sessions_required)]
    duration_achievements = [
        (s.duration_seconds or 0) / (s.target_duration_seconds or duration_target_minutes * 60) for s in recent
    ]
    power_achievements = [(s.avg_power or 0) / power_target for s in recent]
    avg_duration = _mean(duration_achievements)
    avg_power = _mean(power_achievements)
    threshold = config.target_achievement_threshold
    all_meet_duration = all(a >= threshold for a in duration_achievements)

    parameter = None
    current_value: float = progression_level
    new_value = None
    should_progress = False

    if all_meet_duration and avg_duration >= threshold:
        if avg_power >= 1.0:
            parameter = ProgressionParameter.RESISTANCE
            resistances = [r for r in ((s.resistance or DEFAULT_RESISTANCE) for s in sessions) if r > 0]
            current_value = _mean(resistances) if resistances else DEFAULT_RESISTANCE
            new_value = min(current_value + config.resistance_increment, config.max_resistance_level)
            should_progress = current_value < config.max_resistance_level
            reason = (
                f"Consistently meeting duration ({round_int(avg_duration * 100)}%) "
                f"and power ({round_int(avg_power * 100)}%) targets."
            )
        else:
            parameter = ProgressionParameter.DURATION
            current_value = round_int(_mean([(s.duration_seconds or 0) / 60 for s in recent]))
            new_value = min(current_value + config.duration_increment_minutes, config.max_duration_minutes)
            should_progress = current_value < config.max_duration_minutes
            reason = (
                f"Meeting duration targets ({round_int(avg_duration * 100)}%). "
                f"Increasing duration to build endurance."
            )
    elif avg_duration >= config.near_target_threshold:
        reason = (
            f"Progress improving. Duration achievement: {round_int(avg_duration * 100)}%. Continue current level."
        )
    else:
        reason = (
            f"Not yet meeting targets. Duration: {round_int(avg_duration * 100)}%, "
            f"Power: {round_int(avg_power * 100)}%. Maintain current level."
        )

    return ProgressionCheck(
        should_progress=should_progress,
        direction=ProgressionDirection.INCREASE if should_progress else ProgressionDirection.MAINTAIN,
        parameter=parameter,
        current_value=current_value,
        new_value=new_value,
        reason=reason,
        confidence=calculate_progression_confidence(len(recent), avg_duration, avg_power),
    )


# ============================================================================
# ENGINE
# ============================================================================


class ProgressiveOverloadEngine:
    def __init__(
        self,
        progression_config: ProgressionConfig | None = None,
        setback_config: SetbackConfig | None = None,
    ):
        self.progression_config = progression_config or ProgressionConfig()
        self.setback_config = setback_config or SetbackConfig()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    def _recent_sessions(db: Session, patient_id: str, days: int, now: datetime) -> list[ExerciseSession]:
        cutoff = now - timedelta(days=days)
        return list(
            db.execute(
                select(ExerciseSession)
                .where(ExerciseSession.patient_id == patient_id, ExerciseSession.start_time >= cutoff)
                .order_by(ExerciseSession.start_time.desc())
            )
            .scalars()
            .all()
        )

    @staticmethod
    def _active_goals(db: Session, patient_id: str, goal_type: str | None = None) -> list[PatientGoal]:
        stmt = select(PatientGoal).where(PatientGoal.patient_id == patient_id, PatientGoal.is_active.is_(True))
        if goal_type is not None:
            stmt = stmt.where(PatientGoal.goal_type == goal_type)
        return list(db.execute(stmt).scalars().all())

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate_progression(self, patient_id: str, now: datetime | None = None) -> ProgressionCheck:
        """Run the setback, recovery and progression checks for one patient.

        Never raises; failures produce a maintain result with zero confidence.
        """
        now = now or utcnow()
        try:
            with patient_lock(patient_id), get_session() as db:
                return self._evaluate(db, patient_id, now)
        except Exception as e:
            logger.error(f"[PROGRESSION] Evaluation failed for patient {patient_id}: {e}")
            logger.exception("Full exception traceback:")
            return ProgressionCheck(
                should_progress=False,
                direction=ProgressionDirection.MAINTAIN,
                current_value=0,
                reason=f"Error: {e}",
                confidence=0,
            )

    def _evaluate(self, db: Session, patient_id: str, now: datetime) -> ProgressionCheck:
        profile = get_or_create_profile(db, patient_id)

        if not profile.in_setback_recovery:
            setback = detect_setback(
                self._recent_sessions(db, patient_id, self.setback_config.detection_window_days, now),
                now,
                self.setback_config,
            )
            if setback.detected:
                self._enter_recovery(db, profile, setback, now)
                return ProgressionCheck(
                    should_progress=False,
                    direction=ProgressionDirection.DECREASE,
                    current_value=profile.progression_level,
                    reason=f"Setback detected: {setback.type}. Initiating recovery protocol.",
                    confidence=0.9,
                )

        if profile.in_setback_recovery and not self._complete_recovery_if_ready(db, profile, now):
            return ProgressionCheck(
                should_progress=False,
                direction=ProgressionDirection.MAINTAIN,
                current_value=profile.progression_level,
                reason="Patient in setback recovery mode. Monitoring for improvement.",
                confidence=0.8,
            )

        config = self.progression_config
        sessions = self._recent_sessions(db, patient_id, config.evaluation_window_days, now)
        if len(sessions) < config.consecutive_sessions_required:
            return ProgressionCheck(
                should_progress=False,
                direction=ProgressionDirection.MAINTAIN,
                current_value=profile.progression_level,
                reason=(
                    f"Need {config.consecutive_sessions_required} sessions for progression evaluation. "
                    f"Have {len(sessions)}."
                ),
                confidence=0.5,
            )

        plateau = detect_plateau(sessions, config)
        if plateau is not None:
            add_alert(
                db,
                patient_id,
                AlertType.PLATEAU_DETECTED,
                AlertPriority.MEDIUM,
                f"Performance plateau detected. {plateau} Consider workout variation.",
                action_required="Review protocol and consider modifications",
                metadata={"reason": plateau},
            )
            return ProgressionCheck(
                should_progress=False,
                direction=ProgressionDirection.MAINTAIN,
                current_value=profile.progression_level,
                reason=f"Plateau detected. {plateau} Recommend varying workout type or consulting with provider.",
                confidence=0.75,
            )

        check = evaluate_progression_rules(
            sessions, self._active_goals(db, patient_id), profile.progression_level, config
        )
        if check.should_progress:
            self._apply_progression(db, profile, check, now)
        return check

    def check_for_setback(self, patient_id: str, now: datetime | None = None) -> SetbackDetection:
        """Setback detection without side effects.

        A patient with no personalization profile yet is treated as not in recovery.
        """
        now = now or utcnow()
        try:
            with get_session() as db:
                profile = find_profile(db, patient_id)
                if profile is not None and profile.in_setback_recovery:
                    return SetbackDetection(detected=False)
                sessions = self._recent_sessions(db, patient_id, self.setback_config.detection_window_days, now)
                return detect_setback(sessions, now, self.setback_config)
        except Exception as e:
            logger.error(f"[PROGRESSION] Setback check failed for patient {patient_id}: {e}")
            return SetbackDetection(detected=False)

    # ------------------------------------------------------------------
    # Setback recovery
    # ------------------------------------------------------------------

    def _enter_recovery(
        self,
        db: Session,
        profile: PersonalizationProfile,
        setback: SetbackDetection,
        now: datetime,
    ) -> None:
        plan = setback.recommendation
        profile.in_setback_recovery = True
        profile.setback_start_date = now
        profile.pre_setback_level = profile.progression_level
        profile.progression_level = max(1, (profile.progression_level or 1) - 1)
        profile.updated_at = now

        if plan.goal_reduction > 0:
            for goal in self._active_goals(db, profile.patient_id):
                if goal.pre_setback_target is None:
                    goal.pre_setback_target = goal.target_value
                goal.target_value = goal.target_value * (1 - plan.goal_reduction)
                goal.subtitle = RECOVERY_SUBTITLE
                goal.updated_at = now

        add_alert(
            db,
            profile.patient_id,
            AlertType.SETBACK_DETECTED,
            AlertPriority.HIGH if plan.clinician_consultation_needed else AlertPriority.MEDIUM,
            f"Setback detected: {setback.type}. {setback.severity} severity. Recovery protocol initiated.",
            action_required=(
                "Clinician consultation recommended" if plan.clinician_consultation_needed else "Monitor patient progress"
            ),
            metadata={
                "type": str(setback.type),
                "severity": str(setback.severity),
                "metrics": setback.metrics.model_dump(exclude_none=True),
                "recovery_plan": plan.model_dump(),
            },
        )
        logger.info(
            f"[PROGRESSION] Setback recovery started for patient {profile.patient_id}: "
            f"{setback.type} ({setback.severity}), level {profile.pre_setback_level} -> {profile.progression_level}"
        )

    def _complete_recovery_if_ready(self, db: Session, profile: PersonalizationProfile, now: datetime) -> bool:
        """Leave recovery once enough time has passed and power is back near target."""
        config = self.setback_config
        if profile.setback_start_date is not None:
            days_in_recovery = math.floor((now - ensure_utc(profile.setback_start_date)).total_seconds() / 86400)
            if days_in_recovery < config.rebaseline_after_days:
                return False

            sessions = self._recent_sessions(db, profile.patient_id, config.recovery_window_days, now)
            if len(sessions) < 3:
                return False

            current_power = _mean([s.avg_power or 0 for s in sessions])
            power_goals = self._active_goals(db, profile.patient_id, "power")
            target_power = (
                (power_goals[0].pre_setback_target or power_goals[0].target_value) if power_goals else 0
            ) or self.progression_config.default_power_target
            if current_power < target_power * config.recovery_power_ratio:
                return False
        else:
            current_power, target_power = 0.0, 0.0

        profile.in_setback_recovery = False
        profile.setback_start_date = None
        profile.updated_at = now
        for goal in self._active_goals(db, profile.patient_id):
            if goal.pre_setback_target is not None:
                goal.target_value = goal.pre_setback_target
                goal.pre_setback_target = None
            goal.subtitle = None
            goal.updated_at = now

        if target_power:
            add_alert(
                db,
                profile.patient_id,
                AlertType.SETBACK_RECOVERED,
                AlertPriority.LOW,
                f"Patient has recovered from setback. Performance restored to "
                f"{round_int(current_power / target_power * 100)}% of target.",
                action_required="Consider resuming normal progression",
            )
        logger.info(f"[PROGRESSION] Patient {profile.patient_id} completed setback recovery")
        return True

    # ------------------------------------------------------------------
    # Progression
    # ------------------------------------------------------------------

    def _apply_progression(
        self,
        db: Session,
        profile: PersonalizationProfile,
        check: ProgressionCheck,
        now: datetime,
    ) -> None:
        profile.progression_level = (profile.progression_level or 1) + 1
        profile.days_at_current_level = 0
        profile.last_progression_date = now
        profile.consecutive_successful_sessions = 0
        profile.updated_at = now

        if check.parameter is not None and check.new_value is not None:
            for goal in self._active_goals(db, profile.patient_id, str(check.parameter)):
                goal.target_value = check.new_value
                goal.ai_recommended = True
                goal.updated_at = now

        add_alert(
            db,
            profile.patient_id,
            AlertType.PROGRESSION_APPLIED,
            AlertPriority.LOW,
            f"Patient progressed: {check.parameter} increased from {check.current_value} "
            f"to {check.new_value}. {check.reason}",
            action_required="Review and adjust if needed",
            metadata={
                "parameter": str(check.parameter),
                "from_value": check.current_value,
                "to_value": check.new_value,
                "confidence": check.confidence,
            },
        )
        logger.info(
            f"[PROGRESSION] Patient {profile.patient_id} progressed to level {profile.progression_level}: "
            f"{check.parameter} {check.current_value} -> {check.new_value}"
        )

    # ------------------------------------------------------------------
    # Session feedback and prediction
    # ------------------------------------------------------------------

    def update_from_session(self, patient_id: str, outcome: SessionOutcome) -> bool:
        """Fold a finished session into the personalization profile.

        Updates the time-of-day power averages, the best performance window
        and the consecutive-success counter.
        """
        now = outcome.completed_at or utcnow()
        try:
            with patient_lock(patient_id), get_session() as db:
                profile = get_or_create_profile(db, patient_id)

                window_field = TIME_OF_DAY_FIELDS.get(outcome.time_of_day.lower())
                if window_field is not None:
                    current = getattr(profile, window_field) or outcome.avg_power
                    setattr(
                        profile,
                        window_field,
                        current * (1 - POWER_EMA_ALPHA) + outcome.avg_power * POWER_EMA_ALPHA,
                    )
                    window_powers = {
                        window: getattr(profile, attr) or 0 for window, attr in TIME_OF_DAY_FIELDS.items()
                    }
                    profile.best_performance_window = max(window_powers, key=window_powers.get)
                else:
                    logger.warning(f"[PROGRESSION] Unknown time of day '{outcome.time_of_day}' for patient {patient_id}")

                if outcome.target_achieved:
                    profile.consecutive_successful_sessions = (profile.consecutive_successful_sessions or 0) + 1
                else:
                    profile.consecutive_successful_sessions = 0
                profile.updated_at = now
        except Exception as e:
            logger.error(f"[PROGRESSION] Failed to update personalization profile for patient {patient_id}: {e}")
            return False

        logger.debug(f"[PROGRESSION] Updated personalization profile for patient {patient_id}")
        return True

    def predict_performance(
        self,
        patient_id: str,
        days_ahead: int = 14,
        now: datetime | None = None,
    ) -> PerformancePrediction:
        """Project power forward from the last 14 days of sessions.

        Needs at least 5 sessions. The band is +/- 1.96 standard deviations,
        widening with sqrt(1 + day / 7).
        """
        now = now or utcnow()
        try:
            with get_session() as db:
                sessions = self._recent_sessions(db, patient_id, 14, now)
                powers = [s.avg_power or 0 for s in reversed(sessions)]
        except Exception as e:
            logger.error(f"[PROGRESSION] Failed to load sessions for prediction (patient {patient_id}): {e}")
            return PerformancePrediction()

        if len(powers) < 5:
            return PerformancePrediction()

        trend = normalized_trend(powers)
        current = powers[-1]
        std_dev = population_std(powers)

        prediction = PerformancePrediction()
        for day in range(days_ahead + 1):
            predicted = current * (1 + trend * day)
            uncertainty = std_dev * math.sqrt(1 + day / 7)
            prediction.dates.append((now + timedelta(days=day)).date().isoformat())
            prediction.predicted.append(round_half_up(predicted, 1))
            prediction.lower_bound.append(round_half_up(predicted - 1.96 * uncertainty, 1))
            prediction.upper_bound.append(round_half_up(predicted + 1.96 * uncertainty, 1))

        prediction.confidence = max(0.0, min(1.0, 1 - std_dev / current)) if current > 0 else 0.0
        return prediction
