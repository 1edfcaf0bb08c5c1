"""Real-time fatigue detection.

Each live exercise session gets an explicit FatigueSession context from
FatigueDetector.open_session(). The caller feeds samples through
process_metric() and releases the context with close_session() (or by
leaving a `with` block). A context buffers at most 360 samples, one hour at
the usual 10 s cadence.

Detection looks at the trailing 120 s window, measured back from the newest
sample, and needs at least 12 samples in it. Four markers are evaluated:

- power decline: first quarter vs last quarter mean power
- cadence irregularity: coefficient of variation of rpm
- bilateral coordination loss: change in left/right force asymmetry
- force pattern degradation: mild power decline plus mild cadence
  irregularity, or erratic power (CV > 0.35)
"""

from __future__ import annotations

import dataclasses
import threading
from collections import deque
from dataclasses import dataclass
from datetime import datetime

import numpy as np
from loguru import logger

from mobility_engine.alerts.repository import AlertPriority, AlertType, add_alert
from mobility_engine.core.clock import utcnow
from mobility_engine.core.rounding import round_int
from mobility_engine.db.models import FatigueEvent
from mobility_engine.db.session import get_session
from mobility_engine.personalization.profile_repository import find_profile, get_or_create_profile
from mobility_engine.personalization.schemas import (
    FatigueAction,
    FatigueDetectionResult,
    FatigueMarkers,
    FatigueMetrics,
    FatigueSeverity,
    FatigueType,
)

BUFFER_SIZE = 360
ERRATIC_POWER_CV = 0.35
MIN_BILATERAL_SAMPLES = 6
MIN_QUARTER = 3

ONSET_EMA_ALPHA = 0.3
OPTIMAL_DURATION_RATIO = 0.85
DEFAULT_DECAY_RATE = 0.1
SLOW_DECAY_RATE = 0.05
FAST_DECAY_RATE = 0.15
SENSITIVE_FACTOR = 0.85
TOLERANT_FACTOR = 1.15
MAX_RESISTANCE_REDUCTION = 3.0

FATIGUE_TYPE_MESSAGES: dict[FatigueType, str] = {
    FatigueType.POWER_DECLINE: "significant power output decline",
    FatigueType.CADENCE_IRREGULAR: "irregular pedaling cadence",
    FatigueType.FORCE_DEGRADATION: "deteriorating force application pattern",
    FatigueType.BILATERAL_LOSS: "loss of bilateral coordination",
}


@dataclass(frozen=True)
class FatigueThresholds:
    mild_power_decline: float = 0.15
    moderate_power_decline: float = 0.20
    severe_power_decline: float = 0.30

    mild_cadence_cv: float = 0.20
    moderate_cadence_cv: float = 0.30
    severe_cadence_cv: float = 0.40

    mild_asymmetry_change: float = 0.10
    moderate_asymmetry_change: float = 0.15
    severe_asymmetry_change: float = 0.25

    analysis_window_seconds: int = 120
    minimum_data_points: int = 12

    def with_power_sensitivity(self, factor: float) -> FatigueThresholds:
        return dataclasses.replace(
            self,
            mild_power_decline=self.mild_power_decline * factor,
            moderate_power_decline=self.moderate_power_decline * factor,
            severe_power_decline=self.severe_power_decline * factor,
        )


@dataclass(frozen=True)
class MetricSample:
    """One live reading from the bike."""

    timestamp: datetime
    power: float
    rpm: float
    left_force: float | None = None
    right_force: float | None = None
    heart_rate: float | None = None

    @property
    def is_bilateral(self) -> bool:
        return self.left_force is not None and self.right_force is not None


class FatigueSession:
    """Sample buffer for one live session.

    Only the thread holding `lock` may touch the buffer. Use as a context
    manager to guarantee the buffer is released.
    """

    def __init__(
        self,
        detector: FatigueDetector,
        session_id: str,
        patient_id: str,
        thresholds: FatigueThresholds,
    ):
        self.session_id = session_id
        self.patient_id = patient_id
        self.thresholds = thresholds
        self.samples: deque[MetricSample] = deque(maxlen=BUFFER_SIZE)
        self.started_at: datetime | None = None
        self.closed = False
        self.lock = threading.Lock()
        self._detector = detector

    def __enter__(self) -> FatigueSession:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._detector.close_session(self)

    def add(self, sample: MetricSample) -> None:
        if self.started_at is None:
            self.started_at = sample.timestamp
        self.samples.append(sample)

    def recent(self, window_seconds: int) -> list[MetricSample]:
        """Samples within window_seconds of the newest sample."""
        if not self.samples:
            return []
        newest = self.samples[-1].timestamp
        return [s for s in self.samples if (newest - s.timestamp).total_seconds() <= window_seconds]

    def elapsed_minutes(self) -> float:
        if self.started_at is None or not self.samples:
            return 0.0
        return (self.samples[-1].timestamp - self.started_at).total_seconds() / 60


# ============================================================================
# MARKER CALCULATIONS
# ============================================================================


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return float(np.mean(values))


def _coefficient_of_variation(values: list[float]) -> float:
    mean = _mean(values)
    if mean <= 0:
        return 0.0
    return float(np.std(values)) / mean


def calculate_power_decline(samples: list[MetricSample]) -> float:
    """Relative drop from the first-quarter to the last-quarter mean power, floored at 0."""
    if len(samples) < 2:
        return 0.0
    quarter = len(samples) // 4
    baseline = _mean([s.power for s in samples[: max(quarter, MIN_QUARTER)]])
    current = _mean([s.power for s in samples[-quarter:]])
    if baseline <= 0:
        return 0.0
    return max(0.0, (baseline - current) / baseline)


def calculate_cadence_cv(samples: list[MetricSample]) -> float:
    rpms = [s.rpm for s in samples if s.rpm > 0]
    if len(rpms) < 3:
        return 0.0
    return _coefficient_of_variation(rpms)


def _asymmetry(left: float, right: float) -> float:
    max_force = max(left, right)
    if max_force <= 0:
        return 0.0
    return abs(left - right) / max_force


def calculate_asymmetry_change(samples: list[MetricSample]) -> float | None:
    """Change in mean left/right asymmetry, first quarter vs last quarter.

    None when fewer than 6 samples carry both forces.
    """
    bilateral = [s for s in samples if s.is_bilateral]
    if len(bilateral) < MIN_BILATERAL_SAMPLES:
        return None
    quarter = len(bilateral) // 4
    initial = _mean([_asymmetry(s.left_force, s.right_force) for s in bilateral[: max(quarter, MIN_QUARTER)]])
    current = _mean([_asymmetry(s.left_force, s.right_force) for s in bilateral[-quarter:]])
    return abs(current - initial)


def detect_force_pattern_degradation(
    samples: list[MetricSample],
    power_decline: float,
    cadence_cv: float,
    thresholds: FatigueThresholds,
) -> bool:
    if power_decline >= thresholds.mild_power_decline and cadence_cv >= thresholds.mild_cadence_cv:
        return True
    powers = [s.power for s in samples if s.power > 0]
    if len(powers) >= 6:
        return _coefficient_of_variation(powers) > ERRATIC_POWER_CV
    return False


def calculate_resistance_reduction(power_decline: float, marker_count: int) -> float:
    """Resistance levels to drop: 1, 1.5 or 2 by decline, +0.5 with 3+ markers, at most 3."""
    if power_decline >= 0.25:
        reduction = 2.0
    elif power_decline >= 0.20:
        reduction = 1.5
    else:
        reduction = 1.0
    if marker_count >= 3:
        reduction += 0.5
    return min(reduction, MAX_RESISTANCE_REDUCTION)


def no_fatigue_result() -> FatigueDetectionResult:
    return FatigueDetectionResult(detected=False)


def detect_fatigue(samples: list[MetricSample], thresholds: FatigueThresholds) -> FatigueDetectionResult:
    """Classify a window of samples. Pure; persistence happens in FatigueDetector."""
    if len(samples) < thresholds.minimum_data_points:
        return no_fatigue_result()

    power_decline = calculate_power_decline(samples)
    cadence_cv = calculate_cadence_cv(samples)
    asymmetry_change = calculate_asymmetry_change(samples)

    markers = FatigueMarkers(
        power_decline=power_decline >= thresholds.moderate_power_decline,
        cadence_irregularity=cadence_cv >= thresholds.moderate_cadence_cv,
        bilateral_coordination_loss=(
            asymmetry_change is not None and asymmetry_change >= thresholds.moderate_asymmetry_change
        ),
        force_pattern_degradation=detect_force_pattern_degradation(samples, power_decline, cadence_cv, thresholds),
    )
    marker_count = markers.count()
    if marker_count == 0:
        return no_fatigue_result()

    if markers.bilateral_coordination_loss:
        fatigue_type = FatigueType.BILATERAL_LOSS
    elif markers.cadence_irregularity and not markers.power_decline:
        fatigue_type = FatigueType.CADENCE_IRREGULAR
    elif markers.force_pattern_degradation:
        fatigue_type = FatigueType.FORCE_DEGRADATION
    else:
        fatigue_type = FatigueType.POWER_DECLINE

    if marker_count >= 3 or power_decline >= thresholds.severe_power_decline:
        severity = FatigueSeverity.SEVERE
    elif marker_count >= 2 or power_decline >= thresholds.moderate_power_decline:
        severity = FatigueSeverity.MODERATE
    else:
        severity = FatigueSeverity.MILD

    resistance_reduction = None
    if severity == FatigueSeverity.SEVERE:
        action = FatigueAction.SESSION_ENDED
    elif severity == FatigueSeverity.MODERATE:
        action = FatigueAction.RESISTANCE_REDUCED
        resistance_reduction = calculate_resistance_reduction(power_decline, marker_count)
    else:
        action = FatigueAction.ALERT_SENT

    return FatigueDetectionResult(
        detected=True,
        type=fatigue_type,
        severity=severity,
        markers=markers,
        metrics=FatigueMetrics(
            power_decline_percent=round_int(power_decline * 100),
            cadence_coefficient_variation=round_int(cadence_cv * 100),
            bilateral_asymmetry_change=round_int(asymmetry_change * 100) if asymmetry_change is not None else None,
        ),
        recommended_action=action,
        resistance_reduction=resistance_reduction,
    )


def fatigue_alert_message(severity: FatigueSeverity, fatigue_type: FatigueType) -> str:
    prefix = "URGENT: " if severity == FatigueSeverity.SEVERE else ""
    advice = "Recommend ending session." if severity == FatigueSeverity.SEVERE else "Consider reducing resistance."
    return (
        f"{prefix}Patient showing {FATIGUE_TYPE_MESSAGES[fatigue_type]}. "
        f"Fatigue severity: {severity}. {advice}"
    )


# ============================================================================
# DETECTOR
# ============================================================================


class FatigueDetector:
    """Owns the open fatigue sessions and persists detections."""

    def __init__(self, thresholds: FatigueThresholds | None = None):
        self.thresholds = thresholds or FatigueThresholds()
        self._sessions: dict[str, FatigueSession] = {}
        self._registry_lock = threading.Lock()

    @property
    def open_session_count(self) -> int:
        with self._registry_lock:
            return len(self._sessions)

    def open_session(
        self,
        session_id: str,
        patient_id: str,
        thresholds: FatigueThresholds | None = None,
    ) -> FatigueSession:
        """Start buffering samples for a live session.

        Reopening a session that is still open returns the existing context.
        """
        with self._registry_lock:
            existing = self._sessions.get(session_id)
            if existing is not None:
                logger.debug(f"[FATIGUE] Session {session_id} already open")
                return existing
            ctx = FatigueSession(self, session_id, patient_id, thresholds or self.thresholds)
            self._sessions[session_id] = ctx
        logger.debug(f"[FATIGUE] Opened session {session_id} for patient {patient_id}")
        return ctx

    def close_session(self, ctx: FatigueSession) -> None:
        with self._registry_lock:
            if self._sessions.get(ctx.session_id) is ctx:
                del self._sessions[ctx.session_id]
        with ctx.lock:
            ctx.closed = True
            ctx.samples.clear()
        logger.debug(f"[FATIGUE] Closed session {ctx.session_id}")

    def process_metric(self, ctx: FatigueSession, sample: MetricSample) -> FatigueDetectionResult:
        """Buffer one sample and evaluate the trailing window.

        Never raises: computation and persistence errors are logged and the
        session carries on.
        """
        with ctx.lock:
            if ctx.closed:
                logger.warning(f"[FATIGUE] Sample for closed session {ctx.session_id} ignored")
                return no_fatigue_result()
            ctx.add(sample)
            if len(ctx.samples) < ctx.thresholds.minimum_data_points:
                return no_fatigue_result()

            try:
                result = detect_fatigue(ctx.recent(ctx.thresholds.analysis_window_seconds), ctx.thresholds)
            except Exception as e:
                logger.error(f"[FATIGUE] Detection failed for session {ctx.session_id} (patient {ctx.patient_id}): {e}")
                logger.exception("Full exception traceback:")
                return no_fatigue_result()

            if result.detected:
                recorded = self._record_detection(ctx, result, sample.timestamp)
                result = result.model_copy(update={"event_recorded": recorded})
            return result

    def _record_detection(self, ctx: FatigueSession, result: FatigueDetectionResult, detected_at: datetime) -> bool:
        """Persist the event, a severe-fatigue alert and the updated fatigue profile."""
        onset_minutes = ctx.elapsed_minutes()
        try:
            with get_session() as db:
                db.add(
                    FatigueEvent(
                        patient_id=ctx.patient_id,
                        session_id=ctx.session_id,
                        detected_at=detected_at,
                        fatigue_type=str(result.type),
                        severity=str(result.severity),
                        power_decline_percent=result.metrics.power_decline_percent,
                        cadence_variability_percent=result.metrics.cadence_coefficient_variation,
                        bilateral_asymmetry_change=result.metrics.bilateral_asymmetry_change,
                        action_taken=str(result.recommended_action),
                        resistance_reduction=result.resistance_reduction,
                        session_duration_at_detection_minutes=onset_minutes,
                    )
                )

                if result.severity == FatigueSeverity.SEVERE:
                    add_alert(
                        db,
                        ctx.patient_id,
                        AlertType.FATIGUE_DETECTED,
                        AlertPriority.HIGH,
                        fatigue_alert_message(result.severity, result.type),
                        action_required="Review patient status and consider ending session",
                        metadata={
                            "session_id": ctx.session_id,
                            "fatigue_type": str(result.type),
                            "severity": str(result.severity),
                        },
                    )

                if onset_minutes > 0:
                    profile = get_or_create_profile(db, ctx.patient_id)
                    current = profile.avg_fatigue_onset_minutes or onset_minutes
                    new_avg = current * (1 - ONSET_EMA_ALPHA) + onset_minutes * ONSET_EMA_ALPHA
                    profile.avg_fatigue_onset_minutes = new_avg
                    profile.fatigue_decay_rate = (result.metrics.power_decline_percent / 100) / onset_minutes
                    profile.optimal_session_duration = new_avg * OPTIMAL_DURATION_RATIO
                    profile.updated_at = utcnow()
        except Exception as e:
            logger.error(
                f"[FATIGUE] Failed to record {result.severity} {result.type} event "
                f"for session {ctx.session_id} (patient {ctx.patient_id}): {e}"
            )
            return False

        logger.info(
            f"[FATIGUE] {result.severity} {result.type} detected in session {ctx.session_id} "
            f"(patient {ctx.patient_id}), action={result.recommended_action}"
        )
        return True

    def personalized_thresholds(self, patient_id: str) -> FatigueThresholds:
        """Power-decline thresholds scaled to the patient's fatigue history.

        Slow decay (< 0.05 per minute) makes detection more sensitive (x0.85),
        fast decay (> 0.15) less so (x1.15). Patients without an onset history
        get the detector defaults.
        """
        try:
            with get_session() as db:
                profile = find_profile(db, patient_id)
                if profile is None or not profile.avg_fatigue_onset_minutes:
                    return self.thresholds
                rate = profile.fatigue_decay_rate or DEFAULT_DECAY_RATE
        except Exception as e:
            logger.error(f"[FATIGUE] Failed to load personalized thresholds for patient {patient_id}: {e}")
            return self.thresholds

        if rate < SLOW_DECAY_RATE:
            factor = SENSITIVE_FACTOR
        elif rate > FAST_DECAY_RATE:
            factor = TOLERANT_FACTOR
        else:
            return self.thresholds
        return self.thresholds.with_power_sensitivity(factor)
