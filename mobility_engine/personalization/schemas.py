"""Result schemas for fatigue detection and progressive overload."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class FatigueType(StrEnum):
    POWER_DECLINE = "power_decline"
    CADENCE_IRREGULAR = "cadence_irregular"
    FORCE_DEGRADATION = "force_degradation"
    BILATERAL_LOSS = "bilateral_loss"


class FatigueSeverity(StrEnum):
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"


class FatigueAction(StrEnum):
    RESISTANCE_REDUCED = "resistance_reduced"
    SESSION_ENDED = "session_ended"
    ALERT_SENT = "alert_sent"
    NONE = "none"


class FatigueMarkers(BaseModel):
    power_decline: bool = False
    cadence_irregularity: bool = False
    force_pattern_degradation: bool = False
    bilateral_coordination_loss: bool = False

    def count(self) -> int:
        return sum(
            (
                self.power_decline,
                self.cadence_irregularity,
                self.force_pattern_degradation,
                self.bilateral_coordination_loss,
            )
        )


class FatigueMetrics(BaseModel):
    power_decline_percent: int = 0
    cadence_coefficient_variation: int = 0
    bilateral_asymmetry_change: int | None = Field(
        default=None, description="Percentage points; None without enough bilateral samples"
    )


class FatigueDetectionResult(BaseModel):
    detected: bool
    type: FatigueType | None = None
    severity: FatigueSeverity | None = None
    markers: FatigueMarkers = Field(default_factory=FatigueMarkers)
    metrics: FatigueMetrics = Field(default_factory=FatigueMetrics)
    recommended_action: FatigueAction = FatigueAction.NONE
    resistance_reduction: float | None = None
    event_recorded: bool = Field(default=False, description="False when a detection could not be persisted")


class ProgressionParameter(StrEnum):
    RESISTANCE = "resistance"
    DURATION = "duration"


class ProgressionDirection(StrEnum):
    INCREASE = "increase"
    MAINTAIN = "maintain"
    DECREASE = "decrease"


class ProgressionCheck(BaseModel):
    should_progress: bool
    direction: ProgressionDirection
    parameter: ProgressionParameter | None = None
    current_value: float = 0
    new_value: float | None = None
    reason: str
    confidence: float = Field(..., ge=0, le=1)


class SetbackType(StrEnum):
    PERFORMANCE_DECLINE = "performance_decline"
    ADHERENCE_DROP = "adherence_drop"
    BILATERAL_IMBALANCE = "bilateral_imbalance"


class SetbackSeverity(StrEnum):
    MINOR = "minor"
    MODERATE = "moderate"
    MAJOR = "major"


class SetbackRecoveryPlan(BaseModel):
    goal_reduction: float = 0.0
    encouragement_frequency: str = "low"
    rebaseline_after_days: int = 7
    clinician_consultation_needed: bool = False


class SetbackMetrics(BaseModel):
    performance_decline_percent: float | None = None
    missed_sessions_days: int | None = None
    bilateral_imbalance_percent: float | None = None


class SetbackDetection(BaseModel):
    detected: bool
    type: SetbackType | None = None
    severity: SetbackSeverity | None = None
    metrics: SetbackMetrics = Field(default_factory=SetbackMetrics)
    recommendation: SetbackRecoveryPlan = Field(default_factory=SetbackRecoveryPlan)


class PerformancePrediction(BaseModel):
    """Projected daily power with a 95% band that widens over time."""

    dates: list[str] = Field(default_factory=list)
    predicted: list[float] = Field(default_factory=list)
    lower_bound: list[float] = Field(default_factory=list)
    upper_bound: list[float] = Field(default_factory=list)
    confidence: float = 0.0


class SessionOutcome(BaseModel):
    """Summary of a finished session used to update the personalization profile."""

    avg_power: float = Field(..., ge=0)
    duration_minutes: float = Field(..., ge=0)
    time_of_day: str = Field(..., description="morning, afternoon or evening")
    target_achieved: bool
    completed_at: datetime | None = None
