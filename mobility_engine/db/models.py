from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Float, Index, Integer, String, Text, text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from mobility_engine.core.clock import ensure_utc


def _new_id() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored and returned in UTC.

    SQLite drops the offset on write and hands back naive values, so binds are
    converted to UTC and results are marked as UTC.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value).astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
        if value is None:
            return None
        return ensure_utc(value).astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""


class PatientProfile(Base):
    """Admitted patient clinical profile.

    Written by the intake layer; the engines only read it.
    """

    __tablename__ = "patient_profiles"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    age: Mapped[int] = mapped_column(Integer, nullable=False)
    sex: Mapped[str | None] = mapped_column(String, nullable=True)
    weight_kg: Mapped[float | None] = mapped_column(Float, nullable=True)
    height_cm: Mapped[float | None] = mapped_column(Float, nullable=True)
    level_of_care: Mapped[str] = mapped_column(String, nullable=False, default="ward")
    mobility_status: Mapped[str] = mapped_column(String, nullable=False, default="bedbound")
    cognitive_status: Mapped[str] = mapped_column(String, nullable=False, default="normal")
    baseline_function: Mapped[str | None] = mapped_column(String, nullable=True)
    admission_diagnosis: Mapped[str | None] = mapped_column(Text, nullable=True)
    comorbidities: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    medications: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)


class ExerciseSession(Base):
    """Completed bedside-cycling session.

    Recorded by the device ingestion layer. duration_seconds is the actual
    pedalling time; target_duration_seconds is the prescribed time if known.
    """

    __tablename__ = "exercise_sessions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    duration_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target_duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    avg_power: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_rpm: Mapped[float | None] = mapped_column(Float, nullable=True)
    resistance: Mapped[float | None] = mapped_column(Float, nullable=True)
    completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (Index("idx_exercise_sessions_patient_start", "patient_id", "start_time"),)


class RiskAssessment(Base):
    """Append-only record of one risk calculation.

    Each outcome column stores {probability, odds_ratio_vs_reference,
    risk_level, contributing_factors}.
    """

    __tablename__ = "risk_assessments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    deconditioning: Mapped[dict] = mapped_column(JSON, nullable=False)
    vte: Mapped[dict] = mapped_column(JSON, nullable=False)
    falls: Mapped[dict] = mapped_column(JSON, nullable=False)
    pressure: Mapped[dict] = mapped_column(JSON, nullable=False)
    mobility_recommendation: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    input_snapshot: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)


class ClinicalProtocol(Base):
    """Evidence-based multi-phase mobility protocol.

    protocol_data holds {"phases": [...]} with one entry per phase.
    """

    __tablename__ = "clinical_protocols"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String, nullable=False)
    indication: Mapped[str] = mapped_column(Text, nullable=False)
    contraindications: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    diagnosis_codes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    protocol_data: Mapped[dict] = mapped_column(JSON, nullable=False)
    evidence_citation: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)


class ProtocolMatchingCriteria(Base):
    """Optional eligibility constraints used when scoring a protocol."""

    __tablename__ = "protocol_matching_criteria"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    protocol_id: Mapped[str] = mapped_column(String, nullable=False, unique=True, index=True)
    min_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    max_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    required_mobility_levels: Mapped[list | None] = mapped_column(JSON, nullable=True)
    excluded_mobility_levels: Mapped[list | None] = mapped_column(JSON, nullable=True)
    max_fall_risk: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_deconditioning_risk: Mapped[float | None] = mapped_column(Float, nullable=True)


class PatientProtocolAssignment(Base):
    """Assignment of a patient to a protocol.

    At most one row per patient has status 'active'; the partial unique
    index enforces that on both PostgreSQL and SQLite.
    """

    __tablename__ = "patient_protocol_assignments"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    protocol_id: Mapped[str] = mapped_column(String, nullable=False)
    assigned_by: Mapped[str | None] = mapped_column(String, nullable=True)
    current_phase_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    progression_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completion_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index(
            "uq_patient_protocol_assignments_one_active",
            "patient_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )


class PersonalizationProfile(Base):
    """Per-patient progression, setback and fatigue state.

    One row per patient, created on first use.
    """

    __tablename__ = "patient_personalization_profiles"

    patient_id: Mapped[str] = mapped_column(String, primary_key=True)
    progression_level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    days_at_current_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_progression_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    consecutive_successful_sessions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Setback recovery
    in_setback_recovery: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    setback_start_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    pre_setback_level: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Fatigue profile
    avg_fatigue_onset_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)
    fatigue_decay_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    optimal_session_duration: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Circadian performance
    avg_morning_power: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_afternoon_power: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_evening_power: Mapped[float | None] = mapped_column(Float, nullable=True)
    best_performance_window: Mapped[str | None] = mapped_column(String, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now, onupdate=_now)


class PatientGoal(Base):
    """Patient exercise goal (duration, power, sessions...).

    pre_setback_target holds the target in force before a setback reduction
    so recovery can restore it exactly.
    """

    __tablename__ = "patient_goals"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    goal_type: Mapped[str] = mapped_column(String, nullable=False)
    target_value: Mapped[float] = mapped_column(Float, nullable=False)
    pre_setback_target: Mapped[float | None] = mapped_column(Float, nullable=True)
    current_value: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    unit: Mapped[str] = mapped_column(String, nullable=False)
    label: Mapped[str] = mapped_column(String, nullable=False)
    subtitle: Mapped[str | None] = mapped_column(String, nullable=True)
    period: Mapped[str] = mapped_column(String, nullable=False, default="session")
    ai_recommended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now, onupdate=_now)


class FatigueEvent(Base):
    """Append-only record of a detected fatigue episode."""

    __tablename__ = "fatigue_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    session_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    detected_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)
    fatigue_type: Mapped[str] = mapped_column(String, nullable=False)
    severity: Mapped[str] = mapped_column(String, nullable=False)
    power_decline_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    cadence_variability_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    bilateral_asymmetry_change: Mapped[float | None] = mapped_column(Float, nullable=True)
    action_taken: Mapped[str] = mapped_column(String, nullable=False)
    resistance_reduction: Mapped[float | None] = mapped_column(Float, nullable=True)
    session_duration_at_detection_minutes: Mapped[float | None] = mapped_column(Float, nullable=True)


class Alert(Base):
    """Clinician-facing alert.

    `metadata` is reserved on declarative classes, so the column is mapped
    as alert_metadata.
    """

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=_new_id)
    patient_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    priority: Mapped[str] = mapped_column(String, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    action_required: Mapped[str | None] = mapped_column(Text, nullable=True)
    alert_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    triggered_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=_now)

    __table_args__ = (Index("idx_alerts_patient_triggered", "patient_id", "triggered_at"),)
