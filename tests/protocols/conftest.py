"""Shared protocol fixtures."""

from datetime import datetime, timedelta, timezone

import pytest

from mobility_engine.db.models import ClinicalProtocol, ExerciseSession, ProtocolMatchingCriteria

KNEE_PHASES = [
    {
        "phase": "POD 0-2",
        "frequency": "BID",
        "duration": 10,
        "resistance": {"min": 2, "max": 3},
        "rpm": {"min": 20, "max": 30},
        "goals": "Early mobilization and ROM",
        "progressionCriteria": ["Pain < 5/10 during cycling", "Tolerates 10 minutes"],
        "monitoringParams": ["Pain level (0-10)", "Surgical site"],
        "stopCriteria": ["Pain > 7/10"],
    },
    {
        "phase": "POD 3-7",
        "frequency": "TID",
        "duration": 15,
        "resistance": {"min": 3, "max": 4},
        "rpm": {"min": 30, "max": 40},
        "goals": "Increase knee flexion",
        "progressionCriteria": ["Knee flexion > 90 degrees"],
    },
    {
        "phase": "Week 2+",
        "frequency": "TID",
        "duration": 20,
        "resistance": {"min": 4, "max": 6},
        "rpm": {"min": 40, "max": 50},
        "goals": "Strength and endurance",
    },
]


@pytest.fixture
def make_protocol(db_session):
    """Factory inserting a clinical protocol row (and optional matching criteria)."""

    def _make(
        protocol_id: str = "proto-tka",
        name: str = "Total Knee Arthroplasty Protocol",
        indication: str = "Total knee arthroplasty rehabilitation",
        diagnosis_codes: list[str] | None = None,
        contraindications: list[str] | None = None,
        phases: list[dict] | None = None,
        is_active: bool = True,
        criteria: dict | None = None,
    ) -> ClinicalProtocol:
        row = ClinicalProtocol(
            id=protocol_id,
            name=name,
            indication=indication,
            diagnosis_codes=diagnosis_codes if diagnosis_codes is not None else ["Z96.641", "Z96.652"],
            contraindications=contraindications if contraindications is not None else ["unstable fracture"],
            protocol_data={"phases": phases if phases is not None else KNEE_PHASES},
            is_active=is_active,
        )
        db_session.add(row)
        if criteria is not None:
            db_session.add(ProtocolMatchingCriteria(protocol_id=protocol_id, **criteria))
        db_session.flush()
        return row

    return _make


@pytest.fixture
def add_sessions(db_session):
    """Factory inserting completed exercise sessions, newest first."""

    def _add(patient_id: str, count: int, duration_seconds: int, avg_power: float = 30.0) -> None:
        base = datetime(2026, 3, 10, 9, 0, tzinfo=timezone.utc)
        for i in range(count):
            db_session.add(
                ExerciseSession(
                    patient_id=patient_id,
                    start_time=base - timedelta(hours=8 * i),
                    duration_seconds=duration_seconds,
                    avg_power=avg_power,
                )
            )
        db_session.flush()

    return _add
