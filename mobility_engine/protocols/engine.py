"""Protocol assignment and phase progression.

Every mutation runs under the patient's lock and inside one database
transaction. Public functions never raise: lookups that miss return None
(or a negative check result) and failed writes return None/False, each
logged at the matching severity.
"""

from __future__ import annotations

from datetime import datetime

from loguru import logger
from sqlalchemy import select

from mobility_engine.core.clock import utcnow
from mobility_engine.core.locks import patient_lock
from mobility_engine.db.models import ExerciseSession, PatientProtocolAssignment
from mobility_engine.db.session import get_session
from mobility_engine.protocols import repository, state_machine
from mobility_engine.protocols.types import (
    AssignmentSnapshot,
    PhaseProgressionCheck,
    ProtocolDefinition,
    ProtocolPrescription,
)
from mobility_engine.state.errors import (
    InvalidTransitionError,
    MalformedProtocolError,
    NoActiveAssignmentError,
    NotFoundError,
)

PROGRESSION_SESSION_WINDOW = 5
PROGRESSION_MIN_SESSIONS = 3
PROGRESSION_DURATION_RATIO = 0.9

FREQUENCY_SESSIONS: dict[str, int] = {
    "qd": 1,
    "daily": 1,
    "once daily": 1,
    "bid": 2,
    "twice daily": 2,
    "tid": 3,
    "three times daily": 3,
    "qid": 4,
    "four times daily": 4,
}
DEFAULT_SESSIONS_PER_DAY = 3


def parse_frequency(frequency: str | None) -> int:
    """Sessions per day for a frequency code such as "BID" or "twice daily"."""
    if not frequency:
        return DEFAULT_SESSIONS_PER_DAY
    return FREQUENCY_SESSIONS.get(frequency.strip().lower(), DEFAULT_SESSIONS_PER_DAY)


# ============================================================================
# PROTOCOL LOOKUP
# ============================================================================


def list_protocols() -> list[ProtocolDefinition]:
    try:
        with get_session() as db:
            return repository.load_active_protocols(db)
    except Exception as e:
        logger.error(f"[PROTOCOL] Failed to load protocols: {e}")
        return []


def get_protocol(protocol_id: str) -> ProtocolDefinition | None:
    try:
        with get_session() as db:
            return repository.load_protocol(db, protocol_id)
    except NotFoundError:
        logger.debug(f"[PROTOCOL] Protocol {protocol_id} not found")
        return None
    except MalformedProtocolError as e:
        logger.error(f"[PROTOCOL] {e}")
        return None


def has_contraindication(protocol: ProtocolDefinition, comorbidities: list[str]) -> bool:
    lowered = [c.lower() for c in comorbidities]
    return any(ci.lower() in c for ci in protocol.contraindications for c in lowered)


def match_protocol(
    diagnosis: str,
    comorbidities: list[str] | None = None,
    diagnosis_codes: list[str] | None = None,
) -> ProtocolDefinition | None:
    """First non-contraindicated protocol by exact code, else by indication keyword.

    Keywords are indication words longer than three characters found in the
    diagnosis text.
    """
    comorbidities = comorbidities or []
    diagnosis_codes = diagnosis_codes or []
    protocols = list_protocols()

    if diagnosis_codes:
        for protocol in protocols:
            if any(code in protocol.diagnosis_codes for code in diagnosis_codes) and not has_contraindication(
                protocol, comorbidities
            ):
                logger.info(f"[PROTOCOL] Matched {protocol.name} by diagnosis code {diagnosis_codes[0]}")
                return protocol

    diagnosis_lower = (diagnosis or "").lower()
    for protocol in protocols:
        keywords = [word for word in protocol.indication.lower().split() if len(word) > 3]
        if any(keyword in diagnosis_lower for keyword in keywords) and not has_contraindication(
            protocol, comorbidities
        ):
            logger.info(f"[PROTOCOL] Matched {protocol.name} by indication keyword for diagnosis '{diagnosis}'")
            return protocol

    logger.warning(f"[PROTOCOL] No protocol matched diagnosis '{diagnosis}' (comorbidities={comorbidities})")
    return None


# ============================================================================
# ASSIGNMENT
# ============================================================================


def _resolve_start_phase(protocol: ProtocolDefinition, start_phase: int | str | None) -> int:
    if start_phase is None:
        return 0
    if isinstance(start_phase, int):
        return start_phase
    index = protocol.phase_index(start_phase)
    if index is None:
        raise InvalidTransitionError(f"Phase {start_phase!r} not in protocol {protocol.name}")
    return index


def assign_protocol(
    patient_id: str,
    protocol_id: str,
    assigned_by: str | None = None,
    start_phase: int | str | None = None,
    notes: str | None = None,
) -> AssignmentSnapshot | None:
    """Make protocol_id the patient's only active assignment.

    Any existing active assignment is discontinued in the same transaction
    as the insert.

    Args:
        patient_id: Patient ID
        protocol_id: Protocol to assign
        assigned_by: Clinician ID
        start_phase: Phase index or phase name (defaults to the first phase)
        notes: Free-text assignment notes

    Returns:
        The new assignment, or None if the protocol is missing, has no
        phases, or the write failed
    """
    now = utcnow()
    try:
        with patient_lock(patient_id), get_session() as db:
            protocol = repository.load_protocol(db, protocol_id)
            state = state_machine.start(_resolve_start_phase(protocol, start_phase), len(protocol.phases))

            existing = db.execute(
                select(PatientProtocolAssignment).where(
                    PatientProtocolAssignment.patient_id == patient_id,
                    PatientProtocolAssignment.status == state_machine.STATUS_ACTIVE,
                )
            ).scalars().all()
            for row in existing:
                ended = state_machine.discontinue(repository.snapshot(row).state)
                row.status, row.current_phase_index = state_machine.row_fields(ended, row.current_phase_index)
                logger.info(f"[PROTOCOL] Discontinued assignment {row.id} for patient {patient_id}")
            # Discontinuations must reach the database before the partial unique index sees the insert
            db.flush()

            status, phase_index = state_machine.row_fields(state)
            row = PatientProtocolAssignment(
                patient_id=patient_id,
                protocol_id=protocol_id,
                assigned_by=assigned_by,
                current_phase_index=phase_index,
                status=status,
                start_date=now,
                progression_date=now,
                notes=notes,
            )
            db.add(row)
            db.flush()
            assignment = repository.snapshot(row)
    except NotFoundError:
        logger.error(f"[PROTOCOL] Cannot assign: protocol {protocol_id} not found (patient {patient_id})")
        return None
    except (MalformedProtocolError, InvalidTransitionError) as e:
        logger.error(f"[PROTOCOL] Cannot assign protocol {protocol_id} to patient {patient_id}: {e}")
        return None
    except Exception as e:
        logger.error(f"[PROTOCOL] Failed to assign protocol {protocol_id} to patient {patient_id}: {e}")
        return None

    logger.info(
        f"[PROTOCOL] Assigned {protocol.name} to patient {patient_id} "
        f"at phase '{protocol.phases[phase_index].phase}' (by {assigned_by})"
    )
    return assignment


def get_patient_assignment(patient_id: str) -> AssignmentSnapshot | None:
    try:
        with get_session() as db:
            row = repository.find_active_assignment_row(db, patient_id)
            if row is None:
                logger.debug(f"[PROTOCOL] No active protocol for patient {patient_id}")
                return None
            return repository.snapshot(row)
    except Exception as e:
        logger.error(f"[PROTOCOL] Failed to load assignment for patient {patient_id}: {e}")
        return None


def _load_active(db, patient_id: str) -> tuple[PatientProtocolAssignment, ProtocolDefinition]:
    row = repository.find_active_assignment_row(db, patient_id)
    if row is None:
        raise NoActiveAssignmentError(f"No active protocol for patient {patient_id}")
    protocol = repository.load_protocol(db, row.protocol_id)
    if not 0 <= row.current_phase_index < len(protocol.phases):
        raise MalformedProtocolError(
            f"Assignment {row.id} points at phase {row.current_phase_index} "
            f"but {protocol.name} has {len(protocol.phases)} phases"
        )
    return row, protocol


def get_current_prescription(patient_id: str) -> ProtocolPrescription | None:
    """Prescription from the current phase of the patient's active protocol."""
    try:
        with get_session() as db:
            row, protocol = _load_active(db, patient_id)
            phase = protocol.phases[row.current_phase_index]
            return ProtocolPrescription(
                protocol_name=protocol.name,
                phase=phase.phase,
                phase_index=row.current_phase_index,
                frequency=phase.frequency,
                sessions_per_day=parse_frequency(phase.frequency),
                duration=phase.duration,
                resistance=phase.resistance,
                rpm=phase.rpm,
                goals=phase.goals,
                rationale=f"{protocol.name} - {phase.phase}: {phase.goals}",
                monitoring_params=list(phase.monitoring_params),
                stop_criteria=list(phase.stop_criteria),
            )
    except NotFoundError as e:
        logger.debug(f"[PROTOCOL] {e}")
        return None
    except MalformedProtocolError as e:
        logger.error(f"[PROTOCOL] {e}")
        return None
    except Exception as e:
        logger.error(f"[PROTOCOL] Failed to load prescription for patient {patient_id}: {e}")
        return None


# ============================================================================
# PHASE PROGRESSION
# ============================================================================


def _evaluate_phase_progression(db, patient_id: str) -> PhaseProgressionCheck:
    try:
        row, protocol = _load_active(db, patient_id)
    except NotFoundError as e:
        logger.debug(f"[PROTOCOL] {e}")
        return PhaseProgressionCheck(should_progress=False, reason="No active protocol")

    state = repository.snapshot(row).state
    phase = protocol.phases[row.current_phase_index]
    if state_machine.is_final_phase(state, len(protocol.phases)):
        return PhaseProgressionCheck(
            should_progress=False,
            current_phase=phase.phase,
            reason="Already in final phase",
            criteria=list(phase.progression_criteria),
        )
    next_phase = protocol.phases[row.current_phase_index + 1]

    sessions = db.execute(
        select(ExerciseSession)
        .where(ExerciseSession.patient_id == patient_id)
        .order_by(ExerciseSession.start_time.desc())
        .limit(PROGRESSION_SESSION_WINDOW)
    ).scalars().all()

    if len(sessions) < PROGRESSION_MIN_SESSIONS:
        return PhaseProgressionCheck(
            should_progress=False,
            current_phase=phase.phase,
            reason=f"Need more sessions to evaluate progression (minimum {PROGRESSION_MIN_SESSIONS})",
            criteria=list(phase.progression_criteria),
        )

    avg_duration = sum(s.duration_seconds or 0 for s in sessions) / len(sessions)
    avg_power = sum(s.avg_power or 0 for s in sessions) / len(sessions)
    target_duration = phase.duration * 60

    if avg_duration >= target_duration * PROGRESSION_DURATION_RATIO:
        logger.info(
            f"[PROTOCOL] Patient {patient_id} meets progression criteria: "
            f"{phase.phase} -> {next_phase.phase} (avg {round(avg_duration)}s vs target {target_duration}s)"
        )
        return PhaseProgressionCheck(
            should_progress=True,
            current_phase=phase.phase,
            next_phase=next_phase.phase,
            reason=(
                f"Patient consistently meeting duration targets "
                f"({round(avg_duration / 60)}min avg, {round(avg_power)}W avg)"
            ),
            criteria=list(phase.progression_criteria),
        )

    return PhaseProgressionCheck(
        should_progress=False,
        current_phase=phase.phase,
        reason=(
            f"Need more consistent performance "
            f"(current avg: {round(avg_duration / 60)}min, target: {phase.duration}min)"
        ),
        criteria=list(phase.progression_criteria),
    )


def check_progression_criteria(patient_id: str) -> PhaseProgressionCheck:
    """Whether the patient has earned the next protocol phase.

    Requires at least 3 of the last 5 sessions and an average duration of
    at least 90% of the phase's target duration.
    """
    try:
        with get_session() as db:
            return _evaluate_phase_progression(db, patient_id)
    except MalformedProtocolError as e:
        logger.error(f"[PROTOCOL] {e}")
        return PhaseProgressionCheck(should_progress=False, reason=f"Malformed protocol: {e}")
    except Exception as e:
        logger.error(f"[PROTOCOL] Failed to check progression criteria for patient {patient_id}: {e}")
        return PhaseProgressionCheck(should_progress=False, reason=f"Error: {e}")


def progress_to_next_phase(patient_id: str, now: datetime | None = None) -> bool:
    """Advance the active assignment one phase if the criteria are met."""
    now = now or utcnow()
    try:
        with patient_lock(patient_id), get_session() as db:
            check = _evaluate_phase_progression(db, patient_id)
            if not check.should_progress:
                logger.warning(f"[PROTOCOL] Cannot progress patient {patient_id}: {check.reason}")
                return False

            row, protocol = _load_active(db, patient_id)
            advanced = state_machine.advance(repository.snapshot(row).state, len(protocol.phases))
            row.status, row.current_phase_index = state_machine.row_fields(advanced)
            row.progression_date = now
    except (NotFoundError, MalformedProtocolError, InvalidTransitionError) as e:
        logger.error(f"[PROTOCOL] Cannot progress patient {patient_id}: {e}")
        return False
    except Exception as e:
        logger.error(f"[PROTOCOL] Failed to progress patient {patient_id}: {e}")
        return False

    logger.info(f"[PROTOCOL] Patient {patient_id} progressed {check.current_phase} -> {check.next_phase}")
    return True


def _end_assignment(patient_id: str, transition, now: datetime, notes: str | None) -> bool:
    try:
        with patient_lock(patient_id), get_session() as db:
            row = repository.find_active_assignment_row(db, patient_id)
            if row is None:
                raise NoActiveAssignmentError(f"No active protocol for patient {patient_id}")
            ended = transition(repository.snapshot(row).state)
            row.status, row.current_phase_index = state_machine.row_fields(ended, row.current_phase_index)
            row.completion_date = now
            if notes:
                row.notes = notes
    except NotFoundError as e:
        logger.debug(f"[PROTOCOL] {e}")
        return False
    except InvalidTransitionError as e:
        logger.error(f"[PROTOCOL] {e}")
        return False
    except Exception as e:
        logger.error(f"[PROTOCOL] Failed to update assignment for patient {patient_id}: {e}")
        return False

    logger.info(f"[PROTOCOL] Assignment for patient {patient_id} is now {ended.status}")
    return True


def discontinue_assignment(patient_id: str, notes: str | None = None, now: datetime | None = None) -> bool:
    return _end_assignment(patient_id, state_machine.discontinue, now or utcnow(), notes)


def complete_assignment(patient_id: str, notes: str | None = None, now: datetime | None = None) -> bool:
    return _end_assignment(patient_id, state_machine.complete, now or utcnow(), notes)
