"""Protocol and assignment persistence helpers.

Functions taking a `db` session run inside the caller's transaction so
read-then-write sequences stay atomic.
"""

from __future__ import annotations

from loguru import logger
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from mobility_engine.db.models import ClinicalProtocol, PatientProtocolAssignment, ProtocolMatchingCriteria
from mobility_engine.protocols import state_machine
from mobility_engine.protocols.types import AssignmentSnapshot, ProtocolDefinition
from mobility_engine.state.errors import MalformedProtocolError, ProtocolNotFoundError


def parse_protocol(row: ClinicalProtocol) -> ProtocolDefinition:
    """Convert a clinical_protocols row into a typed protocol.

    Raises:
        MalformedProtocolError: If protocol_data or the phase list is invalid
    """
    data = row.protocol_data
    if not isinstance(data, dict):
        raise MalformedProtocolError(f"Protocol {row.id} has non-object protocol_data")
    try:
        return ProtocolDefinition(
            id=row.id,
            name=row.name,
            indication=row.indication,
            contraindications=list(row.contraindications or []),
            diagnosis_codes=list(row.diagnosis_codes or []),
            phases=data.get("phases") or [],
            evidence_citation=row.evidence_citation,
            is_active=bool(row.is_active),
        )
    except ValidationError as e:
        raise MalformedProtocolError(f"Protocol {row.id} ({row.name}) has invalid phase data: {e}") from e


def load_protocol(db: Session, protocol_id: str) -> ProtocolDefinition:
    """Load and parse one protocol.

    Raises:
        ProtocolNotFoundError: If no row has this id
        MalformedProtocolError: If the row cannot be parsed
    """
    row = db.get(ClinicalProtocol, protocol_id)
    if row is None:
        raise ProtocolNotFoundError(f"Protocol {protocol_id} not found")
    return parse_protocol(row)


def load_active_protocols(db: Session) -> list[ProtocolDefinition]:
    """All active protocols; malformed rows are logged and skipped."""
    rows = db.execute(select(ClinicalProtocol).where(ClinicalProtocol.is_active.is_(True))).scalars().all()
    protocols: list[ProtocolDefinition] = []
    for row in rows:
        try:
            protocols.append(parse_protocol(row))
        except MalformedProtocolError as e:
            logger.error(f"[PROTOCOL] Skipping malformed protocol: {e}")
    return protocols


def load_matching_criteria(db: Session) -> dict[str, ProtocolMatchingCriteria]:
    rows = db.execute(select(ProtocolMatchingCriteria)).scalars().all()
    return {row.protocol_id: row for row in rows}


def find_active_assignment_row(db: Session, patient_id: str) -> PatientProtocolAssignment | None:
    return (
        db.execute(
            select(PatientProtocolAssignment)
            .where(
                PatientProtocolAssignment.patient_id == patient_id,
                PatientProtocolAssignment.status == state_machine.STATUS_ACTIVE,
            )
            .order_by(PatientProtocolAssignment.start_date.desc())
        )
        .scalars()
        .first()
    )


def snapshot(row: PatientProtocolAssignment) -> AssignmentSnapshot:
    return AssignmentSnapshot(
        id=row.id,
        patient_id=row.patient_id,
        protocol_id=row.protocol_id,
        state=state_machine.state_from_row(row.status, row.current_phase_index),
        start_date=row.start_date,
        assigned_by=row.assigned_by,
        progression_date=row.progression_date,
        completion_date=row.completion_date,
        notes=row.notes,
    )
