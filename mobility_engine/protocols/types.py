"""Typed protocol and assignment structures.

Protocol definitions are parsed from the clinical_protocols table with
pydantic so malformed phase data is caught at the boundary. Assignment
status is a tagged variant: an assignment is Active at a phase index,
Discontinued, or Completed, and changes only through the transition
functions in protocols.state_machine.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class PhaseRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: float
    max: float


class ProtocolPhase(BaseModel):
    """One ordered stage of a clinical protocol."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    phase: str = Field(..., min_length=1, description='Phase name, e.g. "POD 0-2"')
    frequency: str = Field(default="TID", description="QD, BID, TID, QID or spelled out")
    duration: int = Field(..., gt=0, description="Minutes per session")
    resistance: PhaseRange
    rpm: PhaseRange
    goals: str = ""
    progression_criteria: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("progression_criteria", "progressionCriteria"),
    )
    monitoring_params: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("monitoring_params", "monitoringParams"),
    )
    stop_criteria: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("stop_criteria", "stopCriteria"),
    )


class ProtocolDefinition(BaseModel):
    """Parsed clinical protocol with its phase list."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    indication: str
    contraindications: list[str] = Field(default_factory=list)
    diagnosis_codes: list[str] = Field(default_factory=list)
    phases: list[ProtocolPhase] = Field(default_factory=list)
    evidence_citation: str | None = None
    is_active: bool = True

    def phase_index(self, phase_name: str) -> int | None:
        for index, phase in enumerate(self.phases):
            if phase.phase == phase_name:
                return index
        return None


class ProtocolPrescription(BaseModel):
    """Exercise prescription from the current phase of an active assignment."""

    protocol_name: str
    phase: str
    phase_index: int
    frequency: str
    sessions_per_day: int
    duration: int
    resistance: PhaseRange
    rpm: PhaseRange
    goals: str
    rationale: str
    monitoring_params: list[str] = Field(default_factory=list)
    stop_criteria: list[str] = Field(default_factory=list)


class PhaseProgressionCheck(BaseModel):
    should_progress: bool
    current_phase: str | None = None
    next_phase: str | None = None
    reason: str
    criteria: list[str] = Field(default_factory=list)


# Assignment state variants


@dataclass(frozen=True)
class Active:
    phase_index: int

    status = "active"


@dataclass(frozen=True)
class Discontinued:
    status = "discontinued"


@dataclass(frozen=True)
class Completed:
    status = "completed"


AssignmentState = Active | Discontinued | Completed


@dataclass(frozen=True)
class AssignmentSnapshot:
    """Detached view of a patient_protocol_assignments row."""

    id: str
    patient_id: str
    protocol_id: str
    state: AssignmentState
    start_date: datetime
    assigned_by: str | None = None
    progression_date: datetime | None = None
    completion_date: datetime | None = None
    notes: str | None = None

    @property
    def status(self) -> str:
        return self.state.status

    @property
    def current_phase_index(self) -> int | None:
        if isinstance(self.state, Active):
            return self.state.phase_index
        return None
