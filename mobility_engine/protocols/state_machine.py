"""Assignment state transitions.

    Active(i) --advance--> Active(i + 1)      (i + 1 < phase count)
    Active(i) --discontinue--> Discontinued
    Active(i) --complete--> Completed

Discontinued and Completed are terminal. Anything else raises
InvalidTransitionError.
"""

from mobility_engine.protocols.types import Active, AssignmentState, Completed, Discontinued
from mobility_engine.state.errors import InvalidTransitionError

STATUS_ACTIVE = "active"
STATUS_DISCONTINUED = "discontinued"
STATUS_COMPLETED = "completed"


def start(phase_index: int, phase_count: int) -> Active:
    if phase_count <= 0:
        raise InvalidTransitionError("Cannot start a protocol with no phases")
    if not 0 <= phase_index < phase_count:
        raise InvalidTransitionError(f"Start phase {phase_index} outside 0..{phase_count - 1}")
    return Active(phase_index)


def advance(state: AssignmentState, phase_count: int) -> Active:
    if not isinstance(state, Active):
        raise InvalidTransitionError(f"Cannot advance a {state.status} assignment")
    if state.phase_index + 1 >= phase_count:
        raise InvalidTransitionError("Already in final phase")
    return Active(state.phase_index + 1)


def discontinue(state: AssignmentState) -> Discontinued:
    if not isinstance(state, Active):
        raise InvalidTransitionError(f"Cannot discontinue a {state.status} assignment")
    return Discontinued()


def complete(state: AssignmentState) -> Completed:
    if not isinstance(state, Active):
        raise InvalidTransitionError(f"Cannot complete a {state.status} assignment")
    return Completed()


def is_final_phase(state: AssignmentState, phase_count: int) -> bool:
    return isinstance(state, Active) and state.phase_index >= phase_count - 1


def state_from_row(status: str, phase_index: int | None) -> AssignmentState:
    """Rebuild the variant from stored (status, current_phase_index)."""
    if status == STATUS_ACTIVE:
        return Active(phase_index or 0)
    if status == STATUS_DISCONTINUED:
        return Discontinued()
    if status == STATUS_COMPLETED:
        return Completed()
    raise InvalidTransitionError(f"Unknown assignment status {status!r}")


def row_fields(state: AssignmentState, previous_phase_index: int = 0) -> tuple[str, int]:
    """Stored (status, current_phase_index) for a state.

    Terminal states keep the phase index they ended on.
    """
    if isinstance(state, Active):
        return STATUS_ACTIVE, state.phase_index
    return state.status, previous_phase_index
