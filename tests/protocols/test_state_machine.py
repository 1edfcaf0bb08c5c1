"""Tests for assignment state transitions."""

import pytest

from mobility_engine.protocols import state_machine
from mobility_engine.protocols.types import Active, Completed, Discontinued
from mobility_engine.state.errors import InvalidTransitionError


def test_start_at_first_phase():
    """Test that a valid start index yields an active state."""
    assert state_machine.start(0, 3) == Active(0)
    assert state_machine.start(2, 3) == Active(2)


@pytest.mark.parametrize(("index", "count"), [(0, 0), (3, 3), (-1, 3)])
def test_start_rejects_out_of_range(index, count):
    """Test that starting outside the phase list is rejected."""
    with pytest.raises(InvalidTransitionError):
        state_machine.start(index, count)


def test_advance_moves_one_phase():
    """Test that advance increments the phase index."""
    assert state_machine.advance(Active(0), 3) == Active(1)


def test_advance_refuses_past_final_phase():
    """Test that the final phase cannot be advanced."""
    with pytest.raises(InvalidTransitionError, match="final phase"):
        state_machine.advance(Active(2), 3)


@pytest.mark.parametrize("terminal", [Discontinued(), Completed()])
def test_terminal_states_reject_all_transitions(terminal):
    """Test that discontinued and completed assignments are terminal."""
    with pytest.raises(InvalidTransitionError):
        state_machine.advance(terminal, 3)
    with pytest.raises(InvalidTransitionError):
        state_machine.discontinue(terminal)
    with pytest.raises(InvalidTransitionError):
        state_machine.complete(terminal)


def test_is_final_phase():
    assert state_machine.is_final_phase(Active(2), 3)
    assert not state_machine.is_final_phase(Active(1), 3)
    assert not state_machine.is_final_phase(Completed(), 3)


def test_row_round_trip_keeps_terminal_phase_index():
    """Test that terminal rows keep the phase they ended on."""
    assert state_machine.row_fields(Active(1)) == ("active", 1)
    assert state_machine.row_fields(Discontinued(), 2) == ("discontinued", 2)
    assert state_machine.state_from_row("completed", 2) == Completed()
    assert state_machine.state_from_row("active", None) == Active(0)


def test_unknown_status_rejected():
    with pytest.raises(InvalidTransitionError):
        state_machine.state_from_row("paused", 0)
