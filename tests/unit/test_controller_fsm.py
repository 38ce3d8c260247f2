import pytest

from conductor.controller.fsm import RunState, RunStateMachine


def test_fsm_happy_path_transitions() -> None:
    fsm = RunStateMachine()
    assert fsm.current_state == RunState.PLANNING

    fsm.transition(RunState.DISPATCHING)
    fsm.transition(RunState.AGGREGATING)
    fsm.transition(RunState.COMPLETED)

    assert fsm.current_state == RunState.COMPLETED
    assert fsm.is_terminal is True
    assert fsm.history == [
        RunState.PLANNING,
        RunState.DISPATCHING,
        RunState.AGGREGATING,
        RunState.COMPLETED,
    ]


def test_fsm_rejects_invalid_transition() -> None:
    fsm = RunStateMachine()
    with pytest.raises(ValueError, match="Invalid transition: planning -> aggregating"):
        fsm.transition(RunState.AGGREGATING)


def test_fsm_fails_from_any_live_state() -> None:
    for steps in ([], [RunState.DISPATCHING], [RunState.DISPATCHING, RunState.AGGREGATING]):
        fsm = RunStateMachine()
        for state in steps:
            fsm.transition(state)
        assert fsm.can_transition(RunState.FAILED) is True
        fsm.transition(RunState.FAILED)
        assert fsm.is_terminal is True


def test_fsm_terminal_states_are_final() -> None:
    fsm = RunStateMachine()
    fsm.transition(RunState.FAILED)

    assert fsm.can_transition(RunState.FAILED) is False
    with pytest.raises(ValueError):
        fsm.transition(RunState.DISPATCHING)
