from enum import Enum


class RunState(str, Enum):
    PLANNING = "planning"
    DISPATCHING = "dispatching"
    AGGREGATING = "aggregating"
    COMPLETED = "completed"
    FAILED = "failed"


class RunStateMachine:
    _transitions: dict[RunState, tuple[RunState, ...]] = {
        RunState.PLANNING: (RunState.DISPATCHING,),
        RunState.DISPATCHING: (RunState.AGGREGATING,),
        RunState.AGGREGATING: (RunState.COMPLETED, RunState.FAILED),
        RunState.COMPLETED: (),
        RunState.FAILED: (),
    }

    def __init__(self) -> None:
        self.current_state = RunState.PLANNING
        self.history: list[RunState] = [RunState.PLANNING]

    @property
    def is_terminal(self) -> bool:
        return self.current_state in (RunState.COMPLETED, RunState.FAILED)

    def can_transition(self, target_state: RunState) -> bool:
        if target_state == RunState.FAILED:
            return not self.is_terminal
        return target_state in self._transitions[self.current_state]

    def transition(self, target_state: RunState) -> RunState:
        if not self.can_transition(target_state):
            raise ValueError(
                f"Invalid transition: {self.current_state.value} -> {target_state.value}"
            )
        self.current_state = target_state
        self.history.append(target_state)
        return self.current_state
