from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from story_conductor.errors import IllegalTransitionError


class ConductorState(str, Enum):
    IDLE = "idle"
    PLANNING = "planning"
    EXECUTING = "executing"
    VALIDATING = "validating"
    COMPLETED = "completed"
    COMPLETED_WITH_DEGRADATION = "completed-with-degradation"
    FAILED = "failed"


TERMINAL_STATES = frozenset(
    {
        ConductorState.COMPLETED,
        ConductorState.COMPLETED_WITH_DEGRADATION,
        ConductorState.FAILED,
    }
)

# EXECUTING -> EXECUTING advances the wave index. PLANNING -> VALIDATING covers
# an empty plan.
ALLOWED_TRANSITIONS: dict[ConductorState, set[ConductorState]] = {
    ConductorState.IDLE: {ConductorState.PLANNING},
    ConductorState.PLANNING: {
        ConductorState.EXECUTING,
        ConductorState.VALIDATING,
        ConductorState.FAILED,
    },
    ConductorState.EXECUTING: {ConductorState.EXECUTING, ConductorState.VALIDATING},
    ConductorState.VALIDATING: {
        ConductorState.COMPLETED,
        ConductorState.COMPLETED_WITH_DEGRADATION,
    },
    ConductorState.COMPLETED: set(),
    ConductorState.COMPLETED_WITH_DEGRADATION: set(),
    ConductorState.FAILED: set(),
}


@dataclass(frozen=True, slots=True)
class ConductorSnapshot:
    state: ConductorState = ConductorState.IDLE
    wave: int | None = None

    @property
    def terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {"state": self.state.value}
        if self.wave is not None:
            out["wave"] = self.wave
        return out


def transition(
    *, current: ConductorSnapshot, to: ConductorState, wave: int | None = None
) -> ConductorSnapshot:
    allowed = ALLOWED_TRANSITIONS.get(current.state, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.state.value} -> {to.value}")
    if to is ConductorState.EXECUTING:
        if wave is None:
            raise IllegalTransitionError("EXECUTING requires a wave index")
        if current.state is ConductorState.PLANNING and wave != 0:
            raise IllegalTransitionError(f"Execution must start at wave 0, not {wave}")
        if current.state is ConductorState.EXECUTING and wave != (current.wave or 0) + 1:
            raise IllegalTransitionError(
                f"Waves must advance one at a time: {current.wave} -> {wave}"
            )
        return ConductorSnapshot(state=to, wave=wave)
    return ConductorSnapshot(state=to)
