"""Run-scoped progress tracking.

Each run owns one `RunProgress`. It is updated by the conductor from the event
loop thread and can be polled at any time (e.g. by an API handler) through
`snapshot()`, or streamed by passing an observer callback.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, Field

from story_conductor.conductor.document import StepResult, StepStatus

logger = logging.getLogger(__name__)

StepProgressStatus = Literal["pending", "active", "completed", "fallback", "failed"]

_STATUS_FOR_RESULT: dict[StepStatus, StepProgressStatus] = {
    StepStatus.SUCCEEDED: "completed",
    StepStatus.SUCCEEDED_VIA_FALLBACK: "fallback",
    StepStatus.FAILED: "failed",
}


class StepProgress(BaseModel):
    name: str
    status: StepProgressStatus = "pending"
    wave: int | None = None
    started_at: str | None = None
    ended_at: str | None = None
    elapsed_seconds: float | None = None
    attempts: int = 0
    message: str = ""


class ProgressSnapshot(BaseModel):
    run_id: str
    state: str
    current_wave: int | None = None
    wave_count: int = 0
    completed: int = 0
    total: int = 0
    percent: int = 0
    steps: list[StepProgress] = Field(default_factory=list)


ProgressObserver = Callable[[ProgressSnapshot], None]


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


class RunProgress:
    def __init__(self, run_id: str, observer: ProgressObserver | None = None) -> None:
        self.run_id = run_id
        self._observer = observer
        self._steps: dict[str, StepProgress] = {}
        self._state = "idle"
        self._current_wave: int | None = None
        self._wave_count = 0

    def initialize(self, waves: Iterable[Iterable[str]]) -> None:
        self._steps = {}
        count = 0
        for index, wave in enumerate(waves):
            count += 1
            for name in wave:
                self._steps[name] = StepProgress(name=name, wave=index)
        self._wave_count = count
        self._notify()

    def set_state(self, state: str, wave: int | None = None) -> None:
        self._state = state
        self._current_wave = wave
        self._notify()

    def step_started(self, name: str) -> None:
        self._steps[name] = self._steps[name].model_copy(
            update={"status": "active", "started_at": _utc_iso_now()}
        )
        self._notify()

    def step_finished(self, result: StepResult) -> None:
        self._steps[result.name] = self._steps[result.name].model_copy(
            update={
                "status": _STATUS_FOR_RESULT[result.status],
                "ended_at": _utc_iso_now(),
                "elapsed_seconds": round(result.elapsed_seconds, 4),
                "attempts": result.attempts,
                "message": result.diagnostic or "",
            }
        )
        self._notify()

    @property
    def completed(self) -> int:
        return sum(1 for s in self._steps.values() if s.status not in ("pending", "active"))

    @property
    def total(self) -> int:
        return len(self._steps)

    @property
    def percent(self) -> int:
        if not self._steps:
            return 100 if self._state.startswith("completed") else 0
        return round(100 * self.completed / self.total)

    def snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            run_id=self.run_id,
            state=self._state,
            current_wave=self._current_wave,
            wave_count=self._wave_count,
            completed=self.completed,
            total=self.total,
            percent=self.percent,
            steps=[s.model_copy() for s in self._steps.values()],
        )

    def _notify(self) -> None:
        if self._observer is None:
            return
        try:
            self._observer(self.snapshot())
        except Exception:
            logger.exception("Progress observer failed", extra={"run_id": self.run_id})
