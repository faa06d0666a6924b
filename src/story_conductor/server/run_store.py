"""In-memory tracking of background generation runs.

Runs live for the lifetime of the process. Persistence is left to whatever
document store sits in front of this service.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel

from story_conductor.conductor.progress import ProgressSnapshot

RunStatus = Literal["queued", "running", "succeeded", "failed"]
RunKind = Literal["story-bible", "episode"]


class RunRecord(BaseModel):
    run_id: str
    kind: RunKind
    status: RunStatus
    created_at: str
    updated_at: str

    progress: ProgressSnapshot | None = None
    summary: dict[str, Any] | None = None
    quality: dict[str, Any] | None = None
    document: dict[str, Any] | None = None
    result: dict[str, Any] | None = None
    error: str | None = None


def _utc_iso_now() -> str:
    return datetime.now(tz=UTC).isoformat()


@dataclass
class RunStore:
    max_runs: int = 200
    _runs: dict[str, RunRecord] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def list(self) -> list[RunRecord]:
        with self._lock:
            return list(self._runs.values())

    def get(self, run_id: str) -> RunRecord | None:
        with self._lock:
            return self._runs.get(run_id)

    def create(self, *, run_id: str, kind: RunKind) -> RunRecord:
        with self._lock:
            now = _utc_iso_now()
            record = RunRecord(
                run_id=run_id,
                kind=kind,
                status="queued",
                created_at=now,
                updated_at=now,
            )
            self._runs[run_id] = record
            self._evict_unlocked()
            return record

    def update(self, run_id: str, **updates: object) -> RunRecord:
        with self._lock:
            record = self._runs.get(run_id)
            if record is None:
                raise KeyError(run_id)
            merged = record.model_copy(update={"updated_at": _utc_iso_now(), **updates})
            self._runs[run_id] = merged
            return merged

    def _evict_unlocked(self) -> None:
        finished = [r.run_id for r in self._runs.values() if r.status in ("succeeded", "failed")]
        while len(self._runs) > self.max_runs and finished:
            del self._runs[finished.pop(0)]
