from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any

from story_conductor.errors import DocumentFrozenError


class StepStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SUCCEEDED_VIA_FALLBACK = "succeeded-via-fallback"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class StepResult:
    name: str
    status: StepStatus
    payload: Any
    elapsed_seconds: float
    attempts: int = 0
    diagnostic: str | None = None

    @property
    def used_fallback(self) -> bool:
        return self.status is StepStatus.SUCCEEDED_VIA_FALLBACK

    def to_json(self) -> dict[str, object]:
        out: dict[str, object] = {
            "name": self.name,
            "status": self.status.value,
            "elapsed_seconds": round(self.elapsed_seconds, 4),
            "attempts": self.attempts,
        }
        if self.diagnostic is not None:
            out["diagnostic"] = self.diagnostic
        return out


@dataclass(frozen=True, slots=True)
class DocumentSnapshot:
    """Read-only view of the aggregate document between waves."""

    context: Mapping[str, Any]
    payloads: Mapping[str, Any]
    signals_by_step: Mapping[str, Mapping[str, Any]]


class AggregateDocument:
    """Accumulated output of a run.

    Owned by the conductor. Results are merged one at a time between waves,
    never while a wave is in flight. Once frozen the document is read-only.
    """

    def __init__(self, context: Mapping[str, Any] | None = None) -> None:
        self._context: dict[str, Any] = copy.deepcopy(dict(context or {}))
        self._payloads: dict[str, Any] = {}
        self._results: dict[str, StepResult] = {}
        self._derived: dict[str, Any] = {}
        self._signals_by_step: dict[str, dict[str, Any]] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def context(self) -> Mapping[str, Any]:
        return MappingProxyType(self._context)

    @property
    def derived(self) -> Mapping[str, Any]:
        return MappingProxyType(self._derived)

    @property
    def results(self) -> Mapping[str, StepResult]:
        return MappingProxyType(self._results)

    def merge(self, result: StepResult, derived: Mapping[str, Any] | None = None) -> None:
        if self._frozen:
            raise DocumentFrozenError("Aggregate document is frozen")
        if result.name in self._results:
            raise ValueError(f"Result for step {result.name!r} already merged")
        self._results[result.name] = result
        self._payloads[result.name] = copy.deepcopy(result.payload)
        if derived:
            signals = copy.deepcopy(dict(derived))
            self._signals_by_step[result.name] = signals
            self._derived.update(copy.deepcopy(signals))

    def freeze(self) -> None:
        self._frozen = True

    def snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            context=MappingProxyType(self._context),
            payloads=MappingProxyType(self._payloads),
            signals_by_step=MappingProxyType(self._signals_by_step),
        )

    def get(self, name: str, default: Any = None) -> Any:
        value = self._payloads.get(name)
        return copy.deepcopy(default if value is None else value)

    def __contains__(self, name: object) -> bool:
        return name in self._payloads

    def __len__(self) -> int:
        return len(self._payloads)

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form: steps in merge order plus derived fields."""

        return {
            "steps": copy.deepcopy(self._payloads),
            "derived": copy.deepcopy(self._derived),
        }
