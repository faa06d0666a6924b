"""Step definitions and the per-invocation step registry.

A step is one unit of generation work. It declares which other steps it reads,
how to turn those inputs into a prompt, what shape the parsed output must
have, and how to synthesize a payload when generation is exhausted.
"""

from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pydantic import TypeAdapter, ValidationError

from story_conductor.errors import DuplicateStepError, ShapeMismatchError

PromptBuilder = Callable[["StepInputs"], str]
FallbackBuilder = Callable[["StepInputs"], Any]
Deriver = Callable[[Any], Mapping[str, Any]]


class OutputShape:
    """Expected output shape of a step, backed by a pydantic type.

    `type_` may be a `BaseModel` subclass or any annotation pydantic can
    validate (for example ``list[RosterEntry]``). Validated payloads are
    dumped back to plain JSON-compatible data so the aggregate document stays
    persistence-agnostic.
    """

    def __init__(self, type_: Any) -> None:
        self.type_ = type_
        self._adapter: TypeAdapter[Any] = TypeAdapter(type_)

    def validate(self, step: str, payload: Any) -> Any:
        try:
            value = self._adapter.validate_python(payload)
        except ValidationError as e:
            raise ShapeMismatchError(step, _summarize_validation_error(e)) from e
        return self._adapter.dump_python(value, mode="json")

    def json_schema(self) -> dict[str, Any]:
        return self._adapter.json_schema()

    def __repr__(self) -> str:
        return f"OutputShape({getattr(self.type_, '__name__', self.type_)!r})"


def _summarize_validation_error(error: ValidationError, limit: int = 3) -> str:
    parts = []
    for item in error.errors()[:limit]:
        loc = ".".join(str(p) for p in item["loc"]) or "<root>"
        parts.append(f"{loc}: {item['msg']}")
    more = error.error_count() - limit
    if more > 0:
        parts.append(f"(+{more} more)")
    return "; ".join(parts)


@dataclass(frozen=True, slots=True)
class StepInputs:
    """Fully materialised inputs for one step.

    Only the step's declared dependencies are present in `dependencies`.
    A dependency whose step failed outright maps to ``None``.
    """

    step: str
    context: Mapping[str, Any]
    dependencies: Mapping[str, Any]
    signals: Mapping[str, Any]

    def dep(self, name: str, default: Any = None) -> Any:
        value = self.dependencies.get(name)
        return default if value is None else value

    def signal(self, name: str, default: Any = None) -> Any:
        value = self.signals.get(name)
        return default if value is None else value

    @classmethod
    def select(
        cls,
        step: StepDefinition,
        *,
        context: Mapping[str, Any],
        payloads: Mapping[str, Any],
        signals_by_step: Mapping[str, Mapping[str, Any]],
    ) -> StepInputs:
        """Build inputs restricted to the step's declared dependencies.

        Derived signals are visible only when a declared dependency produced
        them. On a key clash the later dependency in `depends_on` wins.
        """

        deps = {name: copy.deepcopy(payloads.get(name)) for name in step.depends_on}
        signals: dict[str, Any] = {}
        for name in step.depends_on:
            signals.update(signals_by_step.get(name, {}))
        return cls(
            step=step.name,
            context=MappingProxyType(copy.deepcopy(dict(context))),
            dependencies=MappingProxyType(deps),
            signals=MappingProxyType(copy.deepcopy(dict(signals))),
        )


@dataclass(frozen=True, slots=True)
class StepDefinition:
    name: str
    build_prompt: PromptBuilder
    shape: OutputShape
    fallback: FallbackBuilder
    depends_on: tuple[str, ...] = ()
    derive: Deriver | None = None
    system_prompt: str | None = None
    temperature: float = 0.7
    max_output_tokens: int = 2000
    max_attempts: int | None = None
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise ValueError("Step name must be non-empty")
        # Accept any iterable for convenience but store an immutable tuple.
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")


@dataclass
class StepRegistry:
    """Ordered collection of step definitions for a single invocation.

    Registration order is significant: it is the stable tie-break the resolver
    uses inside a wave, and the order in which a wave's results are merged.
    """

    _steps: dict[str, StepDefinition] = field(default_factory=dict)

    @classmethod
    def of(cls, steps: Iterable[StepDefinition]) -> StepRegistry:
        registry = cls()
        for step in steps:
            registry.register(step)
        return registry

    def register(self, step: StepDefinition) -> StepDefinition:
        if step.name in self._steps:
            raise DuplicateStepError(step.name)
        self._steps[step.name] = step
        return step

    def get(self, name: str) -> StepDefinition:
        return self._steps[name]

    def names(self) -> list[str]:
        return list(self._steps)

    def __contains__(self, name: object) -> bool:
        return name in self._steps

    def __iter__(self) -> Iterator[StepDefinition]:
        return iter(self._steps.values())

    def __len__(self) -> int:
        return len(self._steps)
