"""Exception taxonomy for the conductor.

Planning errors are fatal and raised before any generation call. Step attempt
errors are internal to the executor: they drive retries and never escape it.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from story_conductor.conductor.conductor import RunResult


class PlanningError(Exception):
    """The step registry cannot be turned into an execution plan."""


class DuplicateStepError(PlanningError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Step registered twice: {name!r}")
        self.name = name


class UnknownDependencyError(PlanningError):
    def __init__(self, step: str, missing: Sequence[str]) -> None:
        self.step = step
        self.missing = tuple(missing)
        super().__init__(
            f"Step {step!r} depends on undeclared step(s): {', '.join(self.missing)}"
        )


class CyclicDependencyError(PlanningError):
    """Raised when the dependency graph contains a cycle.

    `cycle` lists one concrete cycle in traversal order, with the first member
    repeated at the end (e.g. ``["X", "Y", "X"]``).
    """

    def __init__(self, cycle: Sequence[str]) -> None:
        self.cycle = list(cycle)
        super().__init__(f"Cyclic step dependency: {' -> '.join(self.cycle)}")


class StepAttemptError(Exception):
    """A single generation attempt failed in a retryable way."""


class GenerationTimeoutError(StepAttemptError):
    def __init__(self, step: str, timeout_seconds: float) -> None:
        super().__init__(f"Step {step!r} timed out after {timeout_seconds:g}s")
        self.step = step
        self.timeout_seconds = timeout_seconds


class ResultParseError(StepAttemptError, ValueError):
    """No structured payload could be extracted from the raw response."""

    def __init__(self, message: str, excerpt: str = "") -> None:
        super().__init__(message)
        self.excerpt = excerpt


class ShapeMismatchError(StepAttemptError):
    """A parsed payload does not satisfy the step's output shape."""

    def __init__(self, step: str, details: str) -> None:
        super().__init__(f"Payload for step {step!r} does not match its shape: {details}")
        self.step = step
        self.details = details


class FallbackError(Exception):
    """The fallback synthesizer raised or produced an invalid payload."""


class DocumentFrozenError(RuntimeError):
    pass


class IllegalTransitionError(ValueError):
    pass


class QualityGateFailed(Exception):
    """Raised under the blocking quality policy.

    The complete run result is attached so a caller can still inspect or
    persist the degraded document.
    """

    def __init__(self, result: RunResult) -> None:
        self.result = result
        report = result.quality
        super().__init__(
            f"Quality gate failed: score {report.score:.1f}, "
            f"{len(report.violations)} violation(s)"
        )
