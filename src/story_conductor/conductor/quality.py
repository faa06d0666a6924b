"""Post-run quality gate.

The gate is a pure function of a finished aggregate document: rules produce
violations, scorers produce ratios in ``[0, 1]``, and the weighted mean of
those ratios becomes the 0-100 score.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from pydantic import BaseModel, Field

from story_conductor.conductor.document import AggregateDocument, StepStatus
from story_conductor.core.config import QualityConfig

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class QualityViolation(BaseModel):
    rule: str
    severity: Severity
    message: str
    step: str | None = None


class ScoreBreakdown(BaseModel):
    scorer: str
    weight: float
    ratio: float


class QualityReport(BaseModel):
    score: float = Field(ge=0.0, le=100.0)
    passed: bool
    violations: list[QualityViolation] = Field(default_factory=list)
    breakdown: list[ScoreBreakdown] = Field(default_factory=list)
    fallback_ratio: float = 0.0
    reasons: list[str] = Field(default_factory=list)

    @property
    def errors(self) -> list[QualityViolation]:
        return [v for v in self.violations if v.severity is Severity.ERROR]


@dataclass(frozen=True, slots=True)
class QualityThresholds:
    min_score: float = 60.0
    max_fallback_ratio: float = 0.5

    @classmethod
    def from_config(cls, config: QualityConfig) -> QualityThresholds:
        return cls(min_score=config.min_score, max_fallback_ratio=config.max_fallback_ratio)


class QualityRule(Protocol):
    name: str

    def check(self, document: AggregateDocument) -> list[QualityViolation]: ...


class QualityScorer(Protocol):
    name: str
    weight: float

    def score(self, document: AggregateDocument) -> float: ...


def select_path(data: Any, path: str) -> list[Any]:
    """Select values from nested plain data.

    ``"voices[].character"`` reads ``data["voices"]``, iterates it and takes
    ``character`` from every item; a leading ``"[]"`` iterates the root.
    Missing keys are skipped rather than reported.
    """

    values = [data]
    for token in path.split("."):
        if not token:
            continue
        many = token.endswith("[]")
        key = token[:-2] if many else token
        selected: list[Any] = []
        for value in values:
            if key:
                if not isinstance(value, dict) or key not in value:
                    continue
                value = value[key]
            if many:
                if isinstance(value, list):
                    selected.extend(value)
            else:
                selected.append(value)
        values = selected
    return [v for v in values if v is not None]


def _normalize_name(name: Any) -> str:
    return " ".join(str(name).split()).casefold()


@dataclass(frozen=True, slots=True)
class RequiredStepRule:
    """Each listed step must have produced a payload (generated or fallback)."""

    steps: tuple[str, ...]
    severity: Severity = Severity.ERROR
    name: str = "required-step"

    def check(self, document: AggregateDocument) -> list[QualityViolation]:
        violations = []
        for step in self.steps:
            if document.get(step) is None:
                violations.append(
                    QualityViolation(
                        rule=self.name,
                        severity=self.severity,
                        message=f"Required step {step!r} produced no payload",
                        step=step,
                    )
                )
        return violations


@dataclass(frozen=True, slots=True)
class CrossReferenceRule:
    """Role names referenced by `step` must appear in the roster.

    The roster is read from the payload of `roster_step`, or from the seed
    context key of that name when `roster_in_context` is set. Comparison
    ignores case and repeated whitespace. If either side is missing the rule
    has nothing to compare and stays silent.
    """

    step: str
    path: str
    roster_step: str = "roster"
    roster_path: str = "[].name"
    roster_in_context: bool = False
    severity: Severity = Severity.WARNING
    name: str = "cross-reference"

    def check(self, document: AggregateDocument) -> list[QualityViolation]:
        payload = document.get(self.step)
        if self.roster_in_context:
            roster = document.context.get(self.roster_step)
        else:
            roster = document.get(self.roster_step)
        if payload is None or roster is None:
            return []

        known = {_normalize_name(n) for n in select_path(roster, self.roster_path)}
        unknown: list[str] = []
        for ref in select_path(payload, self.path):
            if not isinstance(ref, str) or not ref.strip():
                continue
            if _normalize_name(ref) not in known and ref not in unknown:
                unknown.append(ref)

        return [
            QualityViolation(
                rule=self.name,
                severity=self.severity,
                message=f"{self.step}.{self.path} references unknown role {ref!r}",
                step=self.step,
            )
            for ref in unknown
        ]


@dataclass(frozen=True, slots=True)
class MinimumCountRule:
    """A derived field must be present and at least `minimum`."""

    field: str
    minimum: int = 1
    severity: Severity = Severity.ERROR
    name: str = "minimum-count"

    def check(self, document: AggregateDocument) -> list[QualityViolation]:
        value = document.derived.get(self.field)
        if isinstance(value, int) and not isinstance(value, bool) and value >= self.minimum:
            return []
        return [
            QualityViolation(
                rule=self.name,
                severity=self.severity,
                message=(
                    f"Derived field {self.field!r} is {value!r}; "
                    f"expected at least {self.minimum}"
                ),
            )
        ]


@dataclass(frozen=True, slots=True)
class StepFidelityScorer:
    """Share of the plan that was actually generated.

    Generated steps earn full credit, fallback steps half, failed steps none.
    """

    weight: float = 1.0
    name: str = "step-fidelity"

    def score(self, document: AggregateDocument) -> float:
        results = list(document.results.values())
        if not results:
            return 1.0
        credit = {
            StepStatus.SUCCEEDED: 1.0,
            StepStatus.SUCCEEDED_VIA_FALLBACK: 0.5,
            StepStatus.FAILED: 0.0,
        }
        return sum(credit[r.status] for r in results) / len(results)


def fallback_ratio(document: AggregateDocument) -> float:
    results = list(document.results.values())
    if not results:
        return 0.0
    degraded = sum(1 for r in results if r.status is not StepStatus.SUCCEEDED)
    return degraded / len(results)


class QualityGate:
    def __init__(
        self,
        rules: Iterable[QualityRule] = (),
        scorers: Iterable[QualityScorer] | None = None,
        thresholds: QualityThresholds | None = None,
    ) -> None:
        self.rules: tuple[QualityRule, ...] = tuple(rules)
        self.scorers: tuple[QualityScorer, ...] = (
            tuple(scorers) if scorers is not None else (StepFidelityScorer(),)
        )
        self.thresholds = thresholds or QualityThresholds()

    def extended(
        self,
        rules: Sequence[QualityRule] = (),
        scorers: Sequence[QualityScorer] = (),
    ) -> QualityGate:
        """Return a gate with extra rules and scorers and the same thresholds."""

        return QualityGate(
            rules=(*self.rules, *rules),
            scorers=(*self.scorers, *scorers),
            thresholds=self.thresholds,
        )

    def evaluate(self, document: AggregateDocument) -> QualityReport:
        violations: list[QualityViolation] = []
        for rule in self.rules:
            try:
                violations.extend(rule.check(document))
            except Exception as e:
                logger.exception("Quality rule raised", extra={"rule": rule.name})
                violations.append(
                    QualityViolation(
                        rule=rule.name,
                        severity=Severity.WARNING,
                        message=f"Rule could not be evaluated: {e}",
                    )
                )

        breakdown: list[ScoreBreakdown] = []
        for scorer in self.scorers:
            try:
                ratio = float(scorer.score(document))
            except Exception:
                logger.exception("Quality scorer raised", extra={"scorer": scorer.name})
                ratio = 0.0
            breakdown.append(
                ScoreBreakdown(
                    scorer=scorer.name,
                    weight=scorer.weight,
                    ratio=min(max(ratio, 0.0), 1.0),
                )
            )

        total_weight = sum(b.weight for b in breakdown)
        if total_weight > 0:
            score = 100.0 * sum(b.weight * b.ratio for b in breakdown) / total_weight
        else:
            score = 100.0
        score = round(score, 2)

        ratio = fallback_ratio(document)
        reasons: list[str] = []
        if score < self.thresholds.min_score:
            reasons.append(f"score {score:.1f} below minimum {self.thresholds.min_score:.1f}")
        if ratio > self.thresholds.max_fallback_ratio:
            reasons.append(
                f"fallback ratio {ratio:.2f} above maximum {self.thresholds.max_fallback_ratio:.2f}"
            )
        error_count = sum(1 for v in violations if v.severity is Severity.ERROR)
        if error_count:
            reasons.append(f"{error_count} error-severity violation(s)")

        report = QualityReport(
            score=score,
            passed=not reasons,
            violations=violations,
            breakdown=breakdown,
            fallback_ratio=round(ratio, 4),
            reasons=reasons,
        )
        logger.info(
            "Quality gate evaluated",
            extra={
                "score": report.score,
                "passed": report.passed,
                "violations": len(violations),
                "fallback_ratio": report.fallback_ratio,
            },
        )
        return report
