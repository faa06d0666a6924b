"""Unit tests for the quality gate."""

from __future__ import annotations

from typing import Any

from story_conductor.conductor.document import AggregateDocument, StepResult, StepStatus
from story_conductor.conductor.quality import (
    CrossReferenceRule,
    MinimumCountRule,
    QualityGate,
    QualityThresholds,
    QualityViolation,
    RequiredStepRule,
    Severity,
    StepFidelityScorer,
    fallback_ratio,
    select_path,
)


def _document(
    steps: dict[str, tuple[StepStatus, Any]],
    *,
    context: dict[str, Any] | None = None,
    derived: dict[str, Any] | None = None,
) -> AggregateDocument:
    doc = AggregateDocument(context)
    for index, (name, (status, payload)) in enumerate(steps.items()):
        doc.merge(
            StepResult(name=name, status=status, payload=payload, elapsed_seconds=0.0),
            derived if index == 0 else None,
        )
    return doc


OK = StepStatus.SUCCEEDED
FALLBACK = StepStatus.SUCCEEDED_VIA_FALLBACK
FAILED = StepStatus.FAILED

ROSTER = [{"name": "Mara Quell"}, {"name": "Teo"}]


def test_select_path_walks_lists_and_keys() -> None:
    data = {"voices": [{"character": "Mara"}, {"voice": "x"}, {"character": "Teo"}]}

    assert select_path(data, "voices[].character") == ["Mara", "Teo"]
    assert select_path(ROSTER, "[].name") == ["Mara Quell", "Teo"]
    assert select_path({"a": {"b": 3}}, "a.b") == [3]
    assert select_path({"a": 1}, "missing[].name") == []


def test_required_step_rule_flags_missing_payloads() -> None:
    doc = _document({"premise": (OK, {"p": 1}), "roster": (FAILED, None)})

    violations = RequiredStepRule(("premise", "roster", "world")).check(doc)

    assert [v.step for v in violations] == ["roster", "world"]
    assert all(v.severity is Severity.ERROR for v in violations)


def test_cross_reference_ignores_case_and_spacing() -> None:
    doc = _document(
        {
            "roster": (OK, ROSTER),
            "dialogue": (
                OK,
                {"voices": [{"character": "mara  quell"}, {"character": "Ghost"}]},
            ),
        }
    )

    violations = CrossReferenceRule("dialogue", "voices[].character").check(doc)

    assert len(violations) == 1
    assert "Ghost" in violations[0].message
    assert violations[0].severity is Severity.WARNING


def test_cross_reference_is_silent_without_both_sides() -> None:
    doc = _document({"dialogue": (OK, {"voices": [{"character": "Ghost"}]})})

    assert CrossReferenceRule("dialogue", "voices[].character").check(doc) == []


def test_cross_reference_can_read_roster_from_context() -> None:
    doc = _document(
        {"lines": (OK, {"lines": [{"character": "Teo"}, {"character": "Nobody"}]})},
        context={"roster": ROSTER},
    )
    rule = CrossReferenceRule("lines", "lines[].character", roster_in_context=True)

    assert [v.message for v in rule.check(doc)] == [
        "lines.lines[].character references unknown role 'Nobody'"
    ]


def test_minimum_count_rule() -> None:
    doc = _document({"roster": (OK, ROSTER)}, derived={"character_count": 2, "arc_count": 0})

    assert MinimumCountRule("character_count").check(doc) == []
    assert len(MinimumCountRule("arc_count").check(doc)) == 1
    assert len(MinimumCountRule("episode_count").check(doc)) == 1


def test_step_fidelity_and_fallback_ratio() -> None:
    doc = _document({"a": (OK, {}), "b": (FALLBACK, {}), "c": (FAILED, None), "d": (OK, {})})

    assert StepFidelityScorer().score(doc) == 0.625
    assert fallback_ratio(doc) == 0.5
    assert StepFidelityScorer().score(AggregateDocument()) == 1.0


def test_gate_passes_a_clean_document() -> None:
    doc = _document({"premise": (OK, {"p": 1})})

    report = QualityGate(rules=[RequiredStepRule(("premise",))]).evaluate(doc)

    assert report.passed
    assert report.score == 100.0
    assert report.reasons == []
    assert report.breakdown[0].scorer == "step-fidelity"


def test_gate_reports_every_failing_reason() -> None:
    doc = _document({"a": (FALLBACK, {}), "b": (FAILED, None)})
    gate = QualityGate(
        rules=[RequiredStepRule(("b",))],
        thresholds=QualityThresholds(min_score=60, max_fallback_ratio=0.5),
    )

    report = gate.evaluate(doc)

    assert not report.passed
    assert report.score == 25.0
    assert report.fallback_ratio == 1.0
    assert len(report.reasons) == 3
    assert [v.step for v in report.errors] == ["b"]


def test_warnings_alone_do_not_fail_the_gate() -> None:
    doc = _document(
        {
            "roster": (OK, ROSTER),
            "dialogue": (OK, {"voices": [{"character": "Ghost"}]}),
        }
    )

    report = QualityGate(rules=[CrossReferenceRule("dialogue", "voices[].character")]).evaluate(doc)

    assert report.passed
    assert len(report.violations) == 1


class WeightedScorer:
    name = "fixed"

    def __init__(self, ratio: float, weight: float) -> None:
        self.ratio = ratio
        self.weight = weight

    def score(self, document: AggregateDocument) -> float:
        return self.ratio


class BrokenRule:
    name = "broken"

    def check(self, document: AggregateDocument) -> list[QualityViolation]:
        raise RuntimeError("cannot read")


class BrokenScorer:
    name = "broken-scorer"
    weight = 1.0

    def score(self, document: AggregateDocument) -> float:
        raise RuntimeError("cannot score")


def test_score_is_a_weighted_mean() -> None:
    gate = QualityGate(scorers=[WeightedScorer(1.0, 3.0), WeightedScorer(0.0, 1.0)])

    assert gate.evaluate(AggregateDocument()).score == 75.0


def test_raising_rules_and_scorers_are_contained() -> None:
    gate = QualityGate(rules=[BrokenRule()], scorers=[BrokenScorer(), WeightedScorer(1.0, 1.0)])

    report = gate.evaluate(AggregateDocument())

    assert report.score == 50.0
    assert report.violations[0].rule == "broken"
    assert report.violations[0].severity is Severity.WARNING


def test_extended_gate_keeps_thresholds() -> None:
    base = QualityGate(thresholds=QualityThresholds(min_score=90))

    extended = base.extended(rules=[RequiredStepRule(("x",))], scorers=[WeightedScorer(1, 1)])

    assert extended.thresholds.min_score == 90
    assert len(extended.rules) == 1
    assert [s.name for s in extended.scorers] == ["step-fidelity", "fixed"]
    assert base.rules == ()
