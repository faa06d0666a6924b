"""Unit tests for the master conductor."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from story_conductor.conductor.conductor import MasterConductor, RunResult
from story_conductor.conductor.document import StepResult, StepStatus
from story_conductor.conductor.executor import ExecutionPolicy
from story_conductor.conductor.progress import ProgressSnapshot
from story_conductor.conductor.quality import QualityGate, QualityThresholds
from story_conductor.conductor.state_machine import ConductorState
from story_conductor.conductor.steps import (
    Deriver,
    FallbackBuilder,
    OutputShape,
    StepDefinition,
    StepInputs,
    StepRegistry,
)
from story_conductor.core.config import QualityPolicy
from story_conductor.errors import CyclicDependencyError, DocumentFrozenError, QualityGateFailed
from story_conductor.llm.provider import (
    GenerationClient,
    GenerationOptions,
    TransientGenerationError,
)


def _step(
    name: str,
    *deps: str,
    fallback: FallbackBuilder | None = None,
    derive: Deriver | None = None,
    prompt: Any = None,
) -> StepDefinition:
    return StepDefinition(
        name=name,
        build_prompt=prompt or (lambda _inputs: f"step:{name}"),
        shape=OutputShape(dict),
        fallback=fallback or (lambda _inputs: {"fallback": name}),
        depends_on=deps,
        derive=derive,
    )


def _echo(prompt: str) -> str | BaseException:
    """Reply with the step name taken from a ``step:<name>`` prompt."""
    return '{"text": "%s"}' % prompt.split(":", 1)[1]


def _run(conductor: MasterConductor, registry: StepRegistry, **kwargs: Any) -> RunResult:
    return asyncio.run(conductor.run(registry, **kwargs))


def test_failing_dependent_falls_back_on_upstream_payloads(
    scripted_client, fast_policy: ExecutionPolicy
) -> None:
    def respond(prompt: str) -> str | BaseException:
        if prompt == "step:C":
            return TransientGenerationError("C is down")
        return _echo(prompt)

    def combine(inputs: StepInputs) -> dict[str, Any]:
        return {"combined": [inputs.dep("A")["text"], inputs.dep("B")["text"]]}

    client = scripted_client(respond)
    registry = StepRegistry.of([_step("A"), _step("B"), _step("C", "A", "B", fallback=combine)])

    result = _run(MasterConductor(client, policy=fast_policy), registry)

    assert result.summary.waves == [["A", "B"], ["C"]]
    assert result.document.results["A"].status is StepStatus.SUCCEEDED
    assert result.document.results["B"].status is StepStatus.SUCCEEDED
    assert result.document.results["C"].status is StepStatus.SUCCEEDED_VIA_FALLBACK
    assert result.document.get("C") == {"combined": ["A", "B"]}
    assert result.state is ConductorState.COMPLETED_WITH_DEGRADATION
    assert result.degraded
    assert result.summary.succeeded == 2
    assert result.summary.succeeded_via_fallback == 1
    assert result.summary.failed == 0
    assert client.prompts.count("step:C") == fast_policy.max_attempts


def test_cycle_fails_before_any_generation(scripted_client, fast_policy: ExecutionPolicy) -> None:
    client = scripted_client(_echo)
    snapshots: list[ProgressSnapshot] = []
    registry = StepRegistry.of([_step("X", "Y"), _step("Y", "X")])

    with pytest.raises(CyclicDependencyError):
        _run(MasterConductor(client, policy=fast_policy), registry, observer=snapshots.append)

    assert client.calls == 0
    assert snapshots[-1].state == "failed"


def test_all_generated_run_completes_cleanly(scripted_client, fast_policy: ExecutionPolicy) -> None:
    client = scripted_client(_echo)
    registry = StepRegistry.of([_step("A"), _step("B", "A")])

    result = _run(MasterConductor(client, policy=fast_policy), registry)

    assert result.state is ConductorState.COMPLETED
    assert not result.degraded
    assert result.quality.passed
    assert result.quality.score == 100.0
    assert [s.wave for s in result.summary.steps] == [0, 1]


def test_empty_registry_completes(scripted_client, fast_policy: ExecutionPolicy) -> None:
    result = _run(MasterConductor(scripted_client(), policy=fast_policy), StepRegistry())

    assert result.state is ConductorState.COMPLETED
    assert result.summary.total_steps == 0
    assert result.quality.passed


class ConcurrencyTracker(GenerationClient):
    def __init__(self, delays: dict[str, float]) -> None:
        self.delays = delays
        self.in_flight = 0
        self.peak = 0
        self.finished: list[str] = []

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        name = prompt.split(":", 1)[1]
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        await asyncio.sleep(self.delays.get(name, 0.01))
        self.in_flight -= 1
        self.finished.append(name)
        return '{"text": "%s"}' % name


def test_wave_members_run_concurrently(fast_policy: ExecutionPolicy) -> None:
    client = ConcurrencyTracker({"A": 0.05, "B": 0.05, "C": 0.05})
    registry = StepRegistry.of([_step("A"), _step("B"), _step("C")])

    _run(MasterConductor(client, policy=fast_policy), registry)

    assert client.peak == 3


def test_next_wave_waits_for_slowest_dependency(fast_policy: ExecutionPolicy) -> None:
    seen: dict[str, Any] = {}

    def capture(inputs: StepInputs) -> str:
        seen.update(inputs.dependencies)
        return "step:late"

    client = ConcurrencyTracker({"slow": 0.1, "fast": 0.0})
    registry = StepRegistry.of(
        [_step("slow"), _step("fast"), _step("late", "slow", "fast", prompt=capture)]
    )

    _run(MasterConductor(client, policy=fast_policy), registry)

    assert seen == {"slow": {"text": "slow"}, "fast": {"text": "fast"}}
    assert client.finished.index("slow") < client.finished.index("late")


def test_results_merge_in_registration_order(fast_policy: ExecutionPolicy) -> None:
    client = ConcurrencyTracker({"first": 0.08, "second": 0.0})
    registry = StepRegistry.of([_step("first"), _step("second")])

    result = _run(MasterConductor(client, policy=fast_policy), registry)

    assert client.finished == ["second", "first"]
    assert list(result.document.results) == ["first", "second"]


def test_derived_signals_reach_later_waves(scripted_client, fast_policy: ExecutionPolicy) -> None:
    seen: list[StepInputs] = []

    def capture(inputs: StepInputs) -> str:
        seen.append(inputs)
        return "step:count"

    registry = StepRegistry.of(
        [
            _step("cast", derive=lambda payload: {"cast_size": len(payload["text"])}),
            _step("count", "cast", prompt=capture),
        ]
    )

    result = _run(MasterConductor(scripted_client(_echo), policy=fast_policy), registry)

    assert seen[0].signal("cast_size") == 4
    assert dict(result.document.derived) == {"cast_size": 4}


def test_signals_of_undeclared_steps_stay_hidden(
    scripted_client, fast_policy: ExecutionPolicy
) -> None:
    seen: list[StepInputs] = []

    def capture(inputs: StepInputs) -> str:
        seen.append(inputs)
        return "step:late"

    registry = StepRegistry.of(
        [
            _step("A", derive=lambda _payload: {"arc_count": 42}),
            _step("Z", derive=lambda _payload: {"scene_count": 3}),
            _step("mid", "Z"),
            _step("late", "mid", prompt=capture),
        ]
    )

    result = _run(MasterConductor(scripted_client(_echo), policy=fast_policy), registry)

    assert dict(seen[0].signals) == {}
    assert list(seen[0].dependencies) == ["mid"]
    assert dict(result.document.derived) == {"arc_count": 42, "scene_count": 3}


def test_failing_deriver_is_ignored(scripted_client, fast_policy: ExecutionPolicy) -> None:
    def broken(_payload: Any) -> dict[str, Any]:
        raise KeyError("items")

    registry = StepRegistry.of([_step("A", derive=broken)])

    result = _run(MasterConductor(scripted_client(_echo), policy=fast_policy), registry)

    assert result.state is ConductorState.COMPLETED
    assert dict(result.document.derived) == {}


def test_progress_is_observable_mid_run(scripted_client, fast_policy: ExecutionPolicy) -> None:
    snapshots: list[ProgressSnapshot] = []
    registry = StepRegistry.of([_step("A"), _step("B", "A"), _step("C", "B")])

    _run(
        MasterConductor(scripted_client(_echo), policy=fast_policy),
        registry,
        observer=snapshots.append,
        run_id="run-1",
    )

    states = [s.state for s in snapshots]
    assert states[0] == "planning"
    assert states[-1] == "completed"
    assert "validating" in states
    mid = [s for s in snapshots if s.state == "executing" and 0 < s.percent < 100]
    assert mid
    assert {s.current_wave for s in snapshots if s.state == "executing"} == {0, 1, 2}
    final = snapshots[-1]
    assert final.run_id == "run-1"
    assert final.percent == 100
    assert [s.status for s in final.steps] == ["completed", "completed", "completed"]


def test_failing_observer_does_not_break_the_run(
    scripted_client, fast_policy: ExecutionPolicy
) -> None:
    def observer(_snapshot: ProgressSnapshot) -> None:
        raise RuntimeError("dashboard offline")

    result = _run(
        MasterConductor(scripted_client(_echo), policy=fast_policy),
        StepRegistry.of([_step("A")]),
        observer=observer,
    )

    assert result.state is ConductorState.COMPLETED


def test_blocking_policy_raises_with_the_result(
    failing_client, fast_policy: ExecutionPolicy
) -> None:
    conductor = MasterConductor(
        failing_client,
        policy=fast_policy,
        quality_gate=QualityGate(thresholds=QualityThresholds(max_fallback_ratio=0.5)),
        quality_policy=QualityPolicy.BLOCK,
    )

    with pytest.raises(QualityGateFailed) as excinfo:
        _run(conductor, StepRegistry.of([_step("A"), _step("B", "A")]))

    result = excinfo.value.result
    assert result.state is ConductorState.COMPLETED_WITH_DEGRADATION
    assert not result.quality.passed
    assert result.document.get("B") == {"fallback": "B"}


def test_warning_policy_returns_failing_result(
    failing_client, fast_policy: ExecutionPolicy
) -> None:
    result = _run(
        MasterConductor(failing_client, policy=fast_policy),
        StepRegistry.of([_step("A")]),
    )

    assert not result.quality.passed
    assert result.quality.fallback_ratio == 1.0


def test_document_is_frozen_after_the_run(scripted_client, fast_policy: ExecutionPolicy) -> None:
    result = _run(
        MasterConductor(scripted_client(_echo), policy=fast_policy),
        StepRegistry.of([_step("A")]),
    )

    assert result.document.frozen
    with pytest.raises(DocumentFrozenError):
        result.document.merge(
            StepResult(name="late", status=StepStatus.SUCCEEDED, payload={}, elapsed_seconds=0)
        )


def test_concurrent_runs_do_not_share_state(scripted_client, fast_policy: ExecutionPolicy) -> None:
    conductor = MasterConductor(scripted_client(_echo, delay=0.01), policy=fast_policy)

    def registry() -> StepRegistry:
        return StepRegistry.of([_step("A"), _step("B", "A")])

    async def both() -> list[RunResult]:
        return list(
            await asyncio.gather(
                conductor.run(registry(), {"who": "first"}),
                conductor.run(registry(), {"who": "second"}),
            )
        )

    first, second = asyncio.run(both())

    assert first.summary.run_id != second.summary.run_id
    assert first.document is not second.document
    assert first.document.context["who"] == "first"
    assert second.document.context["who"] == "second"


def test_run_result_serializes(scripted_client, fast_policy: ExecutionPolicy) -> None:
    result = _run(
        MasterConductor(scripted_client(_echo), policy=fast_policy),
        StepRegistry.of([_step("A")]),
    )

    data = result.to_dict()

    assert data["summary"]["state"] == "completed"
    assert data["summary"]["steps"][0]["status"] == "succeeded"
    assert data["document"]["steps"] == {"A": {"text": "A"}}
    assert data["quality"]["passed"] is True


def test_from_config_uses_settings(conductor_config, scripted_client) -> None:
    client = scripted_client()

    conductor = MasterConductor.from_config(conductor_config, client=client)

    assert conductor.client is client
    assert conductor.executor.policy.max_attempts == 2
    assert conductor.quality_policy is QualityPolicy.WARN
    assert conductor.quality_gate.thresholds.min_score == 60.0
