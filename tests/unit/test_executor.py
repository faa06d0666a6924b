"""Unit tests for single-step execution."""

from __future__ import annotations

import asyncio
import time
from typing import Any

from pydantic import BaseModel

from story_conductor.conductor.document import AggregateDocument, StepResult, StepStatus
from story_conductor.conductor.executor import ExecutionPolicy, StepExecutor
from story_conductor.conductor.steps import OutputShape, StepDefinition, StepInputs
from story_conductor.llm.provider import TransientGenerationError


class Summary(BaseModel):
    summary: str


def _summary_step(**overrides: Any) -> StepDefinition:
    fields: dict[str, Any] = {
        "name": "summary",
        "build_prompt": lambda inputs: f"summarize {inputs.context.get('synopsis')}",
        "shape": OutputShape(Summary),
        "fallback": lambda inputs: {"summary": f"fallback for {inputs.context.get('synopsis')}"},
        "system_prompt": "Answer in JSON.",
        "temperature": 0.2,
        "max_output_tokens": 300,
    }
    fields.update(overrides)
    return StepDefinition(**fields)


def _execute(executor: StepExecutor, step: StepDefinition, doc: AggregateDocument) -> StepResult:
    return asyncio.run(executor.execute(step, doc.snapshot()))


def test_success_on_first_attempt(scripted_client, fast_policy: ExecutionPolicy) -> None:
    client = scripted_client(lambda _p: 'Here: {"summary": "A lighthouse keeper lies."}')
    executor = StepExecutor(client, fast_policy)

    result = _execute(executor, _summary_step(), AggregateDocument({"synopsis": "tides"}))

    assert result.status is StepStatus.SUCCEEDED
    assert result.payload == {"summary": "A lighthouse keeper lies."}
    assert result.attempts == 1
    assert result.diagnostic is None
    assert client.prompts == ["summarize tides"]


def test_generation_options_come_from_the_step(
    scripted_client, fast_policy: ExecutionPolicy
) -> None:
    client = scripted_client(lambda _p: '{"summary": "ok"}')
    executor = StepExecutor(client, fast_policy)

    _execute(executor, _summary_step(), AggregateDocument())

    options = client.options[0]
    assert options.temperature == 0.2
    assert options.max_output_tokens == 300
    assert options.system_prompt == "Answer in JSON."
    assert options.timeout_ms == 200


def test_retries_after_transient_failure(scripted_client, fast_policy: ExecutionPolicy) -> None:
    replies: list[Any] = [TransientGenerationError("503"), '{"summary": "second time"}']
    client = scripted_client(lambda _p: replies.pop(0))
    executor = StepExecutor(client, fast_policy)

    result = _execute(executor, _summary_step(), AggregateDocument())

    assert result.status is StepStatus.SUCCEEDED
    assert result.attempts == 2
    assert client.calls == 2


def test_unparseable_and_mismatched_output_is_retried(
    scripted_client, fast_policy: ExecutionPolicy
) -> None:
    policy = ExecutionPolicy(
        max_attempts=3, attempt_timeout_seconds=1, backoff_base_seconds=0, backoff_max_seconds=0
    )
    replies = ["no json here", '{"title": "wrong shape"}', '{"summary": "finally"}']
    client = scripted_client(lambda _p: replies.pop(0))
    executor = StepExecutor(client, policy)

    result = _execute(executor, _summary_step(), AggregateDocument())

    assert result.status is StepStatus.SUCCEEDED
    assert result.payload == {"summary": "finally"}
    assert result.attempts == 3


def test_exhausted_attempts_use_fallback(failing_client, fast_policy: ExecutionPolicy) -> None:
    executor = StepExecutor(failing_client, fast_policy)

    result = _execute(executor, _summary_step(), AggregateDocument({"synopsis": "tides"}))

    assert result.status is StepStatus.SUCCEEDED_VIA_FALLBACK
    assert result.payload == {"summary": "fallback for tides"}
    assert result.attempts == 2
    assert result.used_fallback
    assert "after 2 attempt(s)" in (result.diagnostic or "")
    assert "TransientGenerationError" in (result.diagnostic or "")
    assert failing_client.calls == 2


def test_step_attempt_limit_overrides_policy(failing_client, fast_policy: ExecutionPolicy) -> None:
    executor = StepExecutor(failing_client, fast_policy)

    result = _execute(executor, _summary_step(max_attempts=1), AggregateDocument())

    assert result.attempts == 1
    assert failing_client.calls == 1


def test_hanging_client_times_out_within_bound(scripted_client) -> None:
    client = scripted_client(lambda _p: '{"summary": "too late"}', delay=30)
    policy = ExecutionPolicy(
        max_attempts=2,
        attempt_timeout_seconds=0.05,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
    )
    executor = StepExecutor(client, policy)

    started = time.monotonic()
    result = _execute(executor, _summary_step(), AggregateDocument())
    elapsed = time.monotonic() - started

    assert result.status is StepStatus.SUCCEEDED_VIA_FALLBACK
    assert "GenerationTimeoutError" in (result.diagnostic or "")
    assert client.calls == 2
    assert elapsed < 2.0


def test_invalid_fallback_marks_step_failed(failing_client, fast_policy: ExecutionPolicy) -> None:
    executor = StepExecutor(failing_client, fast_policy)
    step = _summary_step(fallback=lambda _inputs: {"unexpected": True})

    result = _execute(executor, step, AggregateDocument())

    assert result.status is StepStatus.FAILED
    assert result.payload is None
    assert "fallback for 'summary' failed" in (result.diagnostic or "")


def test_raising_fallback_marks_step_failed(failing_client, fast_policy: ExecutionPolicy) -> None:
    def broken(_inputs: StepInputs) -> Any:
        raise KeyError("premise")

    executor = StepExecutor(failing_client, fast_policy)

    result = _execute(executor, _summary_step(fallback=broken), AggregateDocument())

    assert result.status is StepStatus.FAILED
    assert result.payload is None
    assert "KeyError" in (result.diagnostic or "")


def test_prompt_builder_error_goes_straight_to_fallback(
    scripted_client, fast_policy: ExecutionPolicy
) -> None:
    def bad_prompt(_inputs: StepInputs) -> str:
        raise ValueError("missing context")

    client = scripted_client()
    executor = StepExecutor(client, fast_policy)

    result = _execute(executor, _summary_step(build_prompt=bad_prompt), AggregateDocument())

    assert result.status is StepStatus.SUCCEEDED_VIA_FALLBACK
    assert result.attempts == 0
    assert client.calls == 0


def test_inputs_are_restricted_to_declared_dependencies(
    scripted_client, fast_policy: ExecutionPolicy
) -> None:
    seen: list[StepInputs] = []

    def capture(inputs: StepInputs) -> str:
        seen.append(inputs)
        return "prompt"

    doc = AggregateDocument({"synopsis": "tides"})
    for name, payload in (("premise", {"p": 1}), ("world", {"w": 2})):
        doc.merge(
            StepResult(name=name, status=StepStatus.SUCCEEDED, payload=payload, elapsed_seconds=0)
        )

    client = scripted_client(lambda _p: '{"summary": "ok"}')
    executor = StepExecutor(client, fast_policy)
    _execute(executor, _summary_step(build_prompt=capture, depends_on=("premise",)), doc)

    inputs = seen[0]
    assert dict(inputs.dependencies) == {"premise": {"p": 1}}
    assert inputs.dep("world") is None
    assert inputs.context["synopsis"] == "tides"


def test_failed_dependency_is_seen_as_none(scripted_client, fast_policy: ExecutionPolicy) -> None:
    seen: list[StepInputs] = []

    def capture(inputs: StepInputs) -> str:
        seen.append(inputs)
        return "prompt"

    doc = AggregateDocument()
    doc.merge(StepResult(name="premise", status=StepStatus.FAILED, payload=None, elapsed_seconds=0))

    executor = StepExecutor(scripted_client(lambda _p: '{"summary": "ok"}'), fast_policy)
    _execute(executor, _summary_step(build_prompt=capture, depends_on=("premise",)), doc)

    assert dict(seen[0].dependencies) == {"premise": None}
    assert seen[0].dep("premise", {}) == {}
