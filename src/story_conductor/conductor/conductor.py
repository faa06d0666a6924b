"""The master conductor.

Plans a step registry into waves, runs each wave concurrently behind a barrier,
merges results between waves, and hands the finished document to the quality
gate. All mutable run state lives on a `RunContext` created per invocation.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from story_conductor.conductor.document import AggregateDocument, StepResult, StepStatus
from story_conductor.conductor.executor import ExecutionPolicy, StepExecutor
from story_conductor.conductor.progress import ProgressObserver, RunProgress
from story_conductor.conductor.quality import QualityGate, QualityReport, QualityThresholds
from story_conductor.conductor.resolver import ExecutionPlan, resolve_plan
from story_conductor.conductor.state_machine import (
    ConductorSnapshot,
    ConductorState,
    transition,
)
from story_conductor.conductor.steps import StepDefinition, StepRegistry
from story_conductor.core.config import ConductorConfig, QualityPolicy
from story_conductor.errors import PlanningError, QualityGateFailed
from story_conductor.llm.provider import GenerationClient

logger = logging.getLogger(__name__)


class StepDiagnostic(BaseModel):
    name: str
    status: StepStatus
    wave: int
    attempts: int
    elapsed_seconds: float
    diagnostic: str | None = None


class RunSummary(BaseModel):
    run_id: str
    state: ConductorState
    waves: list[list[str]] = Field(default_factory=list)
    total_steps: int = 0
    succeeded: int = 0
    succeeded_via_fallback: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0
    steps: list[StepDiagnostic] = Field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RunResult:
    document: AggregateDocument
    summary: RunSummary
    quality: QualityReport

    @property
    def state(self) -> ConductorState:
        return self.summary.state

    @property
    def degraded(self) -> bool:
        return self.summary.state is ConductorState.COMPLETED_WITH_DEGRADATION

    def to_dict(self) -> dict[str, Any]:
        return {
            "summary": self.summary.model_dump(mode="json"),
            "quality": self.quality.model_dump(mode="json"),
            "document": self.document.to_dict(),
        }


@dataclass
class RunContext:
    """Everything one invocation owns: document, progress and state."""

    run_id: str
    registry: StepRegistry
    document: AggregateDocument
    progress: RunProgress
    state: ConductorSnapshot = field(default_factory=ConductorSnapshot)
    plan: ExecutionPlan | None = None

    @classmethod
    def create(
        cls,
        registry: StepRegistry,
        context: Mapping[str, Any] | None = None,
        *,
        observer: ProgressObserver | None = None,
        run_id: str | None = None,
    ) -> RunContext:
        run_id = run_id or uuid.uuid4().hex
        return cls(
            run_id=run_id,
            registry=registry,
            document=AggregateDocument(context),
            progress=RunProgress(run_id, observer=observer),
        )

    def advance(self, to: ConductorState, wave: int | None = None) -> None:
        self.state = transition(current=self.state, to=to, wave=wave)
        self.progress.set_state(self.state.state.value, wave)
        logger.debug(
            "Conductor state changed",
            extra={"run_id": self.run_id, **self.state.to_json()},
        )


class MasterConductor:
    def __init__(
        self,
        client: GenerationClient,
        *,
        policy: ExecutionPolicy | None = None,
        quality_gate: QualityGate | None = None,
        quality_policy: QualityPolicy = QualityPolicy.WARN,
    ) -> None:
        self.client = client
        self.executor = StepExecutor(client, policy)
        self.quality_gate = quality_gate or QualityGate()
        self.quality_policy = quality_policy

    @classmethod
    def from_config(
        cls, config: ConductorConfig, client: GenerationClient | None = None
    ) -> MasterConductor:
        """Build a conductor from settings, creating the client if none is given."""

        if client is None:
            from story_conductor.llm.factory import LLMFactory

            client = LLMFactory.create(config.llm)
        return cls(
            client,
            policy=ExecutionPolicy.from_config(config.execution),
            quality_gate=QualityGate(thresholds=QualityThresholds.from_config(config.quality)),
            quality_policy=config.quality.policy,
        )

    def plan(self, registry: StepRegistry) -> ExecutionPlan:
        return resolve_plan(registry)

    async def run(
        self,
        registry: StepRegistry,
        context: Mapping[str, Any] | None = None,
        *,
        observer: ProgressObserver | None = None,
        quality_gate: QualityGate | None = None,
        run_id: str | None = None,
    ) -> RunResult:
        run = RunContext.create(registry, context, observer=observer, run_id=run_id)
        return await self.execute(run, quality_gate=quality_gate)

    async def execute(
        self, run: RunContext, *, quality_gate: QualityGate | None = None
    ) -> RunResult:
        """Drive a prepared run to a terminal state.

        Raises:
            PlanningError: The registry cannot be planned. No step has run.
            QualityGateFailed: The report failed under the blocking policy.
        """

        started = time.monotonic()
        run.advance(ConductorState.PLANNING)
        try:
            plan = resolve_plan(run.registry)
        except PlanningError as e:
            run.advance(ConductorState.FAILED)
            logger.error("Planning failed", extra={"run_id": run.run_id, "error": str(e)})
            raise

        run.plan = plan
        run.progress.initialize(plan)
        logger.info(
            "Execution plan resolved",
            extra={"run_id": run.run_id, "waves": plan.to_json(), "steps": plan.step_count},
        )

        for index, wave in enumerate(plan):
            run.advance(ConductorState.EXECUTING, wave=index)
            await self._run_wave(run, index, wave)

        run.advance(ConductorState.VALIDATING)
        gate = quality_gate or self.quality_gate
        report = gate.evaluate(run.document)
        run.document.freeze()

        results = run.document.results
        degraded = any(r.status is not StepStatus.SUCCEEDED for r in results.values())
        run.advance(
            ConductorState.COMPLETED_WITH_DEGRADATION if degraded else ConductorState.COMPLETED
        )

        summary = _summarize(run, plan, time.monotonic() - started)
        result = RunResult(document=run.document, summary=summary, quality=report)
        logger.info(
            "Run finished",
            extra={
                "run_id": run.run_id,
                "state": summary.state.value,
                "elapsed_seconds": round(summary.elapsed_seconds, 3),
                "score": report.score,
            },
        )

        if not report.passed:
            if self.quality_policy is QualityPolicy.BLOCK:
                raise QualityGateFailed(result)
            logger.warning(
                "Quality gate did not pass",
                extra={"run_id": run.run_id, "reasons": report.reasons},
            )
        return result

    async def _run_wave(self, run: RunContext, index: int, wave: tuple[str, ...]) -> None:
        snapshot = run.document.snapshot()
        steps = [run.registry.get(name) for name in wave]
        logger.info(
            "Starting wave",
            extra={"run_id": run.run_id, "wave": index, "steps": list(wave)},
        )

        async def run_step(step: StepDefinition) -> StepResult:
            run.progress.step_started(step.name)
            result = await self.executor.execute(step, snapshot)
            run.progress.step_finished(result)
            return result

        results = await asyncio.gather(*(run_step(step) for step in steps))

        # Merge strictly after the barrier, in registration order.
        for step, result in zip(steps, results, strict=True):
            run.document.merge(result, self._derive(run, step, result))

    @staticmethod
    def _derive(run: RunContext, step: StepDefinition, result: StepResult) -> dict[str, Any] | None:
        if step.derive is None or result.payload is None:
            return None
        try:
            return dict(step.derive(result.payload))
        except Exception as e:
            logger.warning(
                "Deriving signals failed",
                extra={"run_id": run.run_id, "step": step.name, "error": str(e)},
            )
            return None


def _summarize(run: RunContext, plan: ExecutionPlan, elapsed: float) -> RunSummary:
    wave_of = plan.wave_index()
    results = run.document.results
    counts = {status: 0 for status in StepStatus}
    diagnostics = []
    for name in plan.ordered_steps():
        result = results[name]
        counts[result.status] += 1
        diagnostics.append(
            StepDiagnostic(
                name=name,
                status=result.status,
                wave=wave_of[name],
                attempts=result.attempts,
                elapsed_seconds=round(result.elapsed_seconds, 4),
                diagnostic=result.diagnostic,
            )
        )
    return RunSummary(
        run_id=run.run_id,
        state=run.state.state,
        waves=plan.to_json(),
        total_steps=plan.step_count,
        succeeded=counts[StepStatus.SUCCEEDED],
        succeeded_via_fallback=counts[StepStatus.SUCCEEDED_VIA_FALLBACK],
        failed=counts[StepStatus.FAILED],
        elapsed_seconds=elapsed,
        steps=diagnostics,
    )
