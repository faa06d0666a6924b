"""Dependency-aware orchestration of generation steps."""

from story_conductor.conductor.conductor import (
    MasterConductor,
    RunContext,
    RunResult,
    RunSummary,
)
from story_conductor.conductor.document import AggregateDocument, StepResult, StepStatus
from story_conductor.conductor.executor import ExecutionPolicy, StepExecutor
from story_conductor.conductor.quality import (
    CrossReferenceRule,
    MinimumCountRule,
    QualityGate,
    QualityReport,
    QualityThresholds,
    RequiredStepRule,
    StepFidelityScorer,
)
from story_conductor.conductor.resolver import ExecutionPlan, resolve_plan
from story_conductor.conductor.state_machine import ConductorState
from story_conductor.conductor.steps import OutputShape, StepDefinition, StepInputs, StepRegistry

__all__ = [
    "AggregateDocument",
    "ConductorState",
    "CrossReferenceRule",
    "ExecutionPlan",
    "ExecutionPolicy",
    "MasterConductor",
    "MinimumCountRule",
    "OutputShape",
    "QualityGate",
    "QualityReport",
    "QualityThresholds",
    "RequiredStepRule",
    "RunContext",
    "RunResult",
    "RunSummary",
    "StepDefinition",
    "StepExecutor",
    "StepFidelityScorer",
    "StepInputs",
    "StepRegistry",
    "StepResult",
    "StepStatus",
    "resolve_plan",
]
