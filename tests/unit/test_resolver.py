"""Unit tests for dependency resolution."""

from __future__ import annotations

import random

import pytest

from story_conductor.conductor.resolver import resolve_plan
from story_conductor.conductor.steps import OutputShape, StepDefinition, StepRegistry
from story_conductor.errors import (
    CyclicDependencyError,
    DuplicateStepError,
    UnknownDependencyError,
)


def _step(name: str, *deps: str) -> StepDefinition:
    return StepDefinition(
        name=name,
        build_prompt=lambda _inputs: name,
        shape=OutputShape(dict),
        fallback=lambda _inputs: {},
        depends_on=deps,
    )


def test_independent_steps_share_first_wave() -> None:
    registry = StepRegistry.of([_step("A"), _step("B"), _step("C", "A", "B")])

    plan = resolve_plan(registry)

    assert plan.to_json() == [["A", "B"], ["C"]]
    assert plan.step_count == 3
    assert plan.wave_index() == {"A": 0, "B": 0, "C": 1}


def test_waves_keep_registration_order() -> None:
    registry = StepRegistry.of(
        [_step("root"), _step("zeta", "root"), _step("alpha", "root"), _step("mid", "root")]
    )

    plan = resolve_plan(registry)

    assert plan.to_json() == [["root"], ["zeta", "alpha", "mid"]]


def test_step_waits_for_its_deepest_dependency() -> None:
    registry = StepRegistry.of(
        [_step("a"), _step("b", "a"), _step("c", "b"), _step("d", "a", "c")]
    )

    plan = resolve_plan(registry)

    assert plan.to_json() == [["a"], ["b"], ["c"], ["d"]]


def test_duplicate_dependency_entries_count_once() -> None:
    registry = StepRegistry.of([_step("a"), _step("b", "a", "a")])

    assert resolve_plan(registry).to_json() == [["a"], ["b"]]


def test_empty_registry_yields_empty_plan() -> None:
    plan = resolve_plan(StepRegistry())

    assert plan.to_json() == []
    assert plan.step_count == 0


def test_unknown_dependency_is_rejected() -> None:
    registry = StepRegistry.of([_step("a"), _step("b", "a", "ghost")])

    with pytest.raises(UnknownDependencyError) as excinfo:
        resolve_plan(registry)

    assert excinfo.value.step == "b"
    assert excinfo.value.missing == ("ghost",)


def test_two_step_cycle_is_reported() -> None:
    registry = StepRegistry.of([_step("X", "Y"), _step("Y", "X")])

    with pytest.raises(CyclicDependencyError) as excinfo:
        resolve_plan(registry)

    cycle = excinfo.value.cycle
    assert cycle[0] == cycle[-1]
    assert set(cycle) == {"X", "Y"}


def test_self_dependency_is_a_cycle() -> None:
    registry = StepRegistry.of([_step("a"), _step("loop", "loop")])

    with pytest.raises(CyclicDependencyError) as excinfo:
        resolve_plan(registry)

    assert excinfo.value.cycle == ["loop", "loop"]


def test_cycle_behind_acyclic_prefix() -> None:
    registry = StepRegistry.of(
        [_step("a"), _step("b", "a", "d"), _step("c", "b"), _step("d", "c")]
    )

    with pytest.raises(CyclicDependencyError) as excinfo:
        resolve_plan(registry)

    assert set(excinfo.value.cycle) == {"b", "c", "d"}


def test_duplicate_registration_is_rejected() -> None:
    registry = StepRegistry.of([_step("a")])

    with pytest.raises(DuplicateStepError):
        registry.register(_step("a"))


def test_random_dags_place_every_step_after_its_dependencies() -> None:
    rng = random.Random(1234)
    for _ in range(50):
        size = rng.randint(1, 25)
        steps = []
        for i in range(size):
            deps = [f"s{j}" for j in range(i) if rng.random() < 0.2]
            steps.append(_step(f"s{i}", *deps))
        rng.shuffle(steps)
        registry = StepRegistry.of(steps)

        plan = resolve_plan(registry)
        wave_of = plan.wave_index()

        assert sorted(plan.ordered_steps()) == sorted(registry.names())
        for step in registry:
            for dep in step.depends_on:
                assert wave_of[dep] < wave_of[step.name]
            if step.depends_on:
                assert wave_of[step.name] == 1 + max(wave_of[d] for d in step.depends_on)
            else:
                assert wave_of[step.name] == 0
