"""Dependency resolution: step registry -> execution plan of waves.

Kahn's algorithm, grouping every zero-in-degree extraction of one iteration
into a single wave. Within a wave steps keep registration order.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from story_conductor.conductor.steps import StepRegistry
from story_conductor.errors import CyclicDependencyError, UnknownDependencyError


@dataclass(frozen=True, slots=True)
class ExecutionPlan:
    """Ordered waves; steps inside a wave may run concurrently."""

    waves: tuple[tuple[str, ...], ...]

    def __iter__(self) -> Iterator[tuple[str, ...]]:
        return iter(self.waves)

    def __len__(self) -> int:
        return len(self.waves)

    @property
    def step_count(self) -> int:
        return sum(len(w) for w in self.waves)

    def wave_index(self) -> dict[str, int]:
        return {name: i for i, wave in enumerate(self.waves) for name in wave}

    def ordered_steps(self) -> list[str]:
        return [name for wave in self.waves for name in wave]

    def to_json(self) -> list[list[str]]:
        return [list(w) for w in self.waves]


def resolve_plan(registry: StepRegistry) -> ExecutionPlan:
    """Compute the execution plan for a registry.

    Raises:
        UnknownDependencyError: A step depends on a name that is not registered.
        CyclicDependencyError: The dependency graph is not acyclic.
    """

    order = registry.names()
    position = {name: i for i, name in enumerate(order)}

    for step in registry:
        missing = [d for d in step.depends_on if d not in position]
        if missing:
            raise UnknownDependencyError(step.name, missing)

    in_degree: dict[str, int] = {}
    dependents: dict[str, list[str]] = {name: [] for name in order}
    for step in registry:
        deps = set(step.depends_on)
        in_degree[step.name] = len(deps)
        for dep in deps:
            dependents[dep].append(step.name)

    waves: list[tuple[str, ...]] = []
    ready = [name for name in order if in_degree[name] == 0]
    placed = 0

    while ready:
        wave = tuple(sorted(ready, key=position.__getitem__))
        waves.append(wave)
        placed += len(wave)

        next_ready: list[str] = []
        for name in wave:
            for dependent in dependents[name]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    next_ready.append(dependent)
        ready = next_ready

    if placed != len(order):
        remaining = [name for name in order if in_degree[name] > 0]
        raise CyclicDependencyError(_find_cycle(registry, remaining))

    return ExecutionPlan(waves=tuple(waves))


def _find_cycle(registry: StepRegistry, remaining: list[str]) -> list[str]:
    """Return one concrete cycle among the unresolved steps.

    Every unresolved step has at least one unresolved dependency, so walking
    dependencies from any of them must revisit a node.
    """

    unresolved = set(remaining)
    start = remaining[0]
    path: list[str] = []
    seen_at: dict[str, int] = {}
    node = start
    while node not in seen_at:
        seen_at[node] = len(path)
        path.append(node)
        step = registry.get(node)
        node = next(d for d in step.depends_on if d in unresolved)
    cycle = path[seen_at[node] :]
    return [*cycle, node]
