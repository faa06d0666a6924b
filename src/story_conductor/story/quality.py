"""Story-specific quality rules and scorers."""

from __future__ import annotations

from dataclasses import dataclass

from story_conductor.conductor.document import AggregateDocument
from story_conductor.conductor.fallback import word_count
from story_conductor.conductor.quality import (
    CrossReferenceRule,
    MinimumCountRule,
    QualityRule,
    QualityScorer,
    RequiredStepRule,
)

PREMISE_TARGET_WORDS = 12


@dataclass(frozen=True, slots=True)
class PremiseScorer:
    """Premise statement length plus presence of conflict and resolution."""

    weight: float = 1.0
    name: str = "premise"

    def score(self, document: AggregateDocument) -> float:
        premise = document.get("premise")
        if not premise:
            return 0.0
        length = min(word_count(premise.get("premise_statement")) / PREMISE_TARGET_WORDS, 1.0)
        parts = sum(1 for key in ("conflict", "resolution") if premise.get(key))
        return (length + parts) / 3


@dataclass(frozen=True, slots=True)
class CastScorer:
    """Share of character profiles with motivation, flaw and arc filled in."""

    weight: float = 1.0
    name: str = "cast"

    def score(self, document: AggregateDocument) -> float:
        profiles = (document.get("characters") or {}).get("characters", [])
        if not profiles:
            return 0.0
        complete = sum(
            1 for p in profiles if all(p.get(key) for key in ("motivation", "flaw", "arc"))
        )
        return complete / len(profiles)


@dataclass(frozen=True, slots=True)
class StructureScorer:
    """Share of narrative arcs that carry at least one episode."""

    weight: float = 1.0
    name: str = "structure"

    def score(self, document: AggregateDocument) -> float:
        arcs = (document.get("narrative") or {}).get("arcs", [])
        if not arcs:
            return 0.0
        return sum(1 for arc in arcs if arc.get("episodes")) / len(arcs)


@dataclass(frozen=True, slots=True)
class WorldScorer:
    """Setting, rules and locations each contribute a third."""

    weight: float = 1.0
    name: str = "world"

    def score(self, document: AggregateDocument) -> float:
        world = document.get("world")
        if not world:
            return 0.0
        return sum(1 for key in ("setting", "rules", "locations") if world.get(key)) / 3


def story_bible_rules() -> list[QualityRule]:
    return [
        RequiredStepRule(steps=("premise", "roster", "characters", "narrative")),
        CrossReferenceRule(step="characters", path="characters[].name"),
        CrossReferenceRule(step="dialogue", path="voices[].character"),
        CrossReferenceRule(step="choices", path="decisions[].character"),
        CrossReferenceRule(step="cohesion", path="character_arcs[].character"),
        MinimumCountRule(field="character_count", minimum=1),
        MinimumCountRule(field="arc_count", minimum=1),
    ]


def story_bible_scorers() -> list[QualityScorer]:
    return [PremiseScorer(), CastScorer(), StructureScorer(), WorldScorer()]


def episode_rules() -> list[QualityRule]:
    return [
        RequiredStepRule(steps=("outline", "scenes")),
        CrossReferenceRule(
            step="episode_dialogue",
            path="lines[].character",
            roster_step="roster",
            roster_in_context=True,
        ),
        MinimumCountRule(field="scene_count", minimum=1),
    ]
