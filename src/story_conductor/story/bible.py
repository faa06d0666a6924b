"""Story bible pipeline: registry construction, execution and assembly."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from story_conductor.conductor.conductor import MasterConductor, RunResult
from story_conductor.conductor.document import StepStatus
from story_conductor.conductor.fallback import extract_named_roles
from story_conductor.conductor.progress import ProgressObserver
from story_conductor.conductor.quality import QualityGate
from story_conductor.conductor.steps import StepRegistry
from story_conductor.story import fallbacks
from story_conductor.story.models import (
    CastSize,
    CharacterSet,
    ChoiceArchitecture,
    CohesionAnalysis,
    DialogueSystem,
    GenreCraft,
    GenreProfile,
    LivingWorld,
    MarketingHooks,
    Narrative,
    Premise,
    Roster,
    SeriesTitle,
    StoryBibleRequest,
    TensionSystem,
    ThemeIntegration,
    TropeAnalysis,
    World,
)
from story_conductor.story.prompts import story_step
from story_conductor.story.quality import story_bible_rules, story_bible_scorers

logger = logging.getLogger(__name__)

# Checked in order; the first keyword contained in the theme wins.
THEME_GENRES: tuple[tuple[str, str], ...] = (
    ("love", "romance"),
    ("redemption", "drama"),
    ("power", "thriller"),
    ("truth", "mystery"),
    ("survival", "action"),
    ("family", "drama"),
    ("friendship", "comedy"),
    ("justice", "crime"),
    ("growth", "coming_of_age"),
    ("sacrifice", "drama"),
)

# step name -> (genre keywords that enable it, craft focus)
GENRE_CRAFT_STEPS: dict[str, tuple[tuple[str, ...], str]] = {
    "comedy_timing": (("comedy", "comedic", "sitcom"), "Comedic timing"),
    "horror_atmosphere": (("horror", "supernatural"), "Atmosphere and dread"),
    "romance_chemistry": (("romance", "romantic"), "Romantic chemistry"),
    "mystery_construction": (("mystery", "crime", "detective", "noir"), "Mystery construction"),
}


def infer_genre(theme: str | None) -> str | None:
    """Genre implied by theme keywords, or None when nothing matches."""

    if not theme:
        return None
    lowered = theme.lower()
    for keyword, genre in THEME_GENRES:
        if keyword in lowered:
            return genre
    return None


def resolve_genre(request: StoryBibleRequest) -> str | None:
    if request.genre:
        return request.genre.lower()
    return infer_genre(request.theme)


def genre_craft_steps(genre: str | None) -> list[str]:
    if not genre:
        return []
    lowered = genre.lower()
    return [
        name
        for name, (keywords, _focus) in GENRE_CRAFT_STEPS.items()
        if any(keyword in lowered for keyword in keywords)
    ]


def story_bible_context(request: StoryBibleRequest) -> dict[str, Any]:
    return {
        "synopsis": request.synopsis,
        "theme": request.theme,
        "genre": resolve_genre(request),
        "character_count": request.character_count,
        "characters": list(request.characters),
        "protagonist": request.protagonist,
        "setting": request.setting,
        "seed_roster": fallbacks.seed_roster(request.protagonist, request.characters),
    }


def _derive_roster(payload: Any) -> Mapping[str, Any]:
    names = extract_named_roles(payload)
    return {"character_count": len(names), "role_names": names}


def _derive_narrative(payload: Any) -> Mapping[str, Any]:
    arcs = payload.get("arcs", [])
    per_arc = [len(arc.get("episodes", [])) for arc in arcs]
    return {"arc_count": len(arcs), "episode_count": sum(per_arc), "episodes_per_arc": per_arc}


def build_story_bible_registry(request: StoryBibleRequest) -> StepRegistry:
    """Step registry for one story bible request.

    The cast-size step only exists when the user did not fix the character
    count, and genre craft steps only when the genre is known.
    """

    registry = StepRegistry()
    registry.register(story_step("premise", (), Premise, fallbacks.premise))

    roster_deps: tuple[str, ...] = ("premise",)
    if request.character_count is None:
        registry.register(
            story_step(
                "cast_size",
                ("premise",),
                CastSize,
                fallbacks.cast_size,
                temperature=0.3,
                max_output_tokens=100,
            )
        )
        roster_deps = ("premise", "cast_size")

    registry.register(
        story_step("roster", roster_deps, Roster, fallbacks.roster, derive=_derive_roster)
    )
    registry.register(
        story_step(
            "characters",
            ("premise", "roster"),
            CharacterSet,
            fallbacks.characters,
            max_output_tokens=6000,
        )
    )
    registry.register(
        story_step(
            "narrative",
            ("premise", "roster"),
            Narrative,
            fallbacks.narrative,
            derive=_derive_narrative,
            max_output_tokens=6000,
        )
    )
    registry.register(story_step("world", ("premise",), World, fallbacks.world))
    registry.register(
        story_step("dialogue", ("roster", "narrative"), DialogueSystem, fallbacks.dialogue)
    )
    registry.register(story_step("tension", ("narrative",), TensionSystem, fallbacks.tension))
    registry.register(story_step("genre", ("premise",), GenreProfile, fallbacks.genre))
    registry.register(
        story_step(
            "choices", ("characters", "narrative"), ChoiceArchitecture, fallbacks.choices
        )
    )
    registry.register(
        story_step("theme", ("premise", "narrative"), ThemeIntegration, fallbacks.theme)
    )
    registry.register(
        story_step("living_world", ("world", "roster"), LivingWorld, fallbacks.living_world)
    )
    registry.register(story_step("tropes", ("genre",), TropeAnalysis, fallbacks.tropes))
    registry.register(
        story_step(
            "cohesion",
            ("characters", "narrative", "world", "theme"),
            CohesionAnalysis,
            fallbacks.cohesion,
        )
    )
    registry.register(
        story_step(
            "marketing", ("premise", "characters", "genre"), MarketingHooks, fallbacks.marketing
        )
    )
    registry.register(
        story_step(
            "title",
            ("premise", "roster"),
            SeriesTitle,
            fallbacks.title,
            temperature=0.9,
            max_output_tokens=300,
        )
    )

    genre = resolve_genre(request)
    for name in genre_craft_steps(genre):
        _keywords, focus = GENRE_CRAFT_STEPS[name]
        registry.register(
            story_step(
                name,
                ("premise", "roster"),
                GenreCraft,
                fallbacks.genre_craft(genre or "", focus),
            )
        )
    return registry


class GenerationReport(BaseModel):
    run_id: str
    state: str
    score: float
    passed: bool
    fallback_steps: list[str] = Field(default_factory=list)
    failed_steps: list[str] = Field(default_factory=list)


class StoryBible(BaseModel):
    title: str
    synopsis: str
    theme: str
    genre: str | None = None
    premise: dict[str, Any] | None = None
    roster: list[dict[str, Any]] = Field(default_factory=list)
    characters: list[dict[str, Any]] = Field(default_factory=list)
    narrative_arcs: list[dict[str, Any]] = Field(default_factory=list)
    world: dict[str, Any] | None = None
    dialogue: dict[str, Any] | None = None
    tension: dict[str, Any] | None = None
    genre_profile: dict[str, Any] | None = None
    choices: dict[str, Any] | None = None
    theme_integration: dict[str, Any] | None = None
    living_world: dict[str, Any] | None = None
    tropes: dict[str, Any] | None = None
    cohesion: dict[str, Any] | None = None
    marketing: dict[str, Any] | None = None
    genre_craft: dict[str, dict[str, Any]] = Field(default_factory=dict)
    character_count: int = 0
    arc_count: int = 0
    episode_count: int = 0
    generation: GenerationReport

    @classmethod
    def assemble(cls, request: StoryBibleRequest, result: RunResult) -> StoryBible:
        doc = result.document
        derived = doc.derived
        summary = result.summary
        title = (doc.get("title") or {}).get("title") or "Untitled"
        return cls(
            title=title,
            synopsis=request.synopsis,
            theme=request.theme,
            genre=doc.context.get("genre"),
            premise=doc.get("premise"),
            roster=doc.get("roster", []),
            characters=(doc.get("characters") or {}).get("characters", []),
            narrative_arcs=(doc.get("narrative") or {}).get("arcs", []),
            world=doc.get("world"),
            dialogue=doc.get("dialogue"),
            tension=doc.get("tension"),
            genre_profile=doc.get("genre"),
            choices=doc.get("choices"),
            theme_integration=doc.get("theme"),
            living_world=doc.get("living_world"),
            tropes=doc.get("tropes"),
            cohesion=doc.get("cohesion"),
            marketing=doc.get("marketing"),
            genre_craft={
                name: doc.get(name) for name in GENRE_CRAFT_STEPS if doc.get(name) is not None
            },
            character_count=derived.get("character_count", 0),
            arc_count=derived.get("arc_count", 0),
            episode_count=derived.get("episode_count", 0),
            generation=GenerationReport(
                run_id=summary.run_id,
                state=summary.state.value,
                score=result.quality.score,
                passed=result.quality.passed,
                fallback_steps=[
                    s.name for s in summary.steps if s.status is StepStatus.SUCCEEDED_VIA_FALLBACK
                ],
                failed_steps=[s.name for s in summary.steps if s.status is StepStatus.FAILED],
            ),
        )


@dataclass(frozen=True, slots=True)
class StoryBibleOutcome:
    bible: StoryBible
    run: RunResult


def story_bible_gate(conductor: MasterConductor) -> QualityGate:
    return conductor.quality_gate.extended(
        rules=story_bible_rules(),
        scorers=story_bible_scorers(),
    )


async def generate_story_bible(
    request: StoryBibleRequest,
    conductor: MasterConductor,
    *,
    observer: ProgressObserver | None = None,
    run_id: str | None = None,
) -> StoryBibleOutcome:
    """Generate and assemble a story bible.

    Raises:
        PlanningError: The registry could not be planned.
        QualityGateFailed: Under the blocking quality policy only.
    """

    registry = build_story_bible_registry(request)
    context = story_bible_context(request)
    logger.info(
        "Generating story bible",
        extra={"steps": len(registry), "genre": context["genre"], "run_id": run_id},
    )
    result = await conductor.run(
        registry,
        context,
        observer=observer,
        quality_gate=story_bible_gate(conductor),
        run_id=run_id,
    )
    return StoryBibleOutcome(bible=StoryBible.assemble(request, result), run=result)
