"""Episode pipeline: one episode generated from an assembled story bible."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field

from story_conductor.conductor.conductor import MasterConductor, RunResult
from story_conductor.conductor.progress import ProgressObserver
from story_conductor.conductor.steps import StepRegistry
from story_conductor.story import fallbacks
from story_conductor.story.models import (
    Cliffhanger,
    EpisodeDialogue,
    EpisodeOutline,
    EpisodeRequest,
    EpisodeSummary,
    SceneList,
)
from story_conductor.story.prompts import story_step
from story_conductor.story.quality import episode_rules

logger = logging.getLogger(__name__)


def planned_episode(bible: Mapping[str, Any], number: int) -> dict[str, Any] | None:
    """The narrative plan's entry for episode `number`, if the bible has one.

    Episodes are matched by their explicit number first, then by position
    across all arcs.
    """

    position = 0
    by_position = None
    for arc in bible.get("narrative_arcs") or []:
        for episode in arc.get("episodes") or []:
            position += 1
            if episode.get("number") == number:
                return {**episode, "arc": arc.get("title")}
            if position == number and by_position is None:
                by_position = {**episode, "arc": arc.get("title")}
    return by_position


def episode_context(request: EpisodeRequest) -> dict[str, Any]:
    bible = request.story_bible
    return {
        "title": bible.get("title"),
        "synopsis": bible.get("synopsis"),
        "theme": bible.get("theme"),
        "genre": bible.get("genre"),
        "roster": bible.get("roster") or [],
        "episode_number": request.episode_number,
        "planned_episode": planned_episode(bible, request.episode_number),
        "previous_episode_summary": request.previous_episode_summary,
    }


def _derive_scenes(payload: Any) -> Mapping[str, Any]:
    return {"scene_count": len(payload.get("scenes", []))}


def build_episode_registry(request: EpisodeRequest) -> StepRegistry:
    return StepRegistry.of(
        [
            story_step("outline", (), EpisodeOutline, fallbacks.outline),
            story_step(
                "scenes",
                ("outline",),
                SceneList,
                fallbacks.scenes,
                derive=_derive_scenes,
                max_output_tokens=4000,
            ),
            story_step(
                "episode_dialogue",
                ("scenes",),
                EpisodeDialogue,
                fallbacks.episode_dialogue,
                max_output_tokens=6000,
            ),
            story_step("cliffhanger", ("outline",), Cliffhanger, fallbacks.cliffhanger),
            story_step(
                "episode_summary",
                ("scenes", "cliffhanger"),
                EpisodeSummary,
                fallbacks.episode_summary,
            ),
        ]
    )


class Episode(BaseModel):
    episode_number: int
    title: str
    logline: str = ""
    beats: list[str] = Field(default_factory=list)
    scenes: list[dict[str, Any]] = Field(default_factory=list)
    dialogue: list[dict[str, Any]] = Field(default_factory=list)
    cliffhanger: dict[str, Any] | None = None
    summary: str = ""
    run_id: str
    state: str
    score: float

    @classmethod
    def assemble(cls, request: EpisodeRequest, result: RunResult) -> Episode:
        doc = result.document
        outline = doc.get("outline") or {}
        return cls(
            episode_number=request.episode_number,
            title=outline.get("title") or f"Episode {request.episode_number}",
            logline=outline.get("logline", ""),
            beats=outline.get("beats", []),
            scenes=(doc.get("scenes") or {}).get("scenes", []),
            dialogue=(doc.get("episode_dialogue") or {}).get("lines", []),
            cliffhanger=doc.get("cliffhanger"),
            summary=(doc.get("episode_summary") or {}).get("summary", ""),
            run_id=result.summary.run_id,
            state=result.summary.state.value,
            score=result.quality.score,
        )


@dataclass(frozen=True, slots=True)
class EpisodeOutcome:
    episode: Episode
    run: RunResult


async def generate_episode(
    request: EpisodeRequest,
    conductor: MasterConductor,
    *,
    observer: ProgressObserver | None = None,
    run_id: str | None = None,
) -> EpisodeOutcome:
    registry = build_episode_registry(request)
    logger.info(
        "Generating episode",
        extra={"episode_number": request.episode_number, "run_id": run_id},
    )
    result = await conductor.run(
        registry,
        episode_context(request),
        observer=observer,
        quality_gate=conductor.quality_gate.extended(rules=episode_rules()),
        run_id=run_id,
    )
    return EpisodeOutcome(episode=Episode.assemble(request, result), run=result)
