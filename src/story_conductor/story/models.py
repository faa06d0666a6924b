"""Pydantic models for story requests and step payloads.

Payload models accept camelCase (what models tend to emit) or snake_case keys
and tolerate extra keys. Free-text fields also accept a list of strings, which
is joined, since generation output frequently bullets what was asked as prose.
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import (
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel


def _coerce_text(value: Any) -> Any:
    if isinstance(value, list):
        return "; ".join(str(v) for v in value if v is not None)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


Text = Annotated[str, BeforeValidator(_coerce_text)]
Name = Annotated[str, Field(min_length=1)]


class StepPayload(BaseModel):
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
        str_strip_whitespace=True,
    )


# -- requests ---------------------------------------------------------------


class StoryBibleRequest(BaseModel):
    synopsis: str = Field(min_length=1)
    theme: str = Field(min_length=1)
    genre: str | None = None
    character_count: int | None = Field(default=None, ge=1)
    characters: list[str] = Field(default_factory=list)
    protagonist: str | None = None
    setting: str | None = None

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    @field_validator("genre", "protagonist", "setting")
    @classmethod
    def _blank_to_none(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @field_validator("characters")
    @classmethod
    def _drop_blank_characters(cls, value: list[str]) -> list[str]:
        return [c.strip() for c in value if c and c.strip()]


class EpisodeRequest(BaseModel):
    story_bible: dict[str, Any]
    episode_number: int = Field(default=1, ge=1)
    previous_episode_summary: str | None = None

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)


# -- story bible payloads -----------------------------------------------------


class Premise(StepPayload):
    premise_statement: Name
    character: Text = ""
    conflict: Text = ""
    resolution: Text = ""
    theme: Text = ""
    premise_type: Text = ""


class CastSize(StepPayload):
    count: int = Field(
        ge=1,
        validation_alias=AliasChoices("count", "characterCount", "character_count"),
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_number(cls, data: Any) -> Any:
        if isinstance(data, bool):
            return data
        if isinstance(data, (int, str)):
            return {"count": data}
        return data


class RosterEntry(StepPayload):
    name: Name
    role: Text = "supporting"
    archetype: Text = ""
    info: str | None = None


Roster = Annotated[list[RosterEntry], Field(min_length=1)]


class CharacterProfile(StepPayload):
    name: Name
    role: Text = ""
    arc: Text = ""
    description: Text = ""
    motivation: Text = ""
    flaw: Text = ""
    growth: Text = ""
    relationships: list[Text] = Field(default_factory=list)


class CharacterSet(StepPayload):
    characters: list[CharacterProfile] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"characters": data}
        return data


class ArcEpisode(StepPayload):
    number: int | None = Field(default=None, ge=1)
    title: Text
    summary: Text = ""


class NarrativeArc(StepPayload):
    title: Name
    summary: Text = ""
    episodes: list[ArcEpisode] = Field(default_factory=list)


class Narrative(StepPayload):
    arcs: list[NarrativeArc] = Field(
        min_length=1,
        validation_alias=AliasChoices("arcs", "narrativeArcs", "narrative_arcs"),
    )

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"arcs": data}
        return data


class Location(StepPayload):
    name: Name
    type: Text = "other"
    description: Text = ""
    significance: Text = ""


class World(StepPayload):
    setting: Name
    rules: list[Text] = Field(default_factory=list)
    locations: list[Location] = Field(default_factory=list)


class CharacterVoice(StepPayload):
    character: Name
    voice: Text = ""


class DialogueSystem(StepPayload):
    character_voice: Text = Field(min_length=1)
    conflict_dialogue: Text = ""
    subtext: Text = ""
    speech_patterns: Text = ""
    voices: list[CharacterVoice] = Field(default_factory=list)


class TensionSystem(StepPayload):
    tension_curve: Text = Field(min_length=1)
    climax_points: Text = ""
    release_moments: Text = ""
    escalation_techniques: Text = ""
    emotional_beats: Text = ""


class GenreProfile(StepPayload):
    primary_genre: Name
    subgenres: list[Text] = Field(default_factory=list)
    visual_style: Text = ""
    pacing: Text = ""
    audience_expectations: Text = ""


class ChoicePoint(StepPayload):
    character: Name
    decision: Text
    consequence: Text = ""


class ChoiceArchitecture(StepPayload):
    key_decisions: Text = Field(min_length=1)
    moral_choices: Text = ""
    consequence_mapping: Text = ""
    thematic_choices: Text = ""
    decisions: list[ChoicePoint] = Field(default_factory=list)


class ThemeIntegration(StepPayload):
    character_integration: Text = Field(min_length=1)
    plot_integration: Text = ""
    symbolic_elements: Text = ""
    resolution_strategy: Text = ""


class LivingWorld(StepPayload):
    background_events: Text = Field(min_length=1)
    social_dynamics: Text = ""
    economic_factors: Text = ""
    political_undercurrents: Text = ""
    cultural_shifts: Text = ""


class TropeAnalysis(StepPayload):
    genre_tropes: Text = Field(min_length=1)
    subverted_tropes: Text = ""
    original_elements: Text = ""
    innovative_twists: Text = ""


class CharacterArcLink(StepPayload):
    character: Name
    summary: Text = ""


class CohesionAnalysis(StepPayload):
    narrative_cohesion: Text = Field(min_length=1)
    thematic_continuity: Text = ""
    plot_consistency: Text = ""
    emotional_journey: Text = ""
    character_arcs: list[CharacterArcLink] = Field(default_factory=list)


class MarketingHooks(StepPayload):
    logline: Text = Field(min_length=1)
    tagline: Text = ""
    target_audience: Text = ""
    hooks: list[Text] = Field(default_factory=list)


class SeriesTitle(StepPayload):
    title: Name
    alternatives: list[Text] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_title(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"title": data}
        return data


class GenreCraft(StepPayload):
    genre: Text
    focus: Text = Field(min_length=1)
    techniques: list[Text] = Field(default_factory=list)


# -- episode payloads ---------------------------------------------------------


class EpisodeOutline(StepPayload):
    title: Name
    logline: Text = ""
    beats: list[Text] = Field(min_length=1)


class Scene(StepPayload):
    number: int | None = Field(default=None, ge=1)
    heading: Text = ""
    summary: Text = Field(min_length=1)
    characters: list[Text] = Field(default_factory=list)


class SceneList(StepPayload):
    scenes: list[Scene] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"scenes": data}
        return data


class DialogueLine(StepPayload):
    scene: int | None = Field(default=None, ge=1)
    character: Name
    line: Text = Field(min_length=1)


class EpisodeDialogue(StepPayload):
    lines: list[DialogueLine] = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"lines": data}
        return data


class Cliffhanger(StepPayload):
    hook: Text = Field(min_length=1)
    stakes: Text = ""


class EpisodeSummary(StepPayload):
    summary: Text = Field(min_length=1)

    @model_validator(mode="before")
    @classmethod
    def _accept_bare_summary(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"summary": data}
        return data
