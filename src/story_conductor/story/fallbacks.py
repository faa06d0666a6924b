"""Context-derived fallback payloads for story steps.

Each function receives the same `StepInputs` its step would have prompted
with and returns plain data matching that step's output model. Nothing here
performs I/O.
"""

from __future__ import annotations

import re
from typing import Any

from story_conductor.conductor.fallback import (
    derive_arc_count,
    derive_cast_size,
    derive_episode_counts,
    derive_scene_count,
    extract_named_roles,
    first_sentence,
    join_names,
    word_count,
)
from story_conductor.conductor.steps import StepInputs

_LEADING_NAME_RE = re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)")

_ROLE_SEQUENCE = ("protagonist", "antagonist", "deuteragonist", "mentor", "confidant", "rival")


def leading_name(text: str | None) -> str | None:
    """Capitalized name at the start of a character note, if any."""

    if not text:
        return None
    match = _LEADING_NAME_RE.match(text.strip().split("\n", 1)[0].strip())
    return match.group(1) if match else None


def seed_roster(protagonist: str | None, characters: list[str]) -> list[dict[str, Any]]:
    """Roster entries the user already fixed: protagonist first, then notes."""

    roster: list[dict[str, Any]] = []
    if protagonist:
        roster.append(
            {
                "name": leading_name(protagonist) or "The Protagonist",
                "role": "protagonist",
                "archetype": "Protagonist",
                "info": protagonist,
            }
        )
    for index, note in enumerate(characters, start=1):
        name = leading_name(note) or f"Character {index}"
        if any(entry["name"] == name for entry in roster):
            continue
        roster.append(
            {"name": name, "role": "supporting", "archetype": "Supporting Character", "info": note}
        )
    return roster


def _story_text(inputs: StepInputs) -> str:
    return str(inputs.context.get("synopsis") or "")


def _theme(inputs: StepInputs) -> str:
    return str(inputs.context.get("theme") or "the story's theme")


def _roster_names(inputs: StepInputs) -> list[str]:
    names = extract_named_roles(inputs.dep("roster"))
    if not names:
        names = extract_named_roles(inputs.dep("characters"))
    if not names:
        names = list(inputs.signal("role_names", []))
    if not names:
        names = extract_named_roles(inputs.context.get("seed_roster", []))
    return names


def _premise_statement(inputs: StepInputs) -> str:
    premise = inputs.dep("premise", {})
    return str(premise.get("premise_statement") or first_sentence(_story_text(inputs)))


# -- story bible --------------------------------------------------------------


def premise(inputs: StepInputs) -> dict[str, Any]:
    synopsis = _story_text(inputs)
    theme = _theme(inputs)
    opening = first_sentence(synopsis, default="A story unfolds").rstrip(".!?")
    return {
        "premise_statement": f"{opening}, and in the end it proves something about {theme}.",
        "character": "A protagonist whose defining belief is tested",
        "conflict": f"Circumstances that force a choice about {theme}",
        "resolution": f"The protagonist's final choice answers the question of {theme}",
        "theme": theme,
        "premise_type": inputs.context.get("genre") or "drama",
    }


def cast_size(inputs: StepInputs) -> dict[str, Any]:
    text = f"{_story_text(inputs)} {_premise_statement(inputs)}"
    seeded = inputs.context.get("seed_roster", [])
    return {
        "count": derive_cast_size(
            text,
            named_roles=len(extract_named_roles(seeded)),
            user_count=len(inputs.context.get("characters", [])),
        )
    }


def roster(inputs: StepInputs) -> list[dict[str, Any]]:
    seeded = [dict(entry) for entry in inputs.context.get("seed_roster", [])]
    target = inputs.context.get("character_count") or inputs.dep("cast_size", {}).get("count")
    if not target:
        target = derive_cast_size(
            _story_text(inputs),
            named_roles=len(seeded),
            user_count=len(inputs.context.get("characters", [])),
        )

    entries = seeded
    taken_roles = {entry["role"] for entry in entries}
    index = len(entries)
    while len(entries) < target:
        index += 1
        role = next((r for r in _ROLE_SEQUENCE if r not in taken_roles), "supporting")
        taken_roles.add(role)
        if role == "supporting":
            name = f"Supporting Character {index}"
        else:
            name = f"The {role.title()}"
        entries.append({"name": name, "role": role})
    return entries


def characters(inputs: StepInputs) -> dict[str, Any]:
    theme = _theme(inputs)
    entries = inputs.dep("roster") or roster(inputs)
    names = [e["name"] for e in entries]
    profiles = []
    for entry in entries:
        others = [n for n in names if n != entry["name"]][:2]
        profiles.append(
            {
                "name": entry["name"],
                "role": entry.get("role", "supporting"),
                "arc": f"Character development arc exploring {theme}",
                "description": entry.get("info") or entry.get("archetype") or "",
                "motivation": f"To resolve what {theme} means for them",
                "flaw": "Holds too tightly to an old certainty",
                "growth": f"Learns a truer understanding of {theme}",
                "relationships": [f"Bound up with {other}" for other in others],
            }
        )
    return {"characters": profiles}


def narrative(inputs: StepInputs) -> dict[str, Any]:
    theme = _theme(inputs)
    names = _roster_names(inputs)
    character_count = inputs.signal("character_count", len(names))
    words = word_count(_story_text(inputs))
    arc_count = derive_arc_count(character_count, words)
    per_arc = derive_episode_counts(arc_count, character_count, words)

    arcs = []
    number = 0
    for arc_index, episode_total in enumerate(per_arc, start=1):
        episodes = []
        for _ in range(episode_total):
            number += 1
            episodes.append({"number": number, "title": f"Episode {number}", "summary": ""})
        arcs.append(
            {
                "title": f"Arc {arc_index}",
                "summary": (
                    f"Narrative arc {arc_index} exploring {theme} through {join_names(names[:3])}."
                ),
                "episodes": episodes,
            }
        )
    return {"arcs": arcs}


def world(inputs: StepInputs) -> dict[str, Any]:
    setting = inputs.context.get("setting") or first_sentence(
        _story_text(inputs), default="A world shaped by the story's conflict."
    )
    return {
        "setting": setting,
        "rules": [f"Every institution in this world has a stake in {_theme(inputs)}"],
        "locations": [
            {
                "name": "The Heart of the Story",
                "type": "other",
                "description": setting,
                "significance": "Where the central conflict surfaces",
            }
        ],
    }


def dialogue(inputs: StepInputs) -> dict[str, Any]:
    names = _roster_names(inputs)
    return {
        "character_voice": "Each character speaks from their own stake in the conflict",
        "conflict_dialogue": "Arguments stay specific and escalate through concrete demands",
        "subtext": f"What goes unsaid always concerns {_theme(inputs)}",
        "speech_patterns": "Vocabulary and rhythm follow each character's background",
        "voices": [
            {"character": n, "voice": f"{n} speaks plainly about what they want"} for n in names
        ],
    }


def tension(inputs: StepInputs) -> dict[str, Any]:
    arcs = inputs.dep("narrative", {}).get("arcs", [])
    return {
        "tension_curve": (
            f"Tension rises across {max(len(arcs), 1)} arc(s) and peaks in the final one"
        ),
        "climax_points": "The end of every arc forces an irreversible choice",
        "release_moments": "Quiet scenes follow each climax",
        "escalation_techniques": "Stakes widen from personal to communal",
        "emotional_beats": "Hope and doubt alternate episode to episode",
    }


def genre(inputs: StepInputs) -> dict[str, Any]:
    primary = inputs.context.get("genre") or "drama"
    return {
        "primary_genre": primary,
        "subgenres": [],
        "visual_style": f"Grounded visuals that serve a {primary} tone",
        "pacing": "Short episodes that each end on a turn",
        "audience_expectations": (
            f"Viewers expect the conventions of {primary} honored or knowingly broken"
        ),
    }


def choices(inputs: StepInputs) -> dict[str, Any]:
    profiles = inputs.dep("characters", {}).get("characters", [])
    names = [p["name"] for p in profiles] or _roster_names(inputs)
    theme = _theme(inputs)
    return {
        "key_decisions": f"Each arc turns on a decision about {theme}",
        "moral_choices": "Loyalty is weighed against honesty",
        "consequence_mapping": "Every decision changes who trusts whom",
        "thematic_choices": f"Choices test competing definitions of {theme}",
        "decisions": [
            {"character": n, "decision": f"{n} must choose what to sacrifice", "consequence": ""}
            for n in names
        ],
    }


def theme(inputs: StepInputs) -> dict[str, Any]:
    theme_text = _theme(inputs)
    return {
        "character_integration": f"Each character embodies a different answer to {theme_text}",
        "plot_integration": f"Plot turns are triggered by decisions about {theme_text}",
        "symbolic_elements": "A recurring object marks each turning point",
        "resolution_strategy": _premise_statement(inputs),
    }


def living_world(inputs: StepInputs) -> dict[str, Any]:
    setting = inputs.dep("world", {}).get("setting") or "the world"
    return {
        "background_events": f"Life in {setting} continues around the protagonists",
        "social_dynamics": (
            f"Groups around {join_names(_roster_names(inputs)[:3])} shift their allegiances"
        ),
        "economic_factors": "Scarcity sharpens every conflict",
        "political_undercurrents": "Those in power watch the protagonists closely",
        "cultural_shifts": "Old customs give way under pressure",
    }


def tropes(inputs: StepInputs) -> dict[str, Any]:
    primary = inputs.dep("genre", {}).get("primary_genre") or inputs.context.get("genre") or "drama"
    return {
        "genre_tropes": f"Familiar {primary} conventions anchor the audience",
        "subverted_tropes": "The obvious mentor figure has their own agenda",
        "original_elements": "The central conflict is resolved by a choice, not a fight",
        "innovative_twists": "Each arc's twist is set up in the first episode",
    }


def cohesion(inputs: StepInputs) -> dict[str, Any]:
    profiles = inputs.dep("characters", {}).get("characters", [])
    return {
        "narrative_cohesion": "Every element feeds the central question",
        "thematic_continuity": f"{_theme(inputs).capitalize()} is revisited in every arc",
        "plot_consistency": "Causes precede effects across arcs",
        "emotional_journey": "From certainty, through doubt, to earned conviction",
        "character_arcs": [
            {"character": p["name"], "summary": p.get("arc", "")} for p in profiles
        ],
    }


def marketing(inputs: StepInputs) -> dict[str, Any]:
    primary = inputs.dep("genre", {}).get("primary_genre") or "drama"
    return {
        "logline": _premise_statement(inputs),
        "tagline": f"Every choice is about {_theme(inputs)}.",
        "target_audience": f"Fans of character-driven {primary}",
        "hooks": [first_sentence(_story_text(inputs))] if _story_text(inputs) else [],
    }


def title(inputs: StepInputs) -> dict[str, Any]:
    names = _roster_names(inputs)
    theme_words = _theme(inputs).split()
    base = theme_words[0].capitalize() if theme_words else "Untitled"
    alternatives = [f"{names[0]}'s {base}"] if names else []
    return {"title": f"The {base}", "alternatives": alternatives}


def genre_craft(genre_name: str, focus: str):  # type: ignore[no-untyped-def]
    """Fallback factory for the genre-specific craft steps."""

    def build(inputs: StepInputs) -> dict[str, Any]:
        names = _roster_names(inputs)
        return {
            "genre": genre_name,
            "focus": f"{focus} built around {join_names(names[:2])}",
            "techniques": [f"Tie every {genre_name} beat to {_theme(inputs)}"],
        }

    return build


# -- episode ----------------------------------------------------------------


def outline(inputs: StepInputs) -> dict[str, Any]:
    number = inputs.context.get("episode_number", 1)
    planned = inputs.context.get("planned_episode") or {}
    previous = inputs.context.get("previous_episode_summary")
    beats = []
    if previous:
        beats.append(f"Pick up from: {first_sentence(previous)}")
    beats.extend(
        [
            "Open on the protagonist facing a fresh complication",
            "The complication forces a choice",
            "The choice has an immediate cost",
        ]
    )
    return {
        "title": planned.get("title") or f"Episode {number}",
        "logline": (
            planned.get("summary") or first_sentence(str(inputs.context.get("synopsis") or ""))
        ),
        "beats": beats,
    }


def scenes(inputs: StepInputs) -> dict[str, Any]:
    names = extract_named_roles(inputs.context.get("roster", []))
    count = derive_scene_count(len(names), word_count(str(inputs.context.get("synopsis") or "")))
    beats = inputs.dep("outline", {}).get("beats") or ["The story moves forward"]
    out = []
    for number in range(1, count + 1):
        beat = beats[min(number - 1, len(beats) - 1)]
        present = [names[(number - 1) % len(names)]] if names else []
        out.append(
            {
                "number": number,
                "heading": f"Scene {number}",
                "summary": beat,
                "characters": present,
            }
        )
    return {"scenes": out}


def episode_dialogue(inputs: StepInputs) -> dict[str, Any]:
    lines = []
    for scene in inputs.dep("scenes", {}).get("scenes", []):
        speakers = scene.get("characters") or []
        if not speakers:
            continue
        lines.append(
            {
                "scene": scene.get("number") or 1,
                "character": speakers[0],
                "line": scene.get("summary") or "...",
            }
        )
    if not lines:
        names = extract_named_roles(inputs.context.get("roster", [])) or ["Narrator"]
        lines.append({"scene": 1, "character": names[0], "line": "Something has to change."})
    return {"lines": lines}


def cliffhanger(inputs: StepInputs) -> dict[str, Any]:
    beats = inputs.dep("outline", {}).get("beats") or []
    last = beats[-1] if beats else "The choice has an immediate cost"
    return {"hook": f"{last.rstrip('.')}, and it is worse than anyone feared.", "stakes": ""}


def episode_summary(inputs: StepInputs) -> dict[str, Any]:
    summaries = [s.get("summary", "") for s in inputs.dep("scenes", {}).get("scenes", [])]
    hook = inputs.dep("cliffhanger", {}).get("hook", "")
    text = " ".join(s.rstrip(".") + "." for s in summaries if s)
    return {"summary": f"{text} {hook}".strip() or "The episode moves the story forward."}
