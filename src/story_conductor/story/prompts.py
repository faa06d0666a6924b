"""Prompt builders for story steps.

Prompts are short: seed context, the declared dependency payloads,
a one-paragraph instruction and the JSON schema of the expected output.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from story_conductor.conductor.fallback import extract_named_roles
from story_conductor.conductor.steps import Deriver, OutputShape, StepDefinition, StepInputs

MAX_DEPENDENCY_CHARS = 4000

SYSTEM_PROMPT = (
    "You are a story development assistant for short-form episodic series. "
    "Respond with a single JSON value and nothing else."
)

_CONTEXT_LABELS = (
    ("title", "Series title"),
    ("synopsis", "Synopsis"),
    ("theme", "Theme"),
    ("genre", "Genre"),
    ("character_count", "Requested character count"),
    ("setting", "User-provided setting"),
    ("protagonist", "Protagonist"),
    ("episode_number", "Episode number"),
    ("previous_episode_summary", "Previous episode"),
)

_SIGNAL_LABELS = (
    ("character_count", "Character count"),
    ("arc_count", "Arc count"),
    ("episode_count", "Episode count"),
)


def _dump(value: Any, limit: int = MAX_DEPENDENCY_CHARS) -> str:
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    if len(text) > limit:
        return text[:limit] + "…"
    return text


def render_prompt(inputs: StepInputs, instruction: str, schema: dict[str, Any]) -> str:
    lines: list[str] = []
    for key, label in _CONTEXT_LABELS:
        value = inputs.context.get(key)
        if value not in (None, ""):
            lines.append(f"{label}: {value}")

    roster = extract_named_roles(inputs.context.get("roster") or [])
    if roster:
        lines.append(f"Series roster: {', '.join(roster)}")
    planned = inputs.context.get("planned_episode")
    if planned:
        lines.append(f"Planned episode: {_dump(planned)}")

    notes = inputs.context.get("characters") or []
    if notes:
        lines.append("User-provided characters:")
        lines.extend(f"- {note}" for note in notes)

    for key, label in _SIGNAL_LABELS:
        value = inputs.signals.get(key)
        if value is not None:
            lines.append(f"{label}: {value}")

    produced = {
        name: payload for name, payload in inputs.dependencies.items() if payload is not None
    }
    if produced:
        lines.append("")
        lines.append("Earlier results:")
        for name, payload in produced.items():
            lines.append(f"[{name}] {_dump(payload)}")

    lines.append("")
    lines.append(instruction.strip())
    lines.append("")
    lines.append("Return ONLY valid JSON (no markdown, no commentary) matching this JSON schema:")
    lines.append(_dump(schema, limit=8000))
    return "\n".join(lines)


@dataclass(frozen=True, slots=True)
class StoryPrompt:
    """Prompt builder bound to one instruction and output shape."""

    instruction: str
    shape: OutputShape

    def __call__(self, inputs: StepInputs) -> str:
        return render_prompt(inputs, self.instruction, self.shape.json_schema())


INSTRUCTIONS: dict[str, str] = {
    "premise": (
        "Analyze the story premise using Egri's method: state what the story proves, "
        "the character who proves it, the conflict that tests them and the resolution."
    ),
    "cast_size": (
        "How many main characters does this story need for a rich, multi-layered "
        "narrative? Base the number purely on story needs, with no artificial range."
    ),
    "roster": (
        "Create the character roster. Keep every user-provided character and the "
        "protagonist with their names, then add characters with realistic, unique names "
        "until the roster reaches the character count. Assign protagonist, antagonist "
        "and supporting roles."
    ),
    "characters": (
        "Write a full profile for every roster character, using exactly the roster names: "
        "arc, motivation, flaw, growth and key relationships."
    ),
    "narrative": (
        "Design the narrative arcs. Choose the number of arcs and the episodes per arc "
        "that this specific story needs, and give every episode a number and title."
    ),
    "world": (
        "Build the story world: a concrete setting, its rules and the recurring locations. "
        "Preserve any user-provided setting and expand on it."
    ),
    "dialogue": (
        "Create the dialogue strategy, including a distinct voice for every roster character."
    ),
    "tension": "Design how tension escalates, peaks and releases across the arcs.",
    "genre": "Describe the genre treatment: primary genre, subgenres, visual style and pacing.",
    "choices": (
        "Design the choice architecture: key and moral decisions, their consequences, "
        "and a concrete decision for the main characters."
    ),
    "theme": "Describe how the theme is woven through characters, plot and symbols.",
    "living_world": (
        "Describe what happens in the world independently of the main characters: "
        "background events, social, economic, political and cultural currents."
    ),
    "tropes": "Identify the genre tropes this story uses, subverts and replaces.",
    "cohesion": (
        "Assess how the characters, narrative, world and theme work together, including "
        "how each character's arc supports the others."
    ),
    "marketing": "Write a logline, a tagline, the target audience and social hooks.",
    "title": "Propose a series title and a few alternatives.",
    "comedy_timing": "Describe the comedic timing strategy: setups, payoffs and running gags.",
    "horror_atmosphere": "Describe how dread and atmosphere are built and sustained.",
    "romance_chemistry": "Describe the romantic chemistry, its obstacles and its pacing.",
    "mystery_construction": "Describe the mystery's clue placement, red herrings and reveal.",
    "outline": (
        "Outline this episode: a title, a logline and the ordered story beats. Continue "
        "from the previous episode when one is given."
    ),
    "scenes": "Break the outline into numbered scenes naming the characters present.",
    "episode_dialogue": (
        "Write key dialogue lines for the scenes. Use only the series roster names."
    ),
    "cliffhanger": "Write the episode's closing cliffhanger and what is at stake.",
    "episode_summary": "Summarize the episode in one paragraph, ending with the cliffhanger.",
}


def story_step(
    name: str,
    depends_on: tuple[str, ...],
    output: Any,
    fallback: Callable[[StepInputs], Any],
    *,
    derive: Deriver | None = None,
    temperature: float = 0.7,
    max_output_tokens: int = 2000,
    description: str = "",
) -> StepDefinition:
    """Step definition wired to the shared story prompt and system prompt."""

    shape = OutputShape(output)
    return StepDefinition(
        name=name,
        build_prompt=StoryPrompt(INSTRUCTIONS[name], shape),
        shape=shape,
        fallback=fallback,
        depends_on=depends_on,
        derive=derive,
        system_prompt=SYSTEM_PROMPT,
        temperature=temperature,
        max_output_tokens=max_output_tokens,
        description=description,
    )
