"""Pure helpers shared by fallback synthesizers.

Every numeric helper is monotonically non-decreasing in each of its complexity
signals and is floored at 1. There is no upper clamp.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

ENSEMBLE_KEYWORDS: frozenset[str] = frozenset(
    {
        "ensemble",
        "family",
        "crew",
        "team",
        "squad",
        "gang",
        "band",
        "friends",
        "siblings",
        "roommates",
        "council",
        "dynasty",
        "clan",
        "colleagues",
        "classmates",
    }
)

_WORD_RE = re.compile(r"[A-Za-z0-9']+")


def word_count(text: str | None) -> int:
    if not text:
        return 0
    return len(_WORD_RE.findall(text))


def ensemble_signal(text: str | None) -> int:
    """Number of ensemble keyword occurrences in `text`."""

    if not text:
        return 0
    return sum(1 for w in _WORD_RE.findall(text.lower()) if w in ENSEMBLE_KEYWORDS)


def extract_named_roles(payload: Any) -> list[str]:
    """Collect distinct role names from a roster-like payload.

    Accepts a list of names, a list of mappings carrying ``name``, or a
    mapping that wraps such a list under ``characters`` / ``roster``. Order
    of first appearance is kept.
    """

    if isinstance(payload, dict):
        for key in ("characters", "roster", "cast"):
            if key in payload:
                return extract_named_roles(payload[key])
        return []
    if not isinstance(payload, list):
        return []

    names: list[str] = []
    for item in payload:
        if isinstance(item, str):
            name = item
        elif isinstance(item, dict):
            name = item.get("name") or ""
        else:
            continue
        name = str(name).strip()
        if name and name not in names:
            names.append(name)
    return names


def derive_cast_size(
    premise: str | None,
    *,
    named_roles: int = 0,
    user_count: int = 0,
) -> int:
    """Estimate how many characters a story needs.

    Grows with premise length and ensemble keywords, and never drops below
    the roles already named or the characters the user supplied.
    """

    estimate = 2 + word_count(premise) // 20 + 2 * ensemble_signal(premise)
    return max(1, named_roles, user_count, estimate)


def derive_arc_count(character_count: int, premise_words: int) -> int:
    return max(1, 1 + max(character_count, 0) // 4 + max(premise_words, 0) // 60)


def derive_episode_counts(arc_count: int, character_count: int, premise_words: int) -> list[int]:
    """Episodes per arc; every arc gets the same count."""

    per_arc = max(1, 3 + max(character_count, 0) // 3 + max(premise_words, 0) // 80)
    return [per_arc] * max(1, arc_count)


def derive_scene_count(cast_size: int, synopsis_words: int) -> int:
    return max(1, 2 + max(cast_size, 0) // 2 + max(synopsis_words, 0) // 50)


def first_sentence(text: str | None, default: str = "") -> str:
    if not text:
        return default
    stripped = text.strip()
    match = re.search(r"[.!?](\s|$)", stripped)
    return stripped[: match.end()].strip() if match else stripped


def join_names(names: Iterable[str]) -> str:
    items = list(names)
    if not items:
        return "the cast"
    if len(items) == 1:
        return items[0]
    return ", ".join(items[:-1]) + f" and {items[-1]}"
