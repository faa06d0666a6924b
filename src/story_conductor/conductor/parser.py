"""Extract structured payloads from raw generation output.

Model output routinely wraps JSON in prose or markdown fences, or carries small
syntax slips (trailing commas, typographic quotes, raw newlines inside
strings). Extraction is two-staged:

1. locate candidate payloads (fenced blocks first, then outermost balanced
   ``{...}`` / ``[...]`` spans) and parse each strictly;
2. if no candidate parses, apply a bounded set of lenient repairs to each
   candidate and parse again.

When several candidates parse, fenced ones win, then the longest.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from typing import Any

from story_conductor.errors import ResultParseError

logger = logging.getLogger(__name__)

MAX_CANDIDATES = 8

_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON|javascript|js)?[ \t]*\r?\n?(.*?)```", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",(\s*[}\]])")
_LINE_COMMENT_RE = re.compile(r"^\s*//.*$", re.MULTILINE)
_LEADING_INT_RE = re.compile(r"^\s*(-?\d+)\b")
_SMART_QUOTES = str.maketrans(
    {
        "“": '"',
        "”": '"',
        "„": '"',
        "‘": "'",
        "’": "'",
    }
)
_OPENERS = {"{": "}", "[": "]"}
_NOTHING = object()


def parse_structured(raw: str) -> Any:
    """Return the best well-formed JSON payload embedded in `raw`.

    Raises:
        ResultParseError: If neither strict parsing nor lenient repair yields
            a payload.
    """

    if not isinstance(raw, str) or not raw.strip():
        raise ResultParseError("Empty generation output")

    text = raw.strip().lstrip("﻿")
    candidates = list(_candidates(text))

    # Bare scalars ("7", "7 characters") are legitimate answers for
    # count-style steps.
    if not candidates:
        try:
            return json.loads(text)
        except json.JSONDecodeError:
            pass
        leading = _LEADING_INT_RE.match(text)
        if leading:
            return int(leading.group(1))
        raise ResultParseError("No JSON object or array found in output", excerpt=text[:200])

    parsed = _pick(candidates, json.loads)
    if parsed is not _NOTHING:
        return parsed

    for name, repair in _REPAIRS:
        parsed = _pick(candidates, lambda c, repair=repair: json.loads(repair(c)))
        if parsed is not _NOTHING:
            logger.debug("Parsed output after lenient repair", extra={"repair": name})
            return parsed

    raise ResultParseError(
        f"Could not parse any of {len(candidates)} candidate payload(s)",
        excerpt=candidates[0].text[:200],
    )


@dataclass(frozen=True, slots=True)
class _Candidate:
    text: str
    fenced: bool


def _pick(candidates: list[_Candidate], parse: Callable[[str], Any]) -> Any:
    """Parse every candidate and return the preferred payload, or `_NOTHING`.

    Fenced candidates beat bare spans, then the longest span wins, so a stray
    ``[1]`` citation in prose loses to the real payload. Ties go to the
    earliest candidate.
    """

    best: tuple[tuple[bool, int], Any] | None = None
    for candidate in candidates:
        try:
            payload = parse(candidate.text)
        except json.JSONDecodeError:
            continue
        rank = (candidate.fenced, len(candidate.text))
        if best is None or rank > best[0]:
            best = (rank, payload)
    return _NOTHING if best is None else best[1]


def _candidates(text: str) -> Iterator[_Candidate]:
    seen: set[str] = set()
    count = 0

    def emit(span: str, fenced: bool) -> Iterator[_Candidate]:
        nonlocal count
        span = span.strip()
        if span and span not in seen and count < MAX_CANDIDATES:
            seen.add(span)
            count += 1
            yield _Candidate(span, fenced)

    for match in _FENCE_RE.finditer(text):
        for span in balanced_spans(match.group(1)):
            yield from emit(span, True)

    for span in balanced_spans(text):
        yield from emit(span, False)


def balanced_spans(text: str) -> Iterator[str]:
    """Yield balanced ``{...}`` / ``[...]`` spans, left to right.

    The scan is string-aware so braces inside JSON strings do not count. An
    unterminated opener (truncated output, or a stray brace in prose) yields
    the text up to the last matching closer for lenient repair, and the scan
    resumes just after that opener.
    """

    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch not in _OPENERS:
            i += 1
            continue
        end = _match_close(text, i)
        if end is None:
            last = text.rfind(_OPENERS[ch], i + 1)
            if last != -1:
                yield text[i : last + 1]
            i += 1
            continue
        yield text[i : end + 1]
        i = end + 1


def _match_close(text: str, start: int) -> int | None:
    stack: list[str] = []
    in_string = False
    escaped = False
    for j in range(start, len(text)):
        ch = text[j]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _OPENERS:
            stack.append(_OPENERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack.pop() != ch:
                return None
            if not stack:
                return j
    return None


def _strip_trailing_commas(text: str) -> str:
    return _TRAILING_COMMA_RE.sub(r"\1", text)


def _normalize_quotes(text: str) -> str:
    return _strip_trailing_commas(text.translate(_SMART_QUOTES))


def _escape_control_chars(text: str) -> str:
    """Escape raw newlines/tabs inside strings and drop other control chars."""

    out: list[str] = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
                out.append(ch)
                continue
            if ch == "\\":
                escaped = True
                out.append(ch)
                continue
            if ch == '"':
                in_string = False
                out.append(ch)
                continue
            if ch == "\n":
                out.append("\\n")
            elif ch == "\r":
                out.append("\\r")
            elif ch == "\t":
                out.append("\\t")
            elif ord(ch) < 32:
                out.append(" ")
            else:
                out.append(ch)
            continue
        if ch == '"':
            in_string = True
        out.append(ch)
    return _strip_trailing_commas("".join(out))


def _strip_line_comments(text: str) -> str:
    return _strip_trailing_commas(_LINE_COMMENT_RE.sub("", text))


def _all_repairs(text: str) -> str:
    return _escape_control_chars(_strip_line_comments(_normalize_quotes(text)))


_REPAIRS: tuple[tuple[str, Callable[[str], str]], ...] = (
    ("trailing_commas", _strip_trailing_commas),
    ("smart_quotes", _normalize_quotes),
    ("control_chars", _escape_control_chars),
    ("line_comments", _strip_line_comments),
    ("combined", _all_repairs),
)
