#!/usr/bin/env python3
"""Programmatic story bible generation example.

This demonstrates using the conductor components directly:

* load settings from `.env`
* generate a story bible while printing wave progress
* write the bible and its quality report to a JSON file

The story itself is passed as arguments (not read from `.env`).
"""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Sequence

from story_conductor.conductor.conductor import MasterConductor
from story_conductor.conductor.progress import ProgressSnapshot
from story_conductor.core.config import ConductorConfig
from story_conductor.story.bible import generate_story_bible
from story_conductor.story.models import StoryBibleRequest


def _parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate a story bible (programmatic example).")
    parser.add_argument("--synopsis", required=True, help="Story synopsis")
    parser.add_argument("--theme", required=True, help="Story theme")
    parser.add_argument("--protagonist", default=None, help="Protagonist description")
    parser.add_argument(
        "--output", type=Path, default=Path("story_bible.json"), help="Where to write the bible"
    )
    return parser.parse_args(argv)


def _print_progress(snapshot: ProgressSnapshot) -> None:
    wave = "-" if snapshot.current_wave is None else snapshot.current_wave + 1
    print(f"[{snapshot.percent:3d}%] {snapshot.state} (wave {wave}/{snapshot.wave_count})")


async def _run(args: argparse.Namespace, config: ConductorConfig) -> int:
    request = StoryBibleRequest(
        synopsis=args.synopsis, theme=args.theme, protagonist=args.protagonist
    )
    conductor = MasterConductor.from_config(config)
    try:
        outcome = await generate_story_bible(request, conductor, observer=_print_progress)
    finally:
        await conductor.client.aclose()

    quality = outcome.run.quality
    args.output.write_text(
        json.dumps(outcome.bible.model_dump(mode="json"), indent=2) + "\n", encoding="utf-8"
    )
    print(f"Title: {outcome.bible.title}")
    print(f"Quality score: {quality.score:.1f} (passed={quality.passed})")
    for violation in quality.violations:
        print(f"  {violation.severity.value}: {violation.message}")
    print(f"Written to: {args.output}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    config = ConductorConfig()
    config.setup_logging()

    return asyncio.run(_run(args, config))


if __name__ == "__main__":
    raise SystemExit(main())
