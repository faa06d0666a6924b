"""CLI entrypoint for story-conductor."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, TextIO

from pydantic import ValidationError

from story_conductor import __version__
from story_conductor.conductor.conductor import MasterConductor
from story_conductor.conductor.resolver import resolve_plan
from story_conductor.core.config import ConductorConfig
from story_conductor.errors import PlanningError, QualityGateFailed
from story_conductor.story.bible import (
    build_story_bible_registry,
    generate_story_bible,
    resolve_genre,
)
from story_conductor.story.episode import generate_episode
from story_conductor.story.models import EpisodeRequest, StoryBibleRequest

logger = logging.getLogger(__name__)


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--request",
        type=Path,
        default=None,
        help="JSON file with a story bible request (fields below override it)",
    )
    parser.add_argument("--synopsis", default=None, help="Story synopsis")
    parser.add_argument("--theme", default=None, help="Story theme")
    parser.add_argument("--genre", default=None, help="Genre (inferred from the theme if omitted)")
    parser.add_argument(
        "--character-count",
        type=int,
        default=None,
        help="Fix the number of main characters instead of letting it be decided",
    )
    parser.add_argument(
        "--character",
        dest="characters",
        action="append",
        default=None,
        help="User-provided character note (repeatable)",
    )
    parser.add_argument("--protagonist", default=None, help="Protagonist description")
    parser.add_argument("--setting", default=None, help="Setting description")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="story-conductor",
        description="Generate story bibles and episodes from dependency-ordered steps",
    )
    parser.add_argument("--version", action="version", version=f"story-conductor {__version__}")

    subparsers = parser.add_subparsers(dest="command", required=True)

    plan = subparsers.add_parser("plan", help="Print the execution waves for a request")
    _add_request_arguments(plan)

    generate = subparsers.add_parser("generate", help="Generate a story bible")
    _add_request_arguments(generate)
    generate.add_argument(
        "--output", type=Path, default=None, help="Write JSON here instead of stdout"
    )
    generate.add_argument(
        "--include-run",
        action="store_true",
        help="Include the run summary, quality report and raw document in the output",
    )

    episode = subparsers.add_parser("episode", help="Generate an episode from a story bible")
    episode.add_argument("--bible", type=Path, required=True, help="Story bible JSON file")
    episode.add_argument("--episode-number", type=int, default=1, help="Episode to generate")
    episode.add_argument(
        "--previous-summary", default=None, help="Summary of the previous episode"
    )
    episode.add_argument(
        "--output", type=Path, default=None, help="Write JSON here instead of stdout"
    )

    serve = subparsers.add_parser("serve", help="Run the REST API")
    serve.add_argument("--host", default=None, help="Bind address (default from settings)")
    serve.add_argument("--port", type=int, default=None, help="Port (default from settings)")

    return parser


def _story_request(args: argparse.Namespace) -> StoryBibleRequest:
    data: dict[str, Any] = {}
    if args.request is not None:
        data.update(json.loads(args.request.read_text(encoding="utf-8")))
    overrides = {
        "synopsis": args.synopsis,
        "theme": args.theme,
        "genre": args.genre,
        "character_count": args.character_count,
        "characters": args.characters,
        "protagonist": args.protagonist,
        "setting": args.setting,
    }
    data.update({k: v for k, v in overrides.items() if v is not None})
    return StoryBibleRequest.model_validate(data)


def _emit(payload: dict[str, Any], output: Path | None, *, stream: TextIO | None = None) -> None:
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    if output is None:
        (stream or sys.stdout).write(text)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    print(f"Wrote {output}")


async def _generate(
    config: ConductorConfig, request: StoryBibleRequest, include_run: bool
) -> dict[str, Any]:
    conductor = MasterConductor.from_config(config)
    try:
        outcome = await generate_story_bible(request, conductor)
    finally:
        await conductor.client.aclose()
    payload: dict[str, Any] = outcome.bible.model_dump(mode="json")
    if include_run:
        payload = {"story_bible": payload, "run": outcome.run.to_dict()}
    return payload


async def _episode(config: ConductorConfig, request: EpisodeRequest) -> dict[str, Any]:
    conductor = MasterConductor.from_config(config)
    try:
        outcome = await generate_episode(request, conductor)
    finally:
        await conductor.client.aclose()
    return outcome.episode.model_dump(mode="json")


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ConductorConfig()
    except ValidationError as e:
        # Logging isn't configured yet; keep it simple and actionable.
        print("Configuration error (check your .env):", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    config.setup_logging()

    try:
        if args.command == "plan":
            request = _story_request(args)
            registry = build_story_bible_registry(request)
            plan = resolve_plan(registry)
            _emit({"genre": resolve_genre(request), "waves": plan.to_json()}, None)
            return 0

        if args.command == "generate":
            request = _story_request(args)
            payload = asyncio.run(_generate(config, request, args.include_run))
            _emit(payload, args.output)
            return 0

        if args.command == "episode":
            bible = json.loads(args.bible.read_text(encoding="utf-8"))
            if "story_bible" in bible:
                bible = bible["story_bible"]
            request = EpisodeRequest(
                story_bible=bible,
                episode_number=args.episode_number,
                previous_episode_summary=args.previous_summary,
            )
            _emit(asyncio.run(_episode(config, request)), args.output)
            return 0

        if args.command == "serve":
            import uvicorn

            from story_conductor.server import create_app
            from story_conductor.server.config import ServerSettings

            settings = ServerSettings()
            uvicorn.run(
                create_app(config=config),
                host=args.host or settings.host,
                port=args.port or settings.port,
                log_config=None,
            )
            return 0

        logger.error("Unknown command", extra={"command": args.command})
        return 2

    except ValidationError as e:
        print("Invalid request:", file=sys.stderr)
        print(e, file=sys.stderr)
        return 2

    except PlanningError as e:
        logger.error("Planning failed", extra={"error": str(e)})
        print(str(e), file=sys.stderr)
        return 2

    except QualityGateFailed as e:
        logger.warning(str(e), extra={"reasons": e.result.quality.reasons})
        print(str(e), file=sys.stderr)
        # The blocked run is still written out so it can be inspected.
        _emit(
            {"blocked": True, "run": e.result.to_dict()},
            getattr(args, "output", None),
            stream=sys.stderr,
        )
        return 3

    except Exception:
        logger.exception("Command failed")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
