"""FastAPI app factory.

Endpoints are thin wrappers over the story pipelines. Generation runs execute
as background tasks and are polled through the run store.
"""

from __future__ import annotations

import logging
import uuid

from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from story_conductor import __version__
from story_conductor.conductor.conductor import MasterConductor, RunResult
from story_conductor.conductor.progress import ProgressObserver, ProgressSnapshot
from story_conductor.conductor.resolver import resolve_plan
from story_conductor.core.config import ConductorConfig
from story_conductor.errors import PlanningError, QualityGateFailed
from story_conductor.llm.provider import GenerationClient
from story_conductor.server.config import ServerSettings
from story_conductor.server.models import PlanResponse, PlanStep, RunAccepted, RunListItem
from story_conductor.server.run_store import RunRecord, RunStore
from story_conductor.story.bible import (
    build_story_bible_registry,
    generate_story_bible,
    resolve_genre,
)
from story_conductor.story.episode import generate_episode
from story_conductor.story.models import EpisodeRequest, StoryBibleRequest

logger = logging.getLogger(__name__)


def create_app(
    client: GenerationClient | None = None,
    config: ConductorConfig | None = None,
) -> FastAPI:
    settings = ServerSettings()
    conductor_config = config or ConductorConfig()

    app = FastAPI(
        title="Story Conductor",
        version=__version__,
        description="REST API over the story bible and episode pipelines.",
        openapi_url="/api/openapi.json",
        docs_url="/api/docs",
        redoc_url="/api/redoc",
    )

    app.state.settings = settings
    app.state.conductor = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    store = RunStore(max_runs=settings.max_runs)

    def get_conductor() -> MasterConductor:
        if app.state.conductor is None:
            try:
                app.state.conductor = MasterConductor.from_config(conductor_config, client=client)
            except ValueError as e:
                raise HTTPException(
                    status_code=409,
                    detail=f"Generation backend is not configured: {e}",
                ) from e
        return app.state.conductor

    def observer_for(run_id: str) -> ProgressObserver:
        def observe(snapshot: ProgressSnapshot) -> None:
            store.update(run_id, progress=snapshot)

        return observe

    def record_outcome(
        run_id: str,
        run: RunResult,
        result: BaseModel | None,
        error: str | None = None,
    ) -> None:
        store.update(
            run_id,
            status="failed" if error else "succeeded",
            error=error,
            summary=run.summary.model_dump(mode="json"),
            quality=run.quality.model_dump(mode="json"),
            document=run.document.to_dict(),
            result=result.model_dump(mode="json") if result is not None else None,
        )

    async def run_story_bible(run_id: str, req: StoryBibleRequest) -> None:
        store.update(run_id, status="running")
        try:
            outcome = await generate_story_bible(
                req, get_conductor(), observer=observer_for(run_id), run_id=run_id
            )
        except QualityGateFailed as e:
            logger.warning("Story bible blocked by quality gate", extra={"run_id": run_id})
            record_outcome(run_id, e.result, None, error=str(e))
            return
        except Exception as e:
            logger.exception("Story bible run failed", extra={"run_id": run_id})
            store.update(run_id, status="failed", error=str(e))
            return

        record_outcome(run_id, outcome.run, outcome.bible)

    async def run_episode(run_id: str, req: EpisodeRequest) -> None:
        store.update(run_id, status="running")
        try:
            outcome = await generate_episode(
                req, get_conductor(), observer=observer_for(run_id), run_id=run_id
            )
        except QualityGateFailed as e:
            logger.warning("Episode blocked by quality gate", extra={"run_id": run_id})
            record_outcome(run_id, e.result, None, error=str(e))
            return
        except Exception as e:
            logger.exception("Episode run failed", extra={"run_id": run_id})
            store.update(run_id, status="failed", error=str(e))
            return

        record_outcome(run_id, outcome.run, outcome.episode)

    @app.get("/api/health")
    def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    @app.post("/api/plan", response_model=PlanResponse)
    def plan(req: StoryBibleRequest) -> PlanResponse:
        registry = build_story_bible_registry(req)
        try:
            execution_plan = resolve_plan(registry)
        except PlanningError as e:
            raise HTTPException(status_code=422, detail=str(e)) from e
        wave_of = execution_plan.wave_index()
        return PlanResponse(
            genre=resolve_genre(req),
            waves=execution_plan.to_json(),
            steps=[
                PlanStep(
                    name=name,
                    wave=wave_of[name],
                    depends_on=list(registry.get(name).depends_on),
                )
                for name in execution_plan.ordered_steps()
            ],
        )

    @app.post("/api/story-bibles", response_model=RunAccepted, status_code=202)
    def start_story_bible(req: StoryBibleRequest, background: BackgroundTasks) -> RunAccepted:
        get_conductor()
        run_id = uuid.uuid4().hex
        record = store.create(run_id=run_id, kind="story-bible")
        background.add_task(run_story_bible, run_id, req)
        logger.info("Story bible run queued", extra={"run_id": run_id})
        return RunAccepted(run_id=record.run_id, kind=record.kind, status=record.status)

    @app.post("/api/episodes", response_model=RunAccepted, status_code=202)
    def start_episode(req: EpisodeRequest, background: BackgroundTasks) -> RunAccepted:
        get_conductor()
        run_id = uuid.uuid4().hex
        record = store.create(run_id=run_id, kind="episode")
        background.add_task(run_episode, run_id, req)
        logger.info(
            "Episode run queued",
            extra={"run_id": run_id, "episode_number": req.episode_number},
        )
        return RunAccepted(run_id=record.run_id, kind=record.kind, status=record.status)

    @app.get("/api/runs", response_model=list[RunListItem])
    def list_runs() -> list[RunListItem]:
        return [
            RunListItem(
                run_id=r.run_id,
                kind=r.kind,
                status=r.status,
                created_at=r.created_at,
                updated_at=r.updated_at,
                percent=r.progress.percent if r.progress else 0,
            )
            for r in store.list()
        ]

    @app.get("/api/runs/{run_id}", response_model=RunRecord)
    def get_run(run_id: str) -> RunRecord:
        record = store.get(run_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return record

    return app
