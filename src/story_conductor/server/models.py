"""Pydantic models for the REST server."""

from __future__ import annotations

from pydantic import BaseModel, Field

from story_conductor.server.run_store import RunKind, RunStatus


class PlanStep(BaseModel):
    name: str
    wave: int
    depends_on: list[str] = Field(default_factory=list)


class PlanResponse(BaseModel):
    genre: str | None = None
    waves: list[list[str]]
    steps: list[PlanStep]


class RunAccepted(BaseModel):
    run_id: str
    kind: RunKind
    status: RunStatus


class RunListItem(BaseModel):
    run_id: str
    kind: RunKind
    status: RunStatus
    created_at: str
    updated_at: str
    percent: int = 0
