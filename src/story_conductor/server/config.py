"""Configuration for the REST server.

The server starts without generation credentials. Endpoints that need a
generation backend build it at request time and report a configuration error
there instead.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServerSettings(BaseSettings):
    host: str = Field(default="127.0.0.1", validation_alias="STORY_CONDUCTOR_HOST")
    port: int = Field(default=8000, ge=1, le=65535, validation_alias="STORY_CONDUCTOR_PORT")

    # Dev-friendly CORS for a local front-end. Override via STORY_CONDUCTOR_CORS_ORIGINS=...
    cors_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173",
        validation_alias="STORY_CONDUCTOR_CORS_ORIGINS",
        description="Comma-separated list of allowed CORS origins.",
    )

    max_runs: int = Field(
        default=200,
        ge=1,
        validation_alias="STORY_CONDUCTOR_MAX_RUNS",
        description="Finished runs kept in memory before the oldest are evicted.",
    )

    model_config = SettingsConfigDict(env_prefix="", env_file=".env", extra="ignore")

    def parsed_cors_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]
