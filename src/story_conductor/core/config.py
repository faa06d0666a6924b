"""Core configuration for the conductor."""

from enum import Enum
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from story_conductor.logging import configure_logging


class QualityPolicy(str, Enum):
    """Whether a failing quality report blocks returning the result."""

    WARN = "warn"
    BLOCK = "block"


class LLMConfig(BaseSettings):
    """Configuration for generation backends."""

    provider: Literal["openai", "llama"] = Field(
        default="openai",
        description="Generation backend to use",
    )

    # OpenAI settings
    openai_api_key: str | None = Field(
        default=None,
        description="OpenAI API key",
    )
    openai_model: str = Field(
        default="gpt-4.1",
        description="OpenAI model to use",
    )
    openai_base_url: str | None = Field(
        default=None,
        description="Override for OpenAI-compatible endpoints",
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Default temperature for OpenAI models",
    )
    fallback_models: list[str] = Field(
        default_factory=list,
        description="Models tried in order when the primary model fails transiently",
    )

    # LLaMA settings
    llama_model_path: Path | None = Field(
        default=None,
        description="Path to LLaMA model file",
    )
    llama_n_ctx: int = Field(
        default=8192,
        gt=0,
        description="Context window size for LLaMA",
    )
    llama_n_threads: int | None = Field(
        default=None,
        description="Number of threads for LLaMA (None = auto)",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORY_CONDUCTOR_LLM_",
        env_file=".env",
        extra="ignore",
    )


class ExecutionConfig(BaseSettings):
    """Retry and deadline policy applied to every generation step."""

    max_attempts: int = Field(
        default=3,
        ge=1,
        description="Generation attempts per step before falling back",
    )
    attempt_timeout_seconds: float = Field(
        default=90.0,
        gt=0,
        description="Deadline for a single generation attempt",
    )
    backoff_base_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay for exponential backoff between attempts",
    )
    backoff_max_seconds: float = Field(
        default=8.0,
        ge=0,
        description="Upper bound for a single backoff delay",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORY_CONDUCTOR_EXECUTION_",
        env_file=".env",
        extra="ignore",
    )


class QualityConfig(BaseSettings):
    """Thresholds for the post-run quality gate."""

    min_score: float = Field(
        default=60.0,
        ge=0.0,
        le=100.0,
        description="Minimum aggregate score (0-100) for a passing report",
    )
    max_fallback_ratio: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Largest share of steps that may rely on fallbacks",
    )
    policy: QualityPolicy = Field(
        default=QualityPolicy.WARN,
        description="'warn' returns failing results; 'block' raises QualityGateFailed",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORY_CONDUCTOR_QUALITY_",
        env_file=".env",
        extra="ignore",
    )


class ConductorConfig(BaseSettings):
    """Main configuration for the conductor."""

    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )

    llm: LLMConfig = Field(
        default_factory=LLMConfig,
        description="Generation backend configuration",
    )
    execution: ExecutionConfig = Field(
        default_factory=ExecutionConfig,
        description="Step retry/timeout policy",
    )
    quality: QualityConfig = Field(
        default_factory=QualityConfig,
        description="Quality gate configuration",
    )

    model_config = SettingsConfigDict(
        env_prefix="STORY_CONDUCTOR_",
        env_file=".env",
        extra="ignore",
    )

    def setup_logging(self) -> None:
        """Configure logging based on settings."""
        configure_logging(self.log_level, debug=self.debug)
