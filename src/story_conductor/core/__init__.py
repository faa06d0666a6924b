"""Core package initialization."""

from story_conductor.core.config import (
    ConductorConfig,
    ExecutionConfig,
    LLMConfig,
    QualityConfig,
    QualityPolicy,
)

__all__ = [
    "ConductorConfig",
    "ExecutionConfig",
    "LLMConfig",
    "QualityConfig",
    "QualityPolicy",
]
