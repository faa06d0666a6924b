"""LLM package initialization."""

from story_conductor.llm.factory import LLMFactory
from story_conductor.llm.provider import (
    GenerationClient,
    GenerationOptions,
    RateLimitedError,
    TransientGenerationError,
)

__all__ = [
    "GenerationClient",
    "GenerationOptions",
    "LLMFactory",
    "RateLimitedError",
    "TransientGenerationError",
]
