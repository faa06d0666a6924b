"""Factory for creating generation clients."""

import logging

from story_conductor.core.config import LLMConfig
from story_conductor.llm.fallback_provider import FallbackChainProvider
from story_conductor.llm.llama_provider import LLaMAProvider
from story_conductor.llm.openai_provider import OpenAIProvider
from story_conductor.llm.provider import GenerationClient

logger = logging.getLogger(__name__)


class LLMFactory:
    """Factory for creating generation client instances."""

    @staticmethod
    def create(config: LLMConfig) -> GenerationClient:
        """Create a generation client based on configuration.

        Args:
            config: LLM configuration specifying the provider.

        Returns:
            Configured client. For the OpenAI provider with
            `fallback_models` set, a `FallbackChainProvider` over the
            primary and fallback models.

        Raises:
            ValueError: If provider type is not supported.
        """
        logger.info(f"Creating LLM provider: {config.provider}")

        if config.provider == "openai":
            primary = OpenAIProvider(config)
            if not config.fallback_models:
                return primary
            fallbacks = [OpenAIProvider(config, model=m) for m in config.fallback_models]
            return FallbackChainProvider(
                primary,
                fallbacks,
                names=[config.openai_model, *config.fallback_models],
            )
        elif config.provider == "llama":
            return LLaMAProvider(config)
        else:
            raise ValueError(f"Unsupported LLM provider: {config.provider}")
