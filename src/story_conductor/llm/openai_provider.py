"""OpenAI generation client implementation."""

import logging

import openai
from openai import AsyncOpenAI

from story_conductor.core.config import LLMConfig
from story_conductor.llm.provider import (
    GenerationClient,
    GenerationOptions,
    RateLimitedError,
    TransientGenerationError,
)

logger = logging.getLogger(__name__)


class OpenAIProvider(GenerationClient):
    """OpenAI API provider implementation."""

    def __init__(self, config: LLMConfig, model: str | None = None) -> None:
        """Initialize the OpenAI provider.

        Args:
            config: LLM configuration.
            model: Model override; defaults to `config.openai_model`. Used
                when building a model fallback chain.

        Raises:
            ValueError: If API key is not provided.
        """
        if not config.openai_api_key:
            raise ValueError("OpenAI API key is required")

        self.config = config
        self.client = AsyncOpenAI(
            api_key=config.openai_api_key,
            base_url=config.openai_base_url,
            max_retries=0,
        )
        self.model = model or config.openai_model
        self.temperature = config.openai_temperature

        logger.info(f"OpenAI provider initialized with model: {self.model}")

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate a completion using the OpenAI chat API.

        Provider errors worth retrying are translated to
        `TransientGenerationError` so the step executor can handle them
        uniformly.
        """
        messages: list[dict[str, str]] = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})

        logger.debug(f"Generating completion for prompt: {prompt[:100]}...")

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,  # type: ignore
                max_tokens=options.max_output_tokens,
                temperature=options.temperature,
                timeout=options.timeout_seconds,
            )
        except openai.RateLimitError as e:
            raise RateLimitedError(f"{self.model}: rate limited") from e
        except (
            openai.APITimeoutError,
            openai.APIConnectionError,
            openai.InternalServerError,
        ) as e:
            raise TransientGenerationError(f"{self.model}: {e.__class__.__name__}") from e

        content = response.choices[0].message.content or ""
        logger.debug(f"Generated {len(content)} characters")

        return content

    async def aclose(self) -> None:
        await self.client.close()
