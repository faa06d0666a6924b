"""Generation client backed by a local llama.cpp model."""

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from story_conductor.core.config import LLMConfig
from story_conductor.llm.provider import (
    GenerationClient,
    GenerationOptions,
    TransientGenerationError,
)

logger = logging.getLogger(__name__)


class LLaMAProvider(GenerationClient):
    """Local model served through llama-cpp-python.

    Requires the optional extra:
        pip install "story-conductor[llama]"

    A loaded model holds a single context, so every call runs on one dedicated
    worker thread. A call whose caller timed out keeps that thread until the
    model returns, and queued calls wait behind it.
    """

    def __init__(self, config: LLMConfig) -> None:
        """Load the model file.

        Raises:
            ValueError: If no model path is configured.
            ImportError: If llama-cpp-python is not installed.
        """
        if not config.llama_model_path:
            raise ValueError("LLaMA model path is required")

        try:
            from llama_cpp import Llama
        except ImportError as e:
            raise ImportError(
                "llama-cpp-python is required for the llama provider. "
                'Install it with: pip install "story-conductor[llama]"'
            ) from e

        self.config = config
        self._worker = ThreadPoolExecutor(max_workers=1, thread_name_prefix="llama")

        logger.info("Loading local model", extra={"model_path": str(config.llama_model_path)})
        self.llm = Llama(
            model_path=str(config.llama_model_path),
            n_ctx=config.llama_n_ctx,
            n_threads=config.llama_n_threads,
            verbose=False,
        )

    def _chat(self, messages: list[dict[str, str]], options: GenerationOptions) -> str:
        result: Any = self.llm.create_chat_completion(
            messages=messages,
            max_tokens=options.max_output_tokens,
            temperature=options.temperature,
        )
        return result["choices"][0]["message"]["content"] or ""

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        messages = [{"role": "user", "content": prompt}]
        if options.system_prompt:
            messages.insert(0, {"role": "system", "content": options.system_prompt})

        loop = asyncio.get_running_loop()
        try:
            content = await loop.run_in_executor(self._worker, self._chat, messages, options)
        except (RuntimeError, ValueError) as e:
            # Context overflow and decode failures surface as these.
            raise TransientGenerationError(f"llama: {e}") from e

        logger.debug("Local generation finished", extra={"chars": len(content)})
        return content

    async def aclose(self) -> None:
        self._worker.shutdown(wait=False, cancel_futures=True)
