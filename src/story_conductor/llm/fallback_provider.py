"""Model fallback chain.

When the primary backend fails transiently (rate limits in particular), the
same prompt is retried against each fallback backend in order before the
failure is reported to the step executor.
"""

import logging
from collections.abc import Sequence

from story_conductor.llm.provider import (
    GenerationClient,
    GenerationOptions,
    TransientGenerationError,
)

logger = logging.getLogger(__name__)


class FallbackChainProvider(GenerationClient):
    """Try a primary client, then each fallback client, on transient errors."""

    def __init__(
        self,
        primary: GenerationClient,
        fallbacks: Sequence[GenerationClient],
        names: Sequence[str] | None = None,
    ) -> None:
        self.clients: list[GenerationClient] = [primary, *fallbacks]
        if names is not None and len(names) != len(self.clients):
            raise ValueError("names must label the primary and every fallback client")
        self.names = list(names) if names is not None else [
            f"client-{i}" for i in range(len(self.clients))
        ]

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        last_error: TransientGenerationError | None = None
        for name, client in zip(self.names, self.clients, strict=True):
            try:
                return await client.generate(prompt, options)
            except TransientGenerationError as e:
                last_error = e
                logger.warning(
                    "Generation backend failed, trying next",
                    extra={"backend": name, "error": str(e)},
                )
        assert last_error is not None
        raise TransientGenerationError(
            f"All {len(self.clients)} backends failed; last error: {last_error}"
        ) from last_error

    async def aclose(self) -> None:
        for client in self.clients:
            await client.aclose()
