"""Abstract base class for content generation clients."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


class TransientGenerationError(Exception):
    """A recoverable generation failure (network, provider-side error)."""


class RateLimitedError(TransientGenerationError):
    """The provider rejected the request because of rate limiting."""


@dataclass(frozen=True, slots=True)
class GenerationOptions:
    """Per-call generation settings.

    `timeout_ms` is advisory for the client; the step executor enforces its
    own per-attempt deadline regardless.
    """

    temperature: float = 0.7
    max_output_tokens: int = 2000
    timeout_ms: int | None = None
    system_prompt: str | None = None

    @property
    def timeout_seconds(self) -> float | None:
        if self.timeout_ms is None:
            return None
        return self.timeout_ms / 1000


class GenerationClient(ABC):
    """Abstract base class for generation backends.

    This interface allows pluggable backends (OpenAI, LLaMA, fallback chains).
    Implementations return raw text and raise `TransientGenerationError` for
    failures worth retrying. Parsing the text is not their concern.
    """

    @abstractmethod
    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Generate raw text from a prompt.

        Args:
            prompt: The input prompt.
            options: Sampling and deadline settings.

        Returns:
            Generated text.

        Raises:
            TransientGenerationError: On recoverable provider failures.
        """
        pass

    async def aclose(self) -> None:
        """Release any underlying resources."""
        return None
