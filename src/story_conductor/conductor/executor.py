"""Single-step execution with retry and fallback.

`StepExecutor.execute` never raises: every failure mode resolves to a
`StepResult` whose status is `failed` or `succeeded-via-fallback`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from story_conductor.conductor.document import DocumentSnapshot, StepResult, StepStatus
from story_conductor.conductor.parser import parse_structured
from story_conductor.conductor.steps import StepDefinition, StepInputs
from story_conductor.core.config import ExecutionConfig
from story_conductor.errors import FallbackError, GenerationTimeoutError
from story_conductor.llm.provider import GenerationClient, GenerationOptions

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ExecutionPolicy:
    max_attempts: int = 3
    attempt_timeout_seconds: float = 90.0
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.attempt_timeout_seconds <= 0:
            raise ValueError("attempt_timeout_seconds must be > 0")

    @classmethod
    def from_config(cls, config: ExecutionConfig) -> ExecutionPolicy:
        return cls(
            max_attempts=config.max_attempts,
            attempt_timeout_seconds=config.attempt_timeout_seconds,
            backoff_base_seconds=config.backoff_base_seconds,
            backoff_max_seconds=config.backoff_max_seconds,
        )


def _describe(error: BaseException) -> str:
    return f"{error.__class__.__name__}: {error}"


class StepExecutor:
    """Runs one step against the generation client.

    Stateless apart from its collaborators, so one instance can serve every
    step of a wave concurrently.
    """

    def __init__(self, client: GenerationClient, policy: ExecutionPolicy | None = None) -> None:
        self.client = client
        self.policy = policy or ExecutionPolicy()

    async def execute(self, step: StepDefinition, snapshot: DocumentSnapshot) -> StepResult:
        started = time.monotonic()
        inputs = StepInputs.select(
            step,
            context=snapshot.context,
            payloads=snapshot.payloads,
            signals_by_step=snapshot.signals_by_step,
        )

        try:
            prompt = step.build_prompt(inputs)
        except Exception as e:
            # Deterministic; retrying the same inputs cannot help.
            logger.warning(
                "Prompt construction failed",
                extra={"step": step.name, "error": _describe(e)},
            )
            return self._fall_back(step, inputs, started, attempts=0, cause=e)

        attempts = 0
        max_attempts = step.max_attempts or self.policy.max_attempts
        retrying = AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                multiplier=self.policy.backoff_base_seconds,
                max=self.policy.backoff_max_seconds,
            ),
            retry=retry_if_exception_type(Exception),
            before_sleep=self._log_retry(step.name, max_attempts),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    payload = await self._attempt(step, prompt)
        except Exception as e:
            logger.warning(
                "Step exhausted generation attempts",
                extra={"step": step.name, "attempts": attempts, "error": _describe(e)},
            )
            return self._fall_back(step, inputs, started, attempts=attempts, cause=e)

        elapsed = time.monotonic() - started
        logger.info(
            "Step succeeded",
            extra={"step": step.name, "attempts": attempts, "elapsed_seconds": round(elapsed, 3)},
        )
        return StepResult(
            name=step.name,
            status=StepStatus.SUCCEEDED,
            payload=payload,
            elapsed_seconds=elapsed,
            attempts=attempts,
        )

    async def _attempt(self, step: StepDefinition, prompt: str) -> Any:
        timeout = self.policy.attempt_timeout_seconds
        options = GenerationOptions(
            temperature=step.temperature,
            max_output_tokens=step.max_output_tokens,
            timeout_ms=int(timeout * 1000),
            system_prompt=step.system_prompt,
        )
        try:
            raw = await asyncio.wait_for(self.client.generate(prompt, options), timeout=timeout)
        except TimeoutError:
            raise GenerationTimeoutError(step.name, timeout) from None

        parsed = parse_structured(raw)
        return step.shape.validate(step.name, parsed)

    def _fall_back(
        self,
        step: StepDefinition,
        inputs: StepInputs,
        started: float,
        *,
        attempts: int,
        cause: BaseException,
    ) -> StepResult:
        diagnostic = f"generation failed after {attempts} attempt(s): {_describe(cause)}"
        try:
            synthesized = step.fallback(inputs)
            payload = step.shape.validate(step.name, synthesized)
        except Exception as e:
            error = FallbackError(f"fallback for {step.name!r} failed: {_describe(e)}")
            logger.error(
                "Step failed; fallback unusable",
                extra={"step": step.name, "error": str(error)},
            )
            return StepResult(
                name=step.name,
                status=StepStatus.FAILED,
                payload=None,
                elapsed_seconds=time.monotonic() - started,
                attempts=attempts,
                diagnostic=f"{diagnostic}; {error}",
            )

        logger.info("Step resolved via fallback", extra={"step": step.name, "attempts": attempts})
        return StepResult(
            name=step.name,
            status=StepStatus.SUCCEEDED_VIA_FALLBACK,
            payload=payload,
            elapsed_seconds=time.monotonic() - started,
            attempts=attempts,
            diagnostic=diagnostic,
        )

    @staticmethod
    def _log_retry(step: str, max_attempts: int):  # type: ignore[no-untyped-def]
        def before_sleep(state: RetryCallState) -> None:
            error = state.outcome.exception() if state.outcome else None
            logger.info(
                "Retrying step",
                extra={
                    "step": step,
                    "attempt": state.attempt_number,
                    "max_attempts": max_attempts,
                    "error": _describe(error) if error else None,
                },
            )

        return before_sleep
