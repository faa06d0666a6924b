"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator

import pytest

from story_conductor.conductor.executor import ExecutionPolicy
from story_conductor.core.config import (
    ConductorConfig,
    ExecutionConfig,
    LLMConfig,
    QualityConfig,
)
from story_conductor.llm.provider import (
    GenerationClient,
    GenerationOptions,
    TransientGenerationError,
)
from story_conductor.story.prompts import INSTRUCTIONS

Responder = Callable[[str], "str | BaseException"]


class ScriptedClient(GenerationClient):
    """Generation client whose replies come from a responder callable.

    The responder receives the prompt and returns raw text, or an exception
    instance which is raised instead. Every call is recorded.
    """

    def __init__(self, responder: Responder | None = None, *, delay: float = 0.0) -> None:
        self.responder = responder or (lambda _prompt: "{}")
        self.delay = delay
        self.prompts: list[str] = []
        self.options: list[GenerationOptions] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.prompts.append(prompt)
        self.options.append(options)
        await asyncio.sleep(self.delay)
        reply = self.responder(prompt)
        if isinstance(reply, BaseException):
            raise reply
        return reply

    async def aclose(self) -> None:
        self.closed = True


def step_for_prompt(prompt: str) -> str | None:
    """Name of the story step whose instruction appears in `prompt`."""
    for name, instruction in INSTRUCTIONS.items():
        if instruction in prompt:
            return name
    return None


@pytest.fixture
def scripted_client() -> type[ScriptedClient]:
    """Provide the scripted client class for building fakes inline."""
    return ScriptedClient


@pytest.fixture
def failing_client() -> ScriptedClient:
    """Provide a client that always fails transiently."""
    return ScriptedClient(lambda _prompt: TransientGenerationError("backend unavailable"))


@pytest.fixture
def story_client() -> Callable[[dict[str, str]], ScriptedClient]:
    """Provide a factory for clients that answer per story step.

    Steps without a canned reply fail transiently and fall back.
    """

    def build(replies: dict[str, str]) -> ScriptedClient:
        def respond(prompt: str) -> str | BaseException:
            name = step_for_prompt(prompt)
            if name in replies:
                return replies[name]
            return TransientGenerationError(f"no reply scripted for {name}")

        return ScriptedClient(respond)

    return build


@pytest.fixture
def fast_policy() -> ExecutionPolicy:
    """Provide an execution policy with no backoff and a short deadline."""
    return ExecutionPolicy(
        max_attempts=2,
        attempt_timeout_seconds=0.2,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
    )


@pytest.fixture
def llm_config() -> LLMConfig:
    """Provide a test LLM configuration."""
    return LLMConfig(
        provider="openai",
        openai_api_key="test-key",
        openai_model="gpt-4.1",
    )


@pytest.fixture
def execution_config() -> ExecutionConfig:
    """Provide a test execution configuration."""
    return ExecutionConfig(
        max_attempts=2,
        attempt_timeout_seconds=1.0,
        backoff_base_seconds=0,
        backoff_max_seconds=0,
    )


@pytest.fixture
def conductor_config(
    llm_config: LLMConfig,
    execution_config: ExecutionConfig,
) -> ConductorConfig:
    """Provide a test conductor configuration."""
    return ConductorConfig(
        log_level="DEBUG",
        debug=True,
        llm=llm_config,
        execution=execution_config,
        quality=QualityConfig(),
    )


@pytest.fixture(autouse=True)
def restore_root_logging() -> Iterator[None]:
    """Undo logging configuration done by the code under test."""
    root = logging.getLogger()
    package = logging.getLogger("story_conductor")
    handlers, level, package_level = list(root.handlers), root.level, package.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    package.setLevel(package_level)
