"""Story Conductor.

Dependency-aware orchestration of multi-step story generation:
- step registries planned into concurrent waves
- per-step retry, timeout and context-derived fallbacks
- a post-run quality gate
- story bible and episode pipelines with a CLI and a REST API
"""

__version__ = "0.1.0"

from story_conductor.core.config import ConductorConfig

__all__ = ["__version__", "ConductorConfig"]
