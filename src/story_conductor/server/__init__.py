"""FastAPI server adapter for story-conductor.

Business logic stays in `story_conductor.conductor` and `story_conductor.story`;
routing, CORS and run tracking live here.
"""

from __future__ import annotations

__all__ = ["create_app"]

from story_conductor.server.app import create_app
