"""Story bible and episode pipelines built on the conductor."""

from story_conductor.story.bible import (
    StoryBible,
    StoryBibleOutcome,
    build_story_bible_registry,
    generate_story_bible,
    infer_genre,
    story_bible_context,
)
from story_conductor.story.episode import (
    Episode,
    EpisodeOutcome,
    build_episode_registry,
    episode_context,
    generate_episode,
)
from story_conductor.story.models import EpisodeRequest, StoryBibleRequest

__all__ = [
    "Episode",
    "EpisodeOutcome",
    "EpisodeRequest",
    "StoryBible",
    "StoryBibleOutcome",
    "StoryBibleRequest",
    "build_episode_registry",
    "build_story_bible_registry",
    "episode_context",
    "generate_episode",
    "generate_story_bible",
    "infer_genre",
    "story_bible_context",
]
