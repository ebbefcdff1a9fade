"""
Test Mocks
===========

Stand-in collaborators for the chat stream producer.
"""

from typing import AsyncIterator, List, Optional

from community_chat.core.generation import ResponseGenerator
from community_chat.core.lookup import ActivityLookup, ActivitySearchResult
from community_chat.models.schemas import (
    Activity,
    ActivityImage,
    ActivityType,
    DifficultyLevel,
    Location,
)


class StaticGenerator(ResponseGenerator):
    """Answers every query with the same text."""

    def __init__(self, text: str):
        self.text = text
        self.queries: List[str] = []

    async def generate(self, query: str) -> str:
        self.queries.append(query)
        return self.text


class FailingGenerator(ResponseGenerator):
    """Streams some tokens, then raises."""

    def __init__(self, tokens: List[str], error: Exception = RuntimeError("model backend unavailable")):
        self.tokens = tokens
        self.error = error

    async def generate(self, query: str) -> str:
        raise self.error

    async def stream(self, query: str) -> AsyncIterator[str]:
        for token in self.tokens:
            yield token
        raise self.error


class StaticLookup(ActivityLookup):
    """Returns a fixed search result."""

    def __init__(self, result: Optional[ActivitySearchResult]):
        self.result = result
        self.calls = 0

    async def search(self, query: str) -> Optional[ActivitySearchResult]:
        self.calls += 1
        return self.result


def make_activity(activity_id: str = "act-1", title: str = "Bear Mountain Trail", with_image: bool = True) -> Activity:
    """Build a hiking activity, optionally with one image."""
    images = []
    if with_image:
        images.append(
            ActivityImage(
                id=f"{activity_id}-img",
                url=f"https://images.example.org/{activity_id}.jpg",
                thumbnail_url=f"https://images.example.org/{activity_id}-thumb.jpg",
            )
        )
    return Activity(
        id=activity_id,
        title=title,
        description="Forested climb with a view over the valley",
        type=ActivityType.HIKING,
        difficulty=DifficultyLevel.MODERATE,
        distance=5.1,
        location=Location(name="Bear Mountain", latitude=41.31, longitude=-74.0),
        tags=["trail", "views"],
        images=images,
    )
