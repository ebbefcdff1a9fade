"""
Activity Lookup
===============

Boundary to the geodata and media search that populates activity and image
events. No backend ships with the service; the producer only emits these
events when a lookup is configured.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict

from pydantic import BaseModel, Field

from community_chat.models.schemas import Activity, ActivityImage


class ActivitySearchResult(BaseModel):
    """Outcome of one activity search."""

    activities: List[Activity] = Field(default_factory=list, description="Matching activities")
    total_count: int = Field(default=0, ge=0, description="Total matches, may exceed the batch")
    search_query: Optional[str] = Field(None, description="Normalized query that was searched")
    images: Dict[str, List[ActivityImage]] = Field(
        default_factory=dict, description="Images keyed by activity id"
    )


class ActivityLookup(ABC):
    """Searches activities and their media for a chat query."""

    tool_name: str = "search_activities"

    @abstractmethod
    async def search(self, query: str) -> Optional[ActivitySearchResult]:
        """Return matching activities, or None when the query is not a search."""
