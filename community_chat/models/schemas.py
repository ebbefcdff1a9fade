"""
Pydantic Schemas
================

Data models for activity payloads, chat messages and API responses.
Wire-facing models use camelCase aliases and ignore unknown fields.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class WireModel(BaseModel):
    """Base for models exchanged with the browser client."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", use_enum_values=True
    )


class ActivityType(str, Enum):
    """Kinds of community activities."""

    HIKING = "hiking"
    CYCLING = "cycling"
    RUNNING = "running"
    SKIING = "skiing"
    CLIMBING = "climbing"
    SWIMMING = "swimming"
    KAYAKING = "kayaking"
    OTHER = "other"


class DifficultyLevel(str, Enum):
    """Activity difficulty."""

    EASY = "easy"
    MODERATE = "moderate"
    HARD = "hard"
    EXPERT = "expert"


class MessageType(str, Enum):
    """Author of a chat message."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    ERROR = "error"


# Activity Models
class Location(WireModel):
    """Geographic location of an activity."""

    id: Optional[str] = Field(None, description="Location identifier")
    name: str = Field(..., description="Location name")
    latitude: float = Field(..., ge=-90, le=90, description="Latitude")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude")
    country: Optional[str] = Field(None, description="Country")
    region: Optional[str] = Field(None, description="Region")
    city: Optional[str] = Field(None, description="City")


class ActivityImage(WireModel):
    """Image attached to an activity."""

    id: str = Field(..., description="Image identifier")
    url: str = Field(..., description="Full size image URL")
    thumbnail_url: Optional[str] = Field(None, description="Thumbnail URL")
    caption: Optional[str] = Field(None, description="Image caption")
    width: Optional[int] = Field(None, ge=0, description="Width in pixels")
    height: Optional[int] = Field(None, ge=0, description="Height in pixels")


class Activity(WireModel):
    """A discoverable community activity."""

    id: str = Field(..., description="Activity identifier")
    title: str = Field(..., description="Activity title")
    description: str = Field(default="", description="Activity description")
    type: ActivityType = Field(default=ActivityType.OTHER, description="Activity type")
    location: Optional[Location] = Field(None, description="Activity location")
    difficulty: Optional[DifficultyLevel] = Field(None, description="Difficulty level")
    duration: Optional[str] = Field(None, description="Typical duration")
    distance: Optional[float] = Field(None, ge=0, description="Distance in kilometers")
    elevation: Optional[float] = Field(None, description="Elevation gain in meters")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    images: List[ActivityImage] = Field(default_factory=list, description="Activity images")
    created_at: Optional[datetime] = Field(None, description="Creation time")
    updated_at: Optional[datetime] = Field(None, description="Last update time")


# Chat Models
class MessageMetadata(WireModel):
    """Extra information attached to a message by result events."""

    total_count: Optional[int] = Field(None, ge=0, description="Total matching activities")
    search_query: Optional[str] = Field(None, description="Query used for the search")
    activity_id: Optional[str] = Field(None, description="Activity the images belong to")


class ChatMessage(WireModel):
    """Consumer-side aggregate for one chat message."""

    id: str = Field(..., description="Message identifier")
    type: MessageType = Field(..., description="Message author type")
    content: str = Field(default="", description="Message text")
    timestamp: datetime = Field(default_factory=utc_now, description="Creation time")
    is_streaming: bool = Field(default=False, description="Whether text is still arriving")
    activities: List[Activity] = Field(default_factory=list, description="Attached activities")
    images: List[ActivityImage] = Field(default_factory=list, description="Attached images")
    metadata: MessageMetadata = Field(default_factory=MessageMetadata, description="Metadata")


# Health Check Models
class HealthStatus(BaseModel):
    """Health check status."""

    status: Literal["healthy", "unhealthy", "degraded"] = Field(..., description="Overall status")
    timestamp: datetime = Field(default_factory=utc_now, description="Check timestamp")
    version: str = Field(..., description="Application version")
    message: Optional[str] = Field(None, description="Human readable summary")
    active_streams: int = Field(0, ge=0, description="Number of streams being produced")
    dedup_entries: int = Field(0, ge=0, description="Queries remembered by the dedup window")


# Error Models
class ErrorResponse(BaseModel):
    """Standard error response model."""

    error: str = Field(..., description="Error message")
    error_code: Optional[str] = Field(None, description="Error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")
    timestamp: datetime = Field(default_factory=utc_now, description="Error timestamp")
    request_id: Optional[str] = Field(None, description="Request identifier for tracking")
