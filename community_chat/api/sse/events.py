"""
SSE Events
==========

Streaming-event protocol shared by the stream producer and the stream consumer.
Defines the event variants, SSE framing and parsing of inbound frames.
"""

from typing import Optional, Dict, Any, List, Union, Literal, Annotated
from datetime import datetime
from enum import Enum
import json
import time
import uuid

from pydantic import Field, TypeAdapter, ValidationError

from community_chat.models.schemas import Activity, ActivityImage, WireModel, utc_now


class EventType(str, Enum):
    """Streaming-event type tags as they appear on the wire."""

    STREAM_START = "STREAMING_START"
    TEXT_MESSAGE_CONTENT = "TEXT_MESSAGE_CONTENT"
    TOOL_EXECUTION_START = "TOOL_EXECUTION_START"
    TOOL_EXECUTION_END = "TOOL_EXECUTION_END"
    ACTIVITIES_FOUND = "ACTIVITIES_FOUND"
    IMAGES_LOADED = "IMAGES_LOADED"
    STREAM_END = "STREAMING_END"
    ERROR = "ERROR"


EVENT_TYPES = frozenset(event_type.value for event_type in EventType)
TERMINAL_EVENT_TYPES = frozenset({EventType.STREAM_END.value, EventType.ERROR.value})


class EventParseError(ValueError):
    """Raised when an inbound frame cannot be decoded into an event."""


class UnknownEventTypeError(EventParseError):
    """Raised when an inbound frame carries an unrecognized type tag."""

    def __init__(self, event_type: Any):
        self.event_type = event_type
        super().__init__(f"Unknown event type: {event_type!r}")


def new_event_id() -> str:
    """Generate an opaque correlation id for one event."""
    return f"evt_{uuid.uuid4().hex[:8]}"


def new_message_id() -> str:
    """Generate the aggregation key for a new logical response."""
    return f"msg-{time.time_ns()}-{uuid.uuid4().hex[:6]}"


class BaseStreamEvent(WireModel):
    """Fields common to every streaming event."""

    type: str
    id: str = Field(default_factory=new_event_id, description="Event correlation id")
    timestamp: datetime = Field(default_factory=utc_now, description="Emission time")

    @property
    def is_terminal(self) -> bool:
        """Whether no further events may follow this one."""
        return self.type in TERMINAL_EVENT_TYPES

    def to_wire(self) -> Dict[str, Any]:
        """Convert to the JSON object sent on the wire."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def format_sse(self) -> str:
        """Format event for SSE protocol."""
        return format_sse_event(self.to_wire())


class StreamStartEvent(BaseStreamEvent):
    """Declares a new logical response."""

    type: Literal["STREAMING_START"] = EventType.STREAM_START.value
    message_id: str = Field(..., description="Aggregation key for the response")


class TextContentEvent(BaseStreamEvent):
    """Incremental chunk of response text."""

    type: Literal["TEXT_MESSAGE_CONTENT"] = EventType.TEXT_MESSAGE_CONTENT.value
    content: str = Field(..., description="Text chunk")
    is_complete: bool = Field(default=False, description="Final chunk of the message")


class ToolExecutionStartEvent(BaseStreamEvent):
    """A named side-operation has started."""

    type: Literal["TOOL_EXECUTION_START"] = EventType.TOOL_EXECUTION_START.value
    tool_name: str = Field(..., description="Tool being executed")
    tool_args: Optional[Dict[str, Any]] = Field(None, description="Tool arguments")


class ToolExecutionEndEvent(BaseStreamEvent):
    """A named side-operation has finished."""

    type: Literal["TOOL_EXECUTION_END"] = EventType.TOOL_EXECUTION_END.value
    tool_name: str = Field(..., description="Tool that was executed")
    tool_args: Optional[Dict[str, Any]] = Field(None, description="Tool arguments")
    result: Optional[Any] = Field(None, description="Tool result summary")


class ActivitiesFoundEvent(BaseStreamEvent):
    """A batch of activities attached to the in-progress message."""

    type: Literal["ACTIVITIES_FOUND"] = EventType.ACTIVITIES_FOUND.value
    activities: List[Activity] = Field(default_factory=list, description="Activities found")
    total_count: int = Field(default=0, ge=0, description="Total matching activities")
    search_query: Optional[str] = Field(None, description="Query used for the search")


class ImagesLoadedEvent(BaseStreamEvent):
    """A batch of images attached to the in-progress message."""

    type: Literal["IMAGES_LOADED"] = EventType.IMAGES_LOADED.value
    activity_id: str = Field(..., description="Activity the images belong to")
    images: List[ActivityImage] = Field(default_factory=list, description="Loaded images")


class StreamEndEvent(BaseStreamEvent):
    """Terminates the logical response."""

    type: Literal["STREAMING_END"] = EventType.STREAM_END.value


class ErrorEvent(BaseStreamEvent):
    """Terminal failure; supersedes normal completion."""

    type: Literal["ERROR"] = EventType.ERROR.value
    message: str = Field(default="", description="Human-readable error message")
    code: Optional[str] = Field(None, description="Machine-readable error code")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional error details")


StreamEvent = Annotated[
    Union[
        StreamStartEvent,
        TextContentEvent,
        ToolExecutionStartEvent,
        ToolExecutionEndEvent,
        ActivitiesFoundEvent,
        ImagesLoadedEvent,
        StreamEndEvent,
        ErrorEvent,
    ],
    Field(discriminator="type"),
]

_stream_event_adapter: TypeAdapter[Any] = TypeAdapter(StreamEvent)


def format_sse_event(data: Dict[str, Any]) -> str:
    """
    Format data for Server-Sent Events protocol.

    Args:
        data: Event object to send as the frame payload

    Returns:
        Formatted SSE message string: one data line followed by a blank line
    """
    data_json = json.dumps(data, default=str, separators=(",", ":"))
    return f"data: {data_json}\n\n"


def parse_event_object(payload: Any) -> BaseStreamEvent:
    """
    Validate one decoded JSON object as a streaming event.

    Raises:
        UnknownEventTypeError: If the type tag is not a known event type
        EventParseError: If the object is not a valid event
    """
    if not isinstance(payload, dict):
        raise EventParseError(f"Event must be a JSON object, got {type(payload).__name__}")

    event_type = payload.get("type")
    if not isinstance(event_type, str) or event_type not in EVENT_TYPES:
        raise UnknownEventTypeError(event_type)

    try:
        return _stream_event_adapter.validate_python(payload)
    except ValidationError as e:
        raise EventParseError(f"Invalid {event_type} event: {e.error_count()} validation error(s)") from e


def parse_event_data(data: str) -> List[BaseStreamEvent]:
    """
    Decode the data of one SSE frame into events.

    A frame normally holds one event object; a JSON array of event objects
    is also accepted and yields its events in order.

    Args:
        data: Frame data (JSON text)

    Returns:
        Parsed events

    Raises:
        EventParseError: If the frame cannot be decoded
    """
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as e:
        raise EventParseError(f"Malformed event JSON: {e.msg}") from e

    if isinstance(payload, list):
        return [parse_event_object(item) for item in payload]
    return [parse_event_object(payload)]


def create_stream_start_event(message_id: Optional[str] = None) -> StreamStartEvent:
    """Create stream start event with a fresh message id unless one is given."""
    return StreamStartEvent(message_id=message_id or new_message_id())


def create_text_event(content: str, is_complete: bool = False) -> TextContentEvent:
    """Create text content event."""
    return TextContentEvent(content=content, is_complete=is_complete)


def create_tool_start_event(
    tool_name: str, tool_args: Optional[Dict[str, Any]] = None
) -> ToolExecutionStartEvent:
    """Create tool execution start event."""
    return ToolExecutionStartEvent(tool_name=tool_name, tool_args=tool_args)


def create_tool_end_event(
    tool_name: str, tool_args: Optional[Dict[str, Any]] = None, result: Optional[Any] = None
) -> ToolExecutionEndEvent:
    """Create tool execution end event."""
    return ToolExecutionEndEvent(tool_name=tool_name, tool_args=tool_args, result=result)


def create_activities_found_event(
    activities: List[Activity], total_count: Optional[int] = None, search_query: Optional[str] = None
) -> ActivitiesFoundEvent:
    """Create activities found event; total count defaults to the batch size."""
    return ActivitiesFoundEvent(
        activities=activities,
        total_count=len(activities) if total_count is None else total_count,
        search_query=search_query,
    )


def create_images_loaded_event(activity_id: str, images: List[ActivityImage]) -> ImagesLoadedEvent:
    """Create images loaded event."""
    return ImagesLoadedEvent(activity_id=activity_id, images=images)


def create_stream_end_event() -> StreamEndEvent:
    """Create stream end event."""
    return StreamEndEvent()


def create_error_event(
    message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None
) -> ErrorEvent:
    """Create error event."""
    return ErrorEvent(message=message, code=code, details=details)
