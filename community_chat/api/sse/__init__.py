"""
Server-Sent Events (SSE) Infrastructure
======================================

Streaming-event protocol and the server side that produces it.

Components:
- Events: Event variants, SSE framing and frame parsing
- Dedup: Short-window duplicate query suppression
- Producer: Turns a chat query into a terminated event stream
"""

from .dedup import DedupCache
from .events import EventType, BaseStreamEvent, StreamEvent, format_sse_event, parse_event_data
from .producer import (
    ChatStreamProducer,
    ChatStreamError,
    QueryValidationError,
    DuplicateRequestError,
    StreamingError,
)

__all__ = [
    "DedupCache",
    "EventType",
    "BaseStreamEvent",
    "StreamEvent",
    "format_sse_event",
    "parse_event_data",
    "ChatStreamProducer",
    "ChatStreamError",
    "QueryValidationError",
    "DuplicateRequestError",
    "StreamingError",
]
