"""
Chat Stream Producer
====================

Turns one chat query into an ordered sequence of streaming events.

Queries are validated and checked against the dedup window before any
stream is opened. Once the stream starts, every outcome ends with exactly
one terminal event and the generator finishes, so the server closes the
response itself instead of leaving the client to detect a dropped
connection.
"""

from typing import AsyncIterator, Optional, Dict, Any
from urllib.parse import unquote
import asyncio

from community_chat.config.logging import get_logger
from community_chat.config.settings import Settings, get_settings
from community_chat.core.generation import ResponseGenerator
from community_chat.core.lookup import ActivityLookup

from .dedup import DedupCache
from .events import (
    BaseStreamEvent,
    TextContentEvent,
    new_message_id,
    create_stream_start_event,
    create_text_event,
    create_tool_start_event,
    create_tool_end_event,
    create_activities_found_event,
    create_images_loaded_event,
    create_stream_end_event,
    create_error_event,
)

logger = get_logger(__name__)

SSE_HEADERS: Dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",  # Disable Nginx buffering
}

STREAM_ERROR_MESSAGE = "An error occurred while generating the response. Please try again."
DUPLICATE_MESSAGE = (
    "Duplicate message sent too quickly. Please wait before sending the same message again."
)


class ChatStreamError(Exception):
    """Base class for chat stream failures."""

    status_code: int = 500
    error_code: str = "chat_stream_error"


class QueryValidationError(ChatStreamError):
    """Missing or malformed query, rejected before any stream opens."""

    status_code = 400
    error_code = "validation_error"


class DuplicateRequestError(ChatStreamError):
    """Identical query seen within the dedup window, rejected before any stream opens."""

    status_code = 429
    error_code = "duplicate_request"


class StreamingError(ChatStreamError):
    """Failure after the stream has started, reported as an in-band error event."""

    error_code = "stream_error"


def decode_query(raw_query: str) -> str:
    """
    Percent-decode a query that the client may have encoded.

    Text that is not valid percent-encoded UTF-8 is returned unchanged.
    """
    try:
        return unquote(raw_query, errors="strict")
    except UnicodeDecodeError:
        logger.warning("Failed to decode query, using raw text", query_length=len(raw_query))
        return raw_query


class ChatStreamProducer:
    """
    Produces SSE chat streams.

    Handles:
    - Query validation and decoding
    - Duplicate suppression through an injected dedup cache
    - Event emission and guaranteed stream termination
    """

    def __init__(
        self,
        generator: ResponseGenerator,
        dedup_cache: DedupCache,
        settings: Optional[Settings] = None,
        lookup: Optional[ActivityLookup] = None,
    ) -> None:
        self.generator = generator
        self.dedup_cache = dedup_cache
        self.settings = settings or get_settings()
        self.lookup = lookup
        self.active_streams = 0
        self.logger = logger.bind(component="chat_stream_producer")

    def handle_query(
        self, raw_query: Optional[str], client_ip: str = "unknown"
    ) -> AsyncIterator[str]:
        """
        Accept a query and return its event stream.

        Validation and duplicate checks run immediately, so a rejected query
        never produces any event.

        Args:
            raw_query: Query text as received, possibly percent-encoded
            client_ip: Client address for logging

        Returns:
            Async iterator of SSE formatted frames

        Raises:
            QueryValidationError: If the query is missing or empty
            DuplicateRequestError: If the same query was accepted within the window
        """
        if raw_query is None or not raw_query.strip():
            self.logger.warning("Rejected empty query", client_ip=client_ip)
            raise QueryValidationError("message parameter is required")

        query = decode_query(raw_query)
        if not query.strip():
            self.logger.warning("Rejected query that decodes to blank text", client_ip=client_ip)
            raise QueryValidationError("message parameter is required")

        if not self.dedup_cache.check_and_record(query):
            self.logger.warning(
                "Duplicate message detected and ignored", client_ip=client_ip, query=query
            )
            raise DuplicateRequestError(DUPLICATE_MESSAGE)

        self.logger.info("Received chat message", client_ip=client_ip, query=query)
        return self.stream_events(query, client_ip=client_ip)

    async def stream_events(self, query: str, client_ip: str = "unknown") -> AsyncIterator[str]:
        """
        Emit the events for one accepted query.

        Yields:
            SSE formatted frames, ending with a stream end or error frame
        """
        message_id = new_message_id()
        log = self.logger.bind(client_ip=client_ip, message_id=message_id)
        self.active_streams += 1
        log.info("Starting stream")

        try:
            yield create_stream_start_event(message_id).format_sse()
            await self._pause(self.settings.stream_start_delay)

            if self.lookup is not None:
                async for event in self._lookup_events(query):
                    yield event.format_sse()

            async for text_event in self._text_events(query):
                yield text_event.format_sse()
                await self._pause(self.settings.stream_token_delay)

            yield create_stream_end_event().format_sse()
            log.info("Stream completed")
        except asyncio.CancelledError:
            log.info("Client disconnected before the stream completed")
            raise
        except Exception as e:
            failure = StreamingError(str(e))
            log.exception("Stream failed", error=str(failure), error_type=type(e).__name__)
            details: Optional[Dict[str, Any]] = (
                {"reason": str(failure)} if self.settings.debug else None
            )
            yield create_error_event(
                STREAM_ERROR_MESSAGE, code=failure.error_code, details=details
            ).format_sse()
        finally:
            self.active_streams -= 1
            log.info("Stream writer ended")

    async def _text_events(self, query: str) -> AsyncIterator[TextContentEvent]:
        """Wrap generated tokens in text events, flagging the last one complete."""
        pending: Optional[str] = None
        try:
            async for token in self.generator.stream(query):
                if pending is not None:
                    yield create_text_event(pending, is_complete=False)
                pending = token
        except Exception:
            # Tokens already generated still reach the client before the error
            if pending is not None:
                yield create_text_event(pending, is_complete=False)
            raise
        if pending is not None:
            yield create_text_event(pending, is_complete=True)

    async def _lookup_events(self, query: str) -> AsyncIterator[BaseStreamEvent]:
        """Run the activity lookup bracketed by tool execution events."""
        if self.lookup is None:
            return
        tool_name = self.lookup.tool_name
        tool_args = {"query": query}

        yield create_tool_start_event(tool_name, tool_args)
        result = await self.lookup.search(query)

        found = 0
        if result is not None and result.activities:
            found = len(result.activities)
            yield create_activities_found_event(
                result.activities,
                total_count=max(result.total_count, found),
                search_query=result.search_query or query,
            )
            for activity in result.activities:
                images = result.images.get(activity.id) or activity.images
                if images:
                    yield create_images_loaded_event(activity.id, images)

        yield create_tool_end_event(tool_name, tool_args, result={"activities": found})

    @staticmethod
    async def _pause(seconds: float) -> None:
        if seconds > 0:
            await asyncio.sleep(seconds)
