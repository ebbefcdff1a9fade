"""
Chat Session
============

Async consumer of the chat stream endpoint.

A :class:`ChatSession` owns at most one stream at a time. The transport task
reads the SSE body with httpx, turns frames into events and posts them, with
the local connection actions, into an ``asyncio.Queue``. A single dispatcher
task folds queue items into the session state with
:func:`community_chat.client.state.reduce`. Queue items carry the generation
of the stream that produced them so nothing from a torn-down stream reaches
the state.

The session never reconnects on its own. A new connection is only opened by
:meth:`ChatSession.send_query`.
"""

import asyncio
from contextlib import suppress
from typing import Any, Callable, List, Optional, Tuple
import uuid

import httpx

from community_chat.api.sse.events import (
    BaseStreamEvent,
    EventParseError,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
    UnknownEventTypeError,
    parse_event_data,
)
from community_chat.client.frames import SSEFrameDecoder
from community_chat.client.guard import ReconnectGuard
from community_chat.client.state import (
    Action,
    ChatState,
    ClearChat,
    Disconnected,
    QuerySubmitted,
    RequestRejected,
    Reset,
    TransportClosed,
    TransportOpened,
    reduce,
)
from community_chat.config.logging import get_logger
from community_chat.config.settings import Settings, get_settings

logger = get_logger(__name__)

ErrorCallback = Callable[[str, Optional[str]], Any]
ToolCallback = Callable[[str, bool], Any]
ChangeCallback = Callable[[ChatState], Any]


class ConnectionLostError(Exception):
    """The stream closed before a terminal event arrived."""


class ChatSession:
    """
    Client for one chat conversation.

    Args:
        endpoint: Stream endpoint URL, defaults to ``settings.chat_endpoint``
        client: httpx client to use; one is created (and closed by
            :meth:`aclose`) when omitted
        settings: Settings to use instead of the global settings
        guard: Connection loop guard, defaults to one built from settings
        on_error: Called with ``(error, error_code)`` when an error is recorded
        on_tool_execution: Called with ``(tool_name, is_executing)``
        on_change: Called with the new state after every change
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        settings: Optional[Settings] = None,
        guard: Optional[ReconnectGuard] = None,
        on_error: Optional[ErrorCallback] = None,
        on_tool_execution: Optional[ToolCallback] = None,
        on_change: Optional[ChangeCallback] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.endpoint = endpoint or self.settings.chat_endpoint
        self._client = client
        self._owns_client = client is None
        self._guard = guard or ReconnectGuard(
            window_seconds=self.settings.client_loop_window_seconds,
            max_attempts=self.settings.client_max_connection_attempts,
        )
        self._on_error = on_error
        self._on_tool_execution = on_tool_execution
        self._on_change = on_change

        self._state = ChatState()
        self._generation = 0
        self._queue: Optional["asyncio.Queue[Tuple[int, Action]]"] = None
        self._dispatcher: Optional[asyncio.Task] = None
        self._stream_task: Optional[asyncio.Task] = None

        self.logger = logger.bind(endpoint=self.endpoint)

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def messages(self):
        return self._state.messages

    @property
    def is_streaming(self) -> bool:
        return self._state.is_streaming

    @property
    def error(self) -> Optional[str]:
        return self._state.error

    async def __aenter__(self) -> "ChatSession":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    def send_query(self, text: str) -> bool:
        """
        Submit a query and start streaming the answer in the background.

        Must be called from a running event loop. Returns immediately.

        Returns:
            False when the query was ignored (blank text or a stream is active)
        """
        text = text.strip()
        if not text:
            return False
        if self._state.is_active:
            self.logger.info("Query ignored while a stream is active", connection=self._state.connection.value)
            return False

        self._cancel_stream()
        self._generation += 1
        generation = self._generation
        self._ensure_dispatcher()

        self._apply(QuerySubmitted(text=text, message_id=f"user-{uuid.uuid4().hex[:12]}"))

        if not self._guard.allow(self.endpoint):
            self._post(generation, RequestRejected(code="connection_loop"))
            return True

        self.logger.info("Opening chat stream", generation=generation, query_length=len(text))
        self._stream_task = asyncio.get_running_loop().create_task(self._run_stream(text, generation))
        return True

    async def reconnect(self) -> None:
        """
        Drop the current connection and clear error and connection state.

        The last query is not sent again; the next connection is opened by
        :meth:`send_query`.
        """
        await self._teardown()
        self._apply(Reset())
        self.logger.info("Session reset for manual retry")

    async def disconnect(self) -> None:
        """Abandon the active stream, if any."""
        await self._teardown()
        self._apply(Disconnected())

    def clear(self) -> bool:
        """
        Empty the conversation, its activities and any error.

        Returns:
            False when a stream is active and nothing was cleared
        """
        if self._state.is_active:
            self.logger.info("Clear ignored while a stream is active", connection=self._state.connection.value)
            return False
        self._apply(ClearChat())
        return True

    async def aclose(self) -> None:
        """Tear down the session and release the HTTP client if owned."""
        await self.disconnect()
        if self._dispatcher is not None:
            self._dispatcher.cancel()
            with suppress(asyncio.CancelledError):
                await self._dispatcher
            self._dispatcher = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def drain(self) -> None:
        """Wait for the active stream task and every queued action to be processed."""
        if self._stream_task is not None:
            with suppress(asyncio.CancelledError):
                await self._stream_task
        if self._queue is not None:
            await self._queue.join()

    # Internal plumbing

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.settings.client_timeout)
        return self._client

    def _ensure_dispatcher(self) -> None:
        if self._queue is None:
            self._queue = asyncio.Queue()
        if self._dispatcher is None or self._dispatcher.done():
            self._dispatcher = asyncio.get_running_loop().create_task(self._dispatch())

    def _post(self, generation: int, action: Action) -> None:
        if self._queue is None:
            raise RuntimeError("Session dispatcher is not running")
        self._queue.put_nowait((generation, action))

    async def _dispatch(self) -> None:
        queue = self._queue
        if queue is None:
            return
        while True:
            generation, action = await queue.get()
            try:
                if generation == self._generation:
                    self._apply(action)
                else:
                    self.logger.debug(
                        "Dropping action from a closed stream",
                        action_type=type(action).__name__,
                        generation=generation,
                    )
            finally:
                queue.task_done()

    def _apply(self, action: Action) -> None:
        previous = self._state
        state = reduce(previous, action)
        if state is previous:
            return
        self._state = state

        if isinstance(action, ToolExecutionStartEvent):
            self._notify(self._on_tool_execution, action.tool_name, True)
        elif isinstance(action, ToolExecutionEndEvent):
            self._notify(self._on_tool_execution, action.tool_name, False)

        if state.error is not None and (state.error, state.error_code) != (previous.error, previous.error_code):
            self._notify(self._on_error, state.error, state.error_code)

        self._notify(self._on_change, state)

    def _notify(self, callback: Optional[Callable[..., Any]], *args: Any) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            self.logger.error("Session callback failed", callback=getattr(callback, "__name__", repr(callback)), error=str(e), exc_info=True)

    def _cancel_stream(self) -> None:
        if self._stream_task is not None and not self._stream_task.done():
            self._stream_task.cancel()
        self._stream_task = None

    async def _teardown(self) -> None:
        task = self._stream_task
        self._cancel_stream()
        self._generation += 1
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    async def _run_stream(self, text: str, generation: int) -> None:
        client = self._get_client()
        try:
            async with client.stream(
                "GET",
                self.endpoint,
                params={"message": text},
                headers={"Accept": "text/event-stream"},
            ) as response:
                if response.status_code != 200:
                    await response.aread()
                    self.logger.warning("Chat query rejected", status_code=response.status_code)
                    self._post(
                        generation,
                        RequestRejected(status_code=response.status_code, message=_error_detail(response)),
                    )
                    return

                content_type = response.headers.get("content-type", "")
                if not content_type.startswith("text/event-stream"):
                    self.logger.warning("Unexpected content type from chat endpoint", content_type=content_type)
                    self._post(
                        generation,
                        RequestRejected(
                            status_code=response.status_code,
                            message=f"Unexpected content type: {content_type or 'none'}",
                        ),
                    )
                    return

                self._post(generation, TransportOpened())
                await self._read_events(response, generation)
        except asyncio.CancelledError:
            self.logger.debug("Chat stream cancelled", generation=generation)
            raise
        except ConnectionLostError as e:
            self.logger.warning("Chat stream closed early", error=str(e))
            self._post(generation, TransportClosed(reason=str(e)))
        except httpx.HTTPError as e:
            self.logger.warning("Chat stream transport error", error=str(e), error_type=type(e).__name__)
            self._post(generation, TransportClosed(reason=str(e)))
        except Exception as e:
            self.logger.error("Unexpected error reading chat stream", error=str(e), exc_info=True)
            self._post(generation, TransportClosed(reason=str(e)))

    async def _read_events(self, response: httpx.Response, generation: int) -> None:
        """Post events until a terminal one; the response closes on return."""
        decoder = SSEFrameDecoder()
        async for line in response.aiter_lines():
            data = decoder.feed_line(line)
            if data is None:
                continue
            for event in self._parse_frame(data):
                self._post(generation, event)
                if event.is_terminal:
                    self.logger.debug("Terminal event received, closing stream", event_type=event.type)
                    return
        if decoder.has_pending:
            self.logger.warning("Discarding unterminated frame at end of stream")
        raise ConnectionLostError("Stream ended without a terminal event")

    def _parse_frame(self, data: str) -> List[BaseStreamEvent]:
        try:
            return parse_event_data(data)
        except UnknownEventTypeError as e:
            self.logger.warning("Skipping frame with unknown event type", event_type=str(e.event_type))
        except EventParseError as e:
            self.logger.warning("Skipping malformed frame", error=str(e), frame_length=len(data))
        return []


def _error_detail(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return response.text or None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return None
