"""
Chat Session State
==================

Consumer-side state for one chat session and the pure fold that advances it.

``reduce(state, action)`` never performs I/O: stream events from the server
and local connection actions are applied in arrival order, each producing a
new immutable :class:`ChatState`. Connection states move only along the
transitions in :data:`TRANSITIONS`; the sole way out of ``CLOSED`` toward a
new connection is the ``SEND_QUERY`` trigger, raised only by an explicit
query submission.
"""

from datetime import datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple, Type, Union

from pydantic import BaseModel, ConfigDict, Field

from community_chat.api.sse.events import (
    ActivitiesFoundEvent,
    BaseStreamEvent,
    ErrorEvent,
    ImagesLoadedEvent,
    StreamEndEvent,
    StreamStartEvent,
    TextContentEvent,
    ToolExecutionEndEvent,
    ToolExecutionStartEvent,
)
from community_chat.config.logging import get_logger
from community_chat.models.schemas import (
    Activity,
    ChatMessage,
    MessageType,
    utc_now,
)

logger = get_logger(__name__)

CONNECTION_LOST_MESSAGE = "Connection lost. Please try again."
DUPLICATE_WAIT_MESSAGE = "Please wait a moment before sending the same message again."
CONNECTION_LOOP_MESSAGE = "Too many connection attempts. Please wait before trying again."
UNKNOWN_ERROR_MESSAGE = "An unknown error occurred."


class ConnectionState(str, Enum):
    """Lifecycle of the connection for one query."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    STREAMING = "streaming"
    CLOSED = "closed"


class ConnectionTrigger(str, Enum):
    """Inputs that move the connection between states."""

    SEND_QUERY = "send_query"
    TRANSPORT_OPENED = "transport_opened"
    STREAM_STARTED = "stream_started"
    TERMINAL_EVENT = "terminal_event"
    TRANSPORT_LOST = "transport_lost"
    REJECTED = "rejected"
    DISCONNECT = "disconnect"
    RESET = "reset"
    CLEAR = "clear"


ACTIVE_STATES: FrozenSet[ConnectionState] = frozenset(
    {ConnectionState.CONNECTING, ConnectionState.OPEN, ConnectionState.STREAMING}
)

TRANSITIONS: Dict[Tuple[ConnectionState, ConnectionTrigger], ConnectionState] = {
    (ConnectionState.IDLE, ConnectionTrigger.SEND_QUERY): ConnectionState.CONNECTING,
    (ConnectionState.CLOSED, ConnectionTrigger.SEND_QUERY): ConnectionState.CONNECTING,
    (ConnectionState.CONNECTING, ConnectionTrigger.TRANSPORT_OPENED): ConnectionState.OPEN,
    (ConnectionState.CONNECTING, ConnectionTrigger.STREAM_STARTED): ConnectionState.STREAMING,
    (ConnectionState.OPEN, ConnectionTrigger.STREAM_STARTED): ConnectionState.STREAMING,
    (ConnectionState.CONNECTING, ConnectionTrigger.REJECTED): ConnectionState.CLOSED,
    (ConnectionState.OPEN, ConnectionTrigger.REJECTED): ConnectionState.CLOSED,
    (ConnectionState.IDLE, ConnectionTrigger.CLEAR): ConnectionState.IDLE,
    (ConnectionState.CLOSED, ConnectionTrigger.CLEAR): ConnectionState.IDLE,
}
for _state in ACTIVE_STATES:
    TRANSITIONS[(_state, ConnectionTrigger.TERMINAL_EVENT)] = ConnectionState.CLOSED
    TRANSITIONS[(_state, ConnectionTrigger.TRANSPORT_LOST)] = ConnectionState.CLOSED
for _state in ConnectionState:
    TRANSITIONS[(_state, ConnectionTrigger.DISCONNECT)] = ConnectionState.CLOSED
    TRANSITIONS[(_state, ConnectionTrigger.RESET)] = ConnectionState.IDLE


class InvalidTransitionError(ValueError):
    """Raised when a trigger is not allowed in the current connection state."""

    def __init__(self, state: ConnectionState, trigger: ConnectionTrigger):
        self.state = state
        self.trigger = trigger
        super().__init__(f"Trigger {trigger.value!r} not allowed in state {state.value!r}")


def next_connection_state(state: ConnectionState, trigger: ConnectionTrigger) -> ConnectionState:
    """Look up the state reached from ``state`` on ``trigger``."""
    try:
        return TRANSITIONS[(state, trigger)]
    except KeyError:
        raise InvalidTransitionError(state, trigger) from None


# Local actions
class QuerySubmitted(BaseModel):
    """The user explicitly sent a query."""

    text: str
    message_id: str
    timestamp: datetime = Field(default_factory=utc_now)


class TransportOpened(BaseModel):
    """The server accepted the request and the stream body is open."""


class TransportClosed(BaseModel):
    """The transport ended or failed."""

    reason: Optional[str] = None


class RequestRejected(BaseModel):
    """The query was refused before a stream opened."""

    status_code: Optional[int] = None
    message: Optional[str] = None
    code: Optional[str] = None


class Disconnected(BaseModel):
    """The stream was abandoned on purpose."""


class Reset(BaseModel):
    """Local error and connection state were cleared for a manual retry."""


class ClearChat(BaseModel):
    """The conversation was cleared between streams."""


Action = Union[
    BaseStreamEvent,
    QuerySubmitted,
    TransportOpened,
    TransportClosed,
    RequestRejected,
    Disconnected,
    Reset,
    ClearChat,
]

NON_RETRYABLE_ERRORS = frozenset({"duplicate_request", "connection_loop"})


class ChatState(BaseModel):
    """Externally observable state of a chat session."""

    model_config = ConfigDict(frozen=True)

    messages: List[ChatMessage] = Field(default_factory=list)
    connection: ConnectionState = ConnectionState.IDLE
    is_streaming: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None
    current_message_id: Optional[str] = None
    active_tools: FrozenSet[str] = frozenset()
    activities: List[Activity] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        """Whether a stream is in progress for this session."""
        return self.connection in ACTIVE_STATES

    @property
    def is_connected(self) -> bool:
        return self.connection in (ConnectionState.OPEN, ConnectionState.STREAMING)

    @property
    def can_reconnect(self) -> bool:
        """Whether the error should be offered a manual reconnect."""
        return self.error is not None and self.error_code not in NON_RETRYABLE_ERRORS

    def get_message(self, message_id: str) -> Optional[ChatMessage]:
        return next((m for m in self.messages if m.id == message_id), None)


def _update_message(state: ChatState, message_id: Optional[str], **changes) -> List[ChatMessage]:
    return [
        message.model_copy(update=changes) if message.id == message_id else message
        for message in state.messages
    ]


def _union_by_id(existing: List, incoming: List) -> List:
    seen = {item.id for item in existing}
    merged = list(existing)
    for item in incoming:
        if item.id not in seen:
            seen.add(item.id)
            merged.append(item)
    return merged


def _current(state: ChatState) -> Optional[ChatMessage]:
    if state.current_message_id is None:
        return None
    return state.get_message(state.current_message_id)


def _finish_current(state: ChatState) -> List[ChatMessage]:
    """Messages with the accumulation target marked as no longer streaming."""
    return _update_message(state, state.current_message_id, is_streaming=False)


def _on_query_submitted(state: ChatState, action: QuerySubmitted, connection: ConnectionState) -> ChatState:
    message = ChatMessage(
        id=action.message_id, type=MessageType.USER, content=action.text, timestamp=action.timestamp
    )
    return state.model_copy(
        update={
            "messages": [*state.messages, message],
            "connection": connection,
            "is_streaming": False,
            "error": None,
            "error_code": None,
            "current_message_id": None,
            "active_tools": frozenset(),
        }
    )


def _on_transport_opened(state: ChatState, action: TransportOpened, connection: ConnectionState) -> ChatState:
    return state.model_copy(update={"connection": connection, "error": None, "error_code": None})


def _on_stream_start(state: ChatState, event: StreamStartEvent, connection: ConnectionState) -> ChatState:
    message = ChatMessage(
        id=event.message_id,
        type=MessageType.ASSISTANT,
        content="",
        timestamp=event.timestamp,
        is_streaming=True,
    )
    return state.model_copy(
        update={
            "messages": [*state.messages, message],
            "connection": connection,
            "is_streaming": True,
            "current_message_id": event.message_id,
        }
    )


def _on_text(state: ChatState, event: TextContentEvent, connection: ConnectionState) -> ChatState:
    current = _current(state)
    if current is None:
        logger.warning("Text content received without an active message, ignoring", event_id=event.id)
        return state
    messages = _update_message(
        state,
        current.id,
        content=current.content + event.content,
        is_streaming=not event.is_complete,
    )
    return state.model_copy(update={"messages": messages})


def _on_activities(state: ChatState, event: ActivitiesFoundEvent, connection: ConnectionState) -> ChatState:
    current = _current(state)
    if current is None:
        logger.warning("Activities received without an active message, ignoring", event_id=event.id)
        return state
    metadata = current.metadata.model_copy(
        update={"total_count": event.total_count, "search_query": event.search_query}
    )
    messages = _update_message(
        state,
        current.id,
        activities=_union_by_id(current.activities, event.activities),
        metadata=metadata,
    )
    return state.model_copy(update={"messages": messages, "activities": list(event.activities)})


def _on_images(state: ChatState, event: ImagesLoadedEvent, connection: ConnectionState) -> ChatState:
    current = _current(state)
    if current is None:
        logger.warning("Images received without an active message, ignoring", event_id=event.id)
        return state
    metadata = current.metadata.model_copy(update={"activity_id": event.activity_id})
    messages = _update_message(
        state, current.id, images=_union_by_id(current.images, event.images), metadata=metadata
    )
    return state.model_copy(update={"messages": messages})


def _on_tool_start(state: ChatState, event: ToolExecutionStartEvent, connection: ConnectionState) -> ChatState:
    return state.model_copy(update={"active_tools": state.active_tools | {event.tool_name}})


def _on_tool_end(state: ChatState, event: ToolExecutionEndEvent, connection: ConnectionState) -> ChatState:
    return state.model_copy(update={"active_tools": state.active_tools - {event.tool_name}})


def _on_stream_end(state: ChatState, event: StreamEndEvent, connection: ConnectionState) -> ChatState:
    return state.model_copy(
        update={
            "messages": _finish_current(state),
            "connection": connection,
            "is_streaming": False,
            "current_message_id": None,
            "active_tools": frozenset(),
        }
    )


def _on_error(state: ChatState, event: ErrorEvent, connection: ConnectionState) -> ChatState:
    message = event.message or UNKNOWN_ERROR_MESSAGE
    error_message = ChatMessage(
        id=f"error-{event.id}", type=MessageType.ERROR, content=message, timestamp=event.timestamp
    )
    return state.model_copy(
        update={
            "messages": [*_finish_current(state), error_message],
            "connection": connection,
            "is_streaming": False,
            "error": message,
            "error_code": event.code or "stream_error",
            "current_message_id": None,
            "active_tools": frozenset(),
        }
    )


def _on_transport_closed(state: ChatState, action: TransportClosed, connection: ConnectionState) -> ChatState:
    logger.warning("Connection lost without a terminal event", reason=action.reason)
    return state.model_copy(
        update={
            "messages": _finish_current(state),
            "connection": connection,
            "is_streaming": False,
            "error": CONNECTION_LOST_MESSAGE,
            "error_code": "connection_lost",
            "current_message_id": None,
            "active_tools": frozenset(),
        }
    )


def _on_request_rejected(state: ChatState, action: RequestRejected, connection: ConnectionState) -> ChatState:
    if action.code is not None:
        code = action.code
    elif action.status_code == 429:
        code = "duplicate_request"
    else:
        code = "request_failed"

    if code == "duplicate_request":
        message = DUPLICATE_WAIT_MESSAGE
    elif code == "connection_loop":
        message = CONNECTION_LOOP_MESSAGE
    else:
        message = action.message or f"Request failed with status {action.status_code}"

    return state.model_copy(
        update={
            "connection": connection,
            "is_streaming": False,
            "error": message,
            "error_code": code,
            "current_message_id": None,
        }
    )


def _on_disconnected(state: ChatState, action: Disconnected, connection: ConnectionState) -> ChatState:
    return state.model_copy(
        update={
            "messages": _finish_current(state),
            "connection": connection,
            "is_streaming": False,
            "current_message_id": None,
            "active_tools": frozenset(),
        }
    )


def _on_reset(state: ChatState, action: Reset, connection: ConnectionState) -> ChatState:
    return state.model_copy(
        update={
            "messages": _finish_current(state),
            "connection": connection,
            "is_streaming": False,
            "error": None,
            "error_code": None,
            "current_message_id": None,
            "active_tools": frozenset(),
        }
    )



def _on_clear(state: ChatState, action: ClearChat, connection: ConnectionState) -> ChatState:
    return ChatState(connection=connection)

Reducer = Callable[[ChatState, Action, ConnectionState], ChatState]

# action type -> (connection trigger or None, reducer)
_REDUCERS: Dict[Type, Tuple[Optional[ConnectionTrigger], Reducer]] = {
    QuerySubmitted: (ConnectionTrigger.SEND_QUERY, _on_query_submitted),
    TransportOpened: (ConnectionTrigger.TRANSPORT_OPENED, _on_transport_opened),
    TransportClosed: (ConnectionTrigger.TRANSPORT_LOST, _on_transport_closed),
    RequestRejected: (ConnectionTrigger.REJECTED, _on_request_rejected),
    Disconnected: (ConnectionTrigger.DISCONNECT, _on_disconnected),
    Reset: (ConnectionTrigger.RESET, _on_reset),
    ClearChat: (ConnectionTrigger.CLEAR, _on_clear),
    StreamStartEvent: (ConnectionTrigger.STREAM_STARTED, _on_stream_start),
    TextContentEvent: (None, _on_text),
    ActivitiesFoundEvent: (None, _on_activities),
    ImagesLoadedEvent: (None, _on_images),
    ToolExecutionStartEvent: (None, _on_tool_start),
    ToolExecutionEndEvent: (None, _on_tool_end),
    StreamEndEvent: (ConnectionTrigger.TERMINAL_EVENT, _on_stream_end),
    ErrorEvent: (ConnectionTrigger.TERMINAL_EVENT, _on_error),
}


def reduce(state: ChatState, action: Action) -> ChatState:
    """
    Apply one action to the session state.

    Stream events are only accepted while a connection is active; anything
    arriving after a terminal event is ignored. Actions whose connection
    trigger is not allowed in the current state leave the state unchanged.

    Args:
        state: Current state
        action: Stream event or local action

    Returns:
        The next state
    """
    entry = _REDUCERS.get(type(action))
    if entry is None:
        logger.warning("Unhandled action type, ignoring", action_type=type(action).__name__)
        return state

    if isinstance(action, BaseStreamEvent) and not state.is_active:
        logger.warning(
            "Event received while no stream is active, ignoring",
            event_type=action.type,
            connection=state.connection.value,
        )
        return state

    trigger, reducer = entry
    connection = state.connection
    if trigger is not None:
        try:
            connection = next_connection_state(state.connection, trigger)
        except InvalidTransitionError as e:
            if trigger is ConnectionTrigger.TRANSPORT_LOST and state.connection is ConnectionState.CLOSED:
                # Transport closing after a terminal event is the normal end of a stream
                return state
            logger.warning("Ignoring action", action_type=type(action).__name__, reason=str(e))
            return state

    return reducer(state, action, connection)


def fold(actions, state: Optional[ChatState] = None) -> ChatState:
    """Apply ``actions`` in order, starting from ``state`` or an idle session."""
    result = state if state is not None else ChatState()
    for action in actions:
        result = reduce(result, action)
    return result
