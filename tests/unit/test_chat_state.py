"""
Unit Tests for Chat Session State
=================================

Tests for the connection transition table and the pure event fold.
"""

import pytest

from community_chat.api.sse.events import (
    create_activities_found_event,
    create_error_event,
    create_images_loaded_event,
    create_stream_end_event,
    create_stream_start_event,
    create_text_event,
    create_tool_end_event,
    create_tool_start_event,
)
from community_chat.client.state import (
    CONNECTION_LOST_MESSAGE,
    TRANSITIONS,
    ChatState,
    ClearChat,
    ConnectionState,
    ConnectionTrigger,
    Disconnected,
    InvalidTransitionError,
    QuerySubmitted,
    RequestRejected,
    Reset,
    TransportClosed,
    TransportOpened,
    fold,
    next_connection_state,
    reduce,
)
from community_chat.core.generation import HIKING_RESPONSE, tokenize
from community_chat.models.schemas import MessageType

from tests.utils.assertions import assert_settled
from tests.utils.mocks import make_activity


def submitted(text: str = "Find hiking trails") -> QuerySubmitted:
    return QuerySubmitted(text=text, message_id="user-1")


def text_events(chunks):
    """Text events for ``chunks`` with only the last flagged complete."""
    return [
        create_text_event(chunk, is_complete=index == len(chunks) - 1)
        for index, chunk in enumerate(chunks)
    ]


def streaming_state(message_id: str = "msg-1") -> ChatState:
    return fold([submitted(), TransportOpened(), create_stream_start_event(message_id)])


@pytest.mark.unit
class TestConnectionTransitions:
    """Test the explicit transition table."""

    def test_happy_path(self):
        """Test the normal lifecycle of one query."""
        state = ConnectionState.IDLE
        for trigger, expected in [
            (ConnectionTrigger.SEND_QUERY, ConnectionState.CONNECTING),
            (ConnectionTrigger.TRANSPORT_OPENED, ConnectionState.OPEN),
            (ConnectionTrigger.STREAM_STARTED, ConnectionState.STREAMING),
            (ConnectionTrigger.TERMINAL_EVENT, ConnectionState.CLOSED),
        ]:
            state = next_connection_state(state, trigger)
            assert state == expected

    def test_only_send_query_reopens_closed(self):
        """Test no trigger but SEND_QUERY leads from CLOSED toward a connection."""
        reopening = {
            trigger
            for (state, trigger), target in TRANSITIONS.items()
            if state == ConnectionState.CLOSED and target == ConnectionState.CONNECTING
        }
        assert reopening == {ConnectionTrigger.SEND_QUERY}

    def test_send_query_only_connects(self):
        """Test SEND_QUERY is the only trigger entering CONNECTING."""
        entering = {trigger for (_, trigger), target in TRANSITIONS.items() if target == ConnectionState.CONNECTING}
        assert entering == {ConnectionTrigger.SEND_QUERY}

    @pytest.mark.parametrize("state", list(ConnectionState))
    def test_disconnect_and_reset_from_anywhere(self, state):
        """Test every state can be closed or reset."""
        assert next_connection_state(state, ConnectionTrigger.DISCONNECT) == ConnectionState.CLOSED
        assert next_connection_state(state, ConnectionTrigger.RESET) == ConnectionState.IDLE

    @pytest.mark.parametrize(
        "state", [ConnectionState.CONNECTING, ConnectionState.OPEN, ConnectionState.STREAMING]
    )
    def test_send_query_rejected_while_active(self, state):
        """Test a second query cannot start while one is in flight."""
        with pytest.raises(InvalidTransitionError):
            next_connection_state(state, ConnectionTrigger.SEND_QUERY)

    @pytest.mark.parametrize(
        "state,allowed",
        [
            (ConnectionState.IDLE, True),
            (ConnectionState.CLOSED, True),
            (ConnectionState.CONNECTING, False),
            (ConnectionState.OPEN, False),
            (ConnectionState.STREAMING, False),
        ],
    )
    def test_clear_only_between_streams(self, state, allowed):
        """Test the conversation can be cleared only when no stream is active."""
        assert ((state, ConnectionTrigger.CLEAR) in TRANSITIONS) is allowed

    def test_invalid_transition_details(self):
        """Test the error names the state and the trigger."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            next_connection_state(ConnectionState.CLOSED, ConnectionTrigger.STREAM_STARTED)

        assert exc_info.value.state == ConnectionState.CLOSED
        assert exc_info.value.trigger == ConnectionTrigger.STREAM_STARTED


@pytest.mark.unit
@pytest.mark.sse
class TestStreamFold:
    """Test folding stream events into session state."""

    def test_query_submitted_adds_user_message(self):
        """Test submitting a query appends the optimistic user message."""
        state = reduce(ChatState(), submitted("Find hiking trails"))

        assert state.connection == ConnectionState.CONNECTING
        assert state.is_active
        assert len(state.messages) == 1
        assert state.messages[0].type == MessageType.USER
        assert state.messages[0].content == "Find hiking trails"

    def test_start_creates_streaming_assistant_message(self):
        """Test START opens an empty assistant message as the target."""
        state = streaming_state("msg-1")

        assert state.connection == ConnectionState.STREAMING
        assert state.is_streaming is True
        assert state.current_message_id == "msg-1"
        assistant = state.get_message("msg-1")
        assert assistant.type == MessageType.ASSISTANT
        assert assistant.content == ""
        assert assistant.is_streaming is True

    def test_hiking_scenario(self):
        """Test the full hiking answer is reassembled and the session settles."""
        events = [
            create_stream_start_event("msg-1"),
            *text_events(tokenize(HIKING_RESPONSE)),
            create_stream_end_event(),
        ]
        state = fold(events, fold([submitted(), TransportOpened()]))

        assert [m.type for m in state.messages] == [MessageType.USER, MessageType.ASSISTANT]
        assistant = state.messages[1]
        assert assistant.content == " ".join(HIKING_RESPONSE.split())
        assert "trail" in assistant.content
        assert state.error is None
        assert_settled(state)

    @pytest.mark.parametrize(
        "chunks",
        [
            ["Hello, world"],
            ["Hello, ", "world"],
            ["H", "e", "llo", ", w", "orld"],
            ["", "Hello, world", ""],
        ],
    )
    def test_reassembly_independent_of_chunking(self, chunks):
        """Test the final content only depends on the concatenated text."""
        state = fold([*text_events(chunks), create_stream_end_event()], streaming_state())
        assert state.messages[-1].content == "Hello, world"

    def test_is_complete_stops_message_streaming(self):
        """Test the complete flag ends the message while the stream stays open."""
        state = fold(text_events(["Hi ", "there"]), streaming_state())

        assert state.messages[-1].is_streaming is False
        assert state.connection == ConnectionState.STREAMING
        assert state.is_streaming is True

    def test_end_flags(self):
        """Test END clears streaming, target and connection."""
        state = fold([create_text_event("partial"), create_stream_end_event()], streaming_state())

        assert state.is_streaming is False
        assert state.current_message_id is None
        assert state.connection == ConnectionState.CLOSED
        assert state.messages[-1].is_streaming is False
        assert state.messages[-1].content == "partial"

    def test_error_flags(self):
        """Test ERROR records the error and appends an error message."""
        error = create_error_event("Backend failed", code="stream_error")
        state = fold([create_text_event("Some "), error], streaming_state())

        assert state.error == "Backend failed"
        assert state.error_code == "stream_error"
        assert state.is_streaming is False
        assert state.connection == ConnectionState.CLOSED
        assert state.messages[-1].type == MessageType.ERROR
        assert state.messages[-1].id == f"error-{error.id}"
        assert state.messages[-2].content == "Some "
        assert_settled(state)
        assert state.can_reconnect

    def test_error_without_message_uses_fallback(self):
        """Test an ERROR with an empty message still shows text."""
        state = reduce(streaming_state(), create_error_event(""))

        assert state.error
        assert state.error_code == "stream_error"

    def test_mid_stream_fault_scenario(self):
        """Test two text chunks then ERROR leave a partial answer and one error message."""
        events = [
            create_text_event("I found "),
            create_text_event("some "),
            create_error_event("An error occurred", code="stream_error"),
        ]
        state = fold(events, streaming_state())

        assistant = [m for m in state.messages if m.type == MessageType.ASSISTANT]
        errors = [m for m in state.messages if m.type == MessageType.ERROR]
        assert len(assistant) == 1
        assert assistant[0].content == "I found some "
        assert len(errors) == 1
        assert state.error is not None

    def test_events_after_terminal_ignored(self):
        """Test nothing after END changes the state."""
        closed = fold([create_text_event("done", is_complete=True), create_stream_end_event()], streaming_state())

        after = fold(
            [create_text_event("late"), create_stream_start_event("msg-2"), create_error_event("late")],
            closed,
        )

        assert after == closed

    def test_text_without_target_ignored(self):
        """Test text arriving before START is dropped."""
        opened = fold([submitted(), TransportOpened()])
        assert reduce(opened, create_text_event("orphan")) is opened

    def test_events_while_idle_ignored(self):
        """Test stream events with no active connection are dropped."""
        idle = ChatState()
        assert reduce(idle, create_stream_start_event("msg-1")) is idle

    def test_tool_execution_tracking(self):
        """Test tool start and end add and remove the tool name."""
        state = reduce(streaming_state(), create_tool_start_event("search_activities", {"query": "x"}))
        assert state.active_tools == frozenset({"search_activities"})

        state = reduce(state, create_tool_end_event("search_activities"))
        assert state.active_tools == frozenset()

    def test_activities_and_images_attach_to_target(self):
        """Test result batches merge into the in-progress message by id."""
        first = make_activity("a")
        second = make_activity("b", title="Sunset Ridge Loop")
        events = [
            create_activities_found_event([first], total_count=2, search_query="hiking"),
            create_activities_found_event([first, second], total_count=2, search_query="hiking"),
            create_images_loaded_event("a", first.images),
            create_images_loaded_event("a", first.images),
        ]
        state = fold(events, streaming_state())

        assistant = state.get_message("msg-1")
        assert [activity.id for activity in assistant.activities] == ["a", "b"]
        assert [image.id for image in assistant.images] == ["a-img"]
        assert assistant.metadata.total_count == 2
        assert assistant.metadata.search_query == "hiking"
        assert assistant.metadata.activity_id == "a"
        assert [activity.id for activity in state.activities] == ["a", "b"]

    def test_new_query_after_close(self):
        """Test a closed session accepts the next query and keeps history."""
        closed = fold([create_text_event("one", is_complete=True), create_stream_end_event()], streaming_state())

        state = reduce(closed, QuerySubmitted(text="cycling", message_id="user-2"))

        assert state.connection == ConnectionState.CONNECTING
        assert len(state.messages) == 3

    def test_query_ignored_while_active(self):
        """Test the fold refuses a second query during a stream."""
        active = streaming_state()
        assert reduce(active, QuerySubmitted(text="again", message_id="user-2")) is active


@pytest.mark.unit
class TestConnectionActions:
    """Test local connection actions."""

    def test_transport_closed_without_terminal_event(self):
        """Test a dropped connection is reported as connection lost."""
        state = fold([create_text_event("partial")], streaming_state())
        state = reduce(state, TransportClosed(reason="eof"))

        assert state.error == CONNECTION_LOST_MESSAGE
        assert state.error_code == "connection_lost"
        assert state.can_reconnect
        assert_settled(state)

    def test_transport_closed_after_end_is_normal(self):
        """Test the transport closing after END records no error."""
        closed = fold([create_stream_end_event()], streaming_state())
        assert reduce(closed, TransportClosed()) is closed

    def test_duplicate_rejection(self):
        """Test a 429 is reported as a duplicate that cannot be retried manually."""
        state = fold([submitted(), RequestRejected(status_code=429, message="Duplicate message")])

        assert state.error_code == "duplicate_request"
        assert "wait" in state.error.lower()
        assert state.connection == ConnectionState.CLOSED
        assert not state.can_reconnect
        assert [m.type for m in state.messages] == [MessageType.USER]

    def test_other_rejection(self):
        """Test other statuses are reported as failed requests."""
        state = fold([submitted(), RequestRejected(status_code=400, message="message parameter is required")])

        assert state.error_code == "request_failed"
        assert state.error == "message parameter is required"
        assert state.can_reconnect

    def test_connection_loop_rejection(self):
        """Test a refused connection attempt is reported as a loop."""
        state = fold([submitted(), RequestRejected(code="connection_loop")])

        assert state.error_code == "connection_loop"
        assert not state.can_reconnect

    def test_reset_clears_error(self):
        """Test reset returns to idle without resending anything."""
        failed = fold([TransportClosed()], streaming_state())
        state = reduce(failed, Reset())

        assert state.connection == ConnectionState.IDLE
        assert state.error is None
        assert state.error_code is None
        assert len(state.messages) == len(failed.messages)

    def test_disconnect_mid_stream(self):
        """Test an explicit disconnect closes without recording an error."""
        state = fold([create_text_event("partial"), Disconnected()], streaming_state())

        assert state.error is None
        assert_settled(state)

    def test_query_clears_previous_error(self):
        """Test sending a new query clears the last error."""
        failed = fold([TransportClosed()], streaming_state())
        state = reduce(failed, QuerySubmitted(text="retry", message_id="user-2"))

        assert state.error is None
        assert state.connection == ConnectionState.CONNECTING

    def test_state_is_immutable(self):
        """Test the fold returns new states and leaves old ones untouched."""
        before = ChatState()
        after = reduce(before, submitted())

        assert before.messages == []
        assert after is not before
        with pytest.raises(Exception):
            before.error = "changed"


@pytest.mark.unit
class TestClearChat:
    """Test clearing the conversation."""

    def test_clear_after_end(self):
        """Test a finished conversation is emptied and returns to idle."""
        finished = fold(
            [
                create_activities_found_event([make_activity("a")], total_count=1, search_query="hiking"),
                *text_events(["Sure"]),
                create_stream_end_event(),
            ],
            streaming_state(),
        )
        assert finished.activities

        state = reduce(finished, ClearChat())

        assert state.messages == []
        assert state.activities == []
        assert state.connection == ConnectionState.IDLE
        assert state.current_message_id is None
        assert not state.is_streaming

    def test_clear_drops_error(self):
        """Test clearing after a failure removes the error and its message."""
        failed = fold([create_error_event("Boom", code="stream_error")], streaming_state())

        state = reduce(failed, ClearChat())

        assert state.error is None
        assert state.error_code is None
        assert state.messages == []

    def test_clear_ignored_while_streaming(self):
        """Test an in-progress stream keeps its messages when a clear arrives."""
        streaming = fold([create_text_event("partial")], streaming_state())

        assert reduce(streaming, ClearChat()) is streaming

    def test_stream_resumes_normally_after_clear(self):
        """Test a query sent after clearing starts a fresh conversation."""
        cleared = reduce(fold([create_stream_end_event()], streaming_state()), ClearChat())
        state = fold([submitted("cycling"), create_stream_start_event("msg-2")], cleared)

        assert [m.type for m in state.messages] == [MessageType.USER, MessageType.ASSISTANT]
        assert state.messages[0].content == "cycling"
