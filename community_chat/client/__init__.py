"""
Chat Stream Client
==================

Consumer side of the chat streaming protocol.

Components:
- Frames: SSE body to frame data
- State: Session state, connection transitions and the event fold
- Guard: Connection loop detection
- Session: httpx-backed chat session driving the fold
"""

from .guard import ReconnectGuard
from .session import ChatSession, ConnectionLostError
from .state import ChatState, ConnectionState, reduce

__all__ = [
    "ReconnectGuard",
    "ChatSession",
    "ConnectionLostError",
    "ChatState",
    "ConnectionState",
    "reduce",
]
