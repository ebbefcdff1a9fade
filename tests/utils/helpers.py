"""
Test Helpers
============

Helper functions for common testing operations.
"""

import asyncio
import time
from typing import Any, Callable, List

from community_chat.api.sse.events import BaseStreamEvent, parse_event_data
from community_chat.client.frames import iter_frames


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def parse_sse_body(body: str) -> List[BaseStreamEvent]:
    """Parse a complete SSE response body into events."""
    events: List[BaseStreamEvent] = []
    for data in iter_frames(body.split("\n")):
        events.extend(parse_event_data(data))
    return events


def sse_body(*frames: Any) -> bytes:
    """Build an SSE body from events or raw frame data strings."""
    parts = []
    for frame in frames:
        if isinstance(frame, BaseStreamEvent):
            parts.append(frame.format_sse())
        else:
            parts.append(f"data: {frame}\n\n")
    return "".join(parts).encode("utf-8")


async def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 5.0,
    interval: float = 0.01,
    error_message: str = "Condition not met within timeout"
) -> None:
    """Wait for a condition to become true."""
    start_time = time.time()

    while time.time() - start_time < timeout:
        if condition():
            return
        await asyncio.sleep(interval)

    raise TimeoutError(error_message)
