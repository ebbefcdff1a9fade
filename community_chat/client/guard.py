"""
Reconnect Loop Guard
====================

Counts connection attempts per endpoint in a sliding window. More attempts
than allowed inside the window means something keeps reopening the stream,
and further attempts are refused until the window moves on.
"""

from collections import deque
from typing import Callable, Deque, Dict
import time

from community_chat.config.logging import get_logger

logger = get_logger(__name__)


class ReconnectGuard:
    """Sliding-window limit on connection attempts."""

    def __init__(
        self,
        window_seconds: float = 10.0,
        max_attempts: int = 5,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window_seconds = window_seconds
        self.max_attempts = max_attempts
        self._clock = clock
        self._attempts: Dict[str, Deque[float]] = {}

    def attempts(self, key: str) -> int:
        """Number of attempts for ``key`` still inside the window."""
        return len(self._prune(key, self._clock()))

    def allow(self, key: str) -> bool:
        """
        Record a connection attempt for ``key`` if it is allowed.

        Returns:
            False when the window already holds the maximum number of attempts
        """
        now = self._clock()
        attempts = self._prune(key, now)
        if len(attempts) >= self.max_attempts:
            logger.warning(
                "Connection loop detected, refusing to connect",
                endpoint=key,
                attempts=len(attempts),
                window_seconds=self.window_seconds,
            )
            return False
        attempts.append(now)
        return True

    def _prune(self, key: str, now: float) -> Deque[float]:
        attempts = self._attempts.setdefault(key, deque())
        while attempts and now - attempts[0] >= self.window_seconds:
            attempts.popleft()
        return attempts
