"""
Duplicate Request Suppression
=============================

Short-window cache of recently accepted chat queries. A query whose exact
text was accepted within the window is rejected, which stops rapid repeated
submissions from opening a new stream each time.
"""

from collections import OrderedDict
from typing import Callable, Optional
import asyncio
import threading
import time

from community_chat.config.logging import get_logger

logger = get_logger(__name__)


class DedupCache:
    """
    Bounded TTL map of query text to the time it was last accepted.

    All access goes through one lock, so a single instance can be shared by
    every stream being produced as well as by the background sweep.
    """

    def __init__(
        self,
        window_seconds: float = 10.0,
        max_entries: int = 10000,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")

        self.window_seconds = window_seconds
        self.max_entries = max_entries
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()
        self._lock = threading.Lock()
        self._sweep_task: Optional[asyncio.Task[None]] = None
        self.logger = logger.bind(component="dedup_cache")

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _is_fresh(self, seen_at: float, now: float) -> bool:
        return now - seen_at < self.window_seconds

    def check_and_record(self, text: str) -> bool:
        """
        Accept ``text`` unless it is a duplicate.

        The check and the record happen under one lock acquisition, so two
        identical queries racing each other cannot both be accepted.

        Returns:
            True if the query was accepted and recorded, False if it is a
            duplicate within the window
        """
        with self._lock:
            now = self._clock()
            seen_at = self._entries.get(text)
            if seen_at is not None and self._is_fresh(seen_at, now):
                return False
            self._record_locked(text, now)
            return True

    def _record_locked(self, text: str, now: float) -> None:
        self._entries[text] = now
        self._entries.move_to_end(text)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.logger.debug("Evicted oldest dedup entry", entry_length=len(evicted))

    def sweep(self) -> int:
        """
        Drop entries older than the window.

        Returns:
            Number of entries removed
        """
        with self._lock:
            now = self._clock()
            expired = [text for text, seen_at in self._entries.items() if not self._is_fresh(seen_at, now)]
            for text in expired:
                del self._entries[text]
        if expired:
            self.logger.debug("Swept expired dedup entries", removed=len(expired))
        return len(expired)

    def clear(self) -> None:
        """Forget every entry."""
        with self._lock:
            self._entries.clear()

    def start_sweeper(self, interval_seconds: Optional[float] = None) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task and not self._sweep_task.done():
            return
        interval = interval_seconds or self.window_seconds
        self._sweep_task = asyncio.create_task(self._sweep_loop(interval))
        self.logger.info("Dedup sweeper started", interval_seconds=interval)

    async def stop_sweeper(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self.logger.info("Dedup sweeper stopped")

    async def _sweep_loop(self, interval_seconds: float) -> None:
        """Background task removing expired entries."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep()
            except Exception as e:
                self.logger.error("Dedup sweep failed", error=str(e))
