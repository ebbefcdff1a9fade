"""
SSE Frame Decoding
==================

Line-oriented decoder turning a Server-Sent Events body into frame data.
Only ``data`` fields carry meaning for the chat protocol; comments and the
other SSE fields are accepted and dropped.
"""

from typing import Iterable, Iterator, List, Optional


class SSEFrameDecoder:
    """Accumulates ``data:`` lines until the blank line that ends a frame."""

    def __init__(self) -> None:
        self._data_lines: List[str] = []

    @property
    def has_pending(self) -> bool:
        """Whether a frame has started but not been terminated."""
        return bool(self._data_lines)

    def feed_line(self, line: str) -> Optional[str]:
        """
        Consume one line (without its line terminator).

        Returns:
            The frame data when ``line`` completes a frame, otherwise None
        """
        line = line.rstrip("\r\n")

        if not line:
            if not self._data_lines:
                return None
            data = "\n".join(self._data_lines)
            self._data_lines = []
            return data

        if line.startswith(":"):
            return None

        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            self._data_lines.append(value)
        return None


def iter_frames(lines: Iterable[str]) -> Iterator[str]:
    """Yield the data of every complete frame in ``lines``."""
    decoder = SSEFrameDecoder()
    for line in lines:
        data = decoder.feed_line(line)
        if data is not None:
            yield data
