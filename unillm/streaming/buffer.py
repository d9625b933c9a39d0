"""
unillm - Chunk Buffer

Turns arbitrarily split network chunks into complete text lines.

Network reads do not respect line boundaries: a chunk may end in the middle
of a line or in the middle of a multi-byte UTF-8 character. Bytes are held
until a newline arrives, and only whole lines are decoded, so the result does
not depend on where the transport happened to split the body.
"""

from typing import List

from ..config import DEFAULT_MAX_LINE_BYTES
from ..core.errors import BufferOverflowError


class ChunkBuffer:
    """
    Accumulates raw bytes and releases complete, trimmed lines.

    Usage:
        buffer = ChunkBuffer()
        for line in buffer.feed(chunk):
            ...
        for line in buffer.flush():  # at end of body
            ...
    """

    def __init__(self, max_line_bytes: int = DEFAULT_MAX_LINE_BYTES):
        self.max_line_bytes = max_line_bytes
        self._pending = bytearray()
        # Leading bytes of _pending already searched for a newline
        self._scanned = 0

    @property
    def pending_bytes(self) -> int:
        """Bytes held back waiting for a line terminator."""
        return len(self._pending)

    def feed(self, chunk: bytes) -> List[str]:
        """
        Add a chunk and return every line it completes.

        Lines are split on LF; a trailing CR is stripped along with other
        surrounding whitespace. Empty lines are returned as "" so framers can
        use them as event separators.

        Raises:
            BufferOverflowError: the unterminated remainder outgrew max_line_bytes
        """
        if not chunk:
            return []

        self._pending.extend(chunk)

        lines: List[str] = []
        start = 0
        search_from = self._scanned
        while True:
            newline = self._pending.find(b"\n", search_from)
            if newline == -1:
                break
            lines.append(self._decode(self._pending[start:newline]))
            start = search_from = newline + 1

        if start:
            del self._pending[:start]
        self._scanned = len(self._pending)

        if len(self._pending) > self.max_line_bytes:
            size = len(self._pending)
            self._pending.clear()
            self._scanned = 0
            raise BufferOverflowError(size, self.max_line_bytes)

        return lines

    def flush(self) -> List[str]:
        """Return the final unterminated line, if the body did not end in a newline."""
        if not self._pending:
            return []
        line = self._decode(self._pending)
        self._pending.clear()
        self._scanned = 0
        return [line] if line else []

    @staticmethod
    def _decode(raw: bytes) -> str:
        # Invalid sequences become U+FFFD instead of failing the stream
        return bytes(raw).decode("utf-8", errors="replace").strip()
