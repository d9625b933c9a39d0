"""
unillm - Wire Framing

Classifies complete text lines into frames according to the provider's wire
format. Framers know nothing about JSON payloads; that is the decoder's job.

Formats:
- SSE-plain (OpenAI): "data: {...}" lines, terminated by "data: [DONE]"
- SSE-typed (Anthropic): "event: name" and "data: {...}" lines, terminated
  by the message_stop event
- NDJSON (Ollama): one JSON object per line, terminated by a payload with
  "done": true (detected by the decoder)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, Optional


class FrameKind(str, Enum):
    """What a frame carries."""
    DATA = "data"      # payload to decode
    EVENT = "event"    # named SSE event, payload is the event name
    DONE = "done"      # wire-level end-of-stream marker


@dataclass(frozen=True)
class Frame:
    """One classified unit of the wire format."""
    kind: FrameKind
    payload: str = ""


class FrameParser(ABC):
    """Base class for line framers."""

    @abstractmethod
    def parse_line(self, line: str) -> Optional[Frame]:
        """
        Classify a single trimmed line.

        Returns None for lines that carry nothing: blanks, comments and
        fields this format ignores.
        """
        pass


class NDJSONFraming(FrameParser):
    """Newline-delimited JSON: every non-empty line is a data frame."""

    def parse_line(self, line: str) -> Optional[Frame]:
        if not line:
            return None
        return Frame(FrameKind.DATA, line)


class SSEFraming(FrameParser):
    """
    Server-Sent Events framer.

    Args:
        done_sentinel: data payload that marks the end of the stream
        terminal_events: event names that mark the end of the stream
    """

    def __init__(
        self,
        done_sentinel: Optional[str] = None,
        terminal_events: FrozenSet[str] = frozenset()
    ):
        self.done_sentinel = done_sentinel
        self.terminal_events = terminal_events

    def parse_line(self, line: str) -> Optional[Frame]:
        if not line or line.startswith(":"):
            return None

        field_name, value = _split_field(line)

        if field_name == "data":
            if self.done_sentinel is not None and value == self.done_sentinel:
                return Frame(FrameKind.DONE)
            if not value:
                return None
            return Frame(FrameKind.DATA, value)

        if field_name == "event":
            if value in self.terminal_events:
                return Frame(FrameKind.DONE, value)
            return Frame(FrameKind.EVENT, value)

        # id:, retry: and anything unrecognised
        return None


class SSEPlainFraming(SSEFraming):
    """OpenAI-style SSE: data lines only, ended by [DONE]."""

    def __init__(self):
        super().__init__(done_sentinel="[DONE]")


class SSETypedFraming(SSEFraming):
    """Anthropic-style SSE: named events, ended by message_stop."""

    def __init__(self, terminal_events: FrozenSet[str] = frozenset({"message_stop"})):
        super().__init__(terminal_events=terminal_events)


def _split_field(line: str):
    """Split "name: value" into (name, value), dropping one optional space."""
    name, sep, value = line.partition(":")
    if not sep:
        return line, ""
    if value.startswith(" "):
        value = value[1:]
    return name, value.strip()
