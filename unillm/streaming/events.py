"""
unillm - Normalized Stream Events

The provider-agnostic output of the streaming pipeline. Every provider's
wire format is reduced to these values before it reaches application code.

Event types:
- ContentDelta: incremental text
- ToolCallDelta: fragment of a tool/function call
- UsageFinal: token counts, sent once just before StreamEnd
- FinishReason: why generation stopped
- StreamError: terminal failure (see streaming.errors)
- StreamEnd: terminal success
"""

import json
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional


class StreamEventType(str, Enum):
    """Types of normalized streaming events."""
    CONTENT_DELTA = "content_delta"
    TOOL_CALL_DELTA = "tool_call_delta"
    USAGE = "usage"
    FINISH_REASON = "finish_reason"
    ERROR = "error"
    END = "end"


class FinishCode(str, Enum):
    """Provider-agnostic finish reasons."""
    STOP = "stop"
    LENGTH = "length"
    STOP_SEQUENCE = "stop_sequence"
    TOOL_CALLS = "tool_calls"
    CONTENT_FILTER = "content_filter"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class NormalizedEvent:
    """Base class of every event a StreamHandle yields."""
    event_type: ClassVar[StreamEventType]
    is_terminal: ClassVar[bool] = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {"type": self.event_type.value, **asdict(self)}

    def to_sse(self) -> str:
        """Convert to SSE format string."""
        return f"data: {json.dumps(self.to_dict())}\n\n"


@dataclass(frozen=True)
class ContentDelta(NormalizedEvent):
    """A non-empty fragment of generated text."""
    event_type: ClassVar[StreamEventType] = StreamEventType.CONTENT_DELTA

    text: str


@dataclass(frozen=True)
class ToolCallDelta(NormalizedEvent):
    """
    A fragment of a tool call.

    The first fragment for an index usually carries id and name; later
    fragments carry pieces of the JSON arguments string.
    """
    event_type: ClassVar[StreamEventType] = StreamEventType.TOOL_CALL_DELTA

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


@dataclass(frozen=True)
class UsageFinal(NormalizedEvent):
    """Final token accounting for the stream."""
    event_type: ClassVar[StreamEventType] = StreamEventType.USAGE

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class FinishReason(NormalizedEvent):
    """Why the model stopped; raw keeps the provider's own string."""
    event_type: ClassVar[StreamEventType] = StreamEventType.FINISH_REASON

    reason: FinishCode
    raw: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.event_type.value, "reason": self.reason.value, "raw": self.raw}


@dataclass(frozen=True)
class StreamEnd(NormalizedEvent):
    """The stream completed normally. Nothing follows it."""
    event_type: ClassVar[StreamEventType] = StreamEventType.END
    is_terminal: ClassVar[bool] = True
