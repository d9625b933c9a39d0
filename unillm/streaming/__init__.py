"""
unillm Streaming Module

Incremental pipeline from provider response bodies to normalized events:
bytes -> lines -> frames -> provider events -> normalized events.
"""

from .buffer import ChunkBuffer

from .framing import (
    Frame,
    FrameKind,
    FrameParser,
    NDJSONFraming,
    SSEFraming,
    SSEPlainFraming,
    SSETypedFraming,
)

from .decoders import (
    ProviderEvent,
    StreamStart,
    Delta,
    Done,
    Failure,
    Heartbeat,
    Usage,
    ToolCallFragment,
    MalformedFrameError,
    StreamDecoder,
    OpenAIDecoder,
    AnthropicDecoder,
    OllamaDecoder,
    PreFramedDecoder,
)

from .events import (
    StreamEventType,
    FinishCode,
    NormalizedEvent,
    ContentDelta,
    ToolCallDelta,
    UsageFinal,
    FinishReason,
    StreamEnd,
)

from .errors import (
    StreamErrorKind,
    StreamError,
    StreamErrorBuilder,
)

from .normalizer import (
    EventNormalizer,
    StreamState,
    map_finish_reason,
)

from .channel import DeliveryChannel

from .task import (
    StreamPhase,
    StreamTask,
    MessageStreamTask,
    StreamHandle,
    StreamResult,
)

from .pipeline import (
    WireFormat,
    StreamProfile,
    PROFILES,
    get_profile,
    open_stream,
    open_message_stream,
)

from .tool_calls import (
    ToolCallAccumulator,
    ToolCallStreamTracker,
)

__all__ = [
    # Buffering and framing
    "ChunkBuffer",
    "Frame",
    "FrameKind",
    "FrameParser",
    "NDJSONFraming",
    "SSEFraming",
    "SSEPlainFraming",
    "SSETypedFraming",
    # Decoding
    "ProviderEvent",
    "StreamStart",
    "Delta",
    "Done",
    "Failure",
    "Heartbeat",
    "Usage",
    "ToolCallFragment",
    "MalformedFrameError",
    "StreamDecoder",
    "OpenAIDecoder",
    "AnthropicDecoder",
    "OllamaDecoder",
    "PreFramedDecoder",
    # Normalized events
    "StreamEventType",
    "FinishCode",
    "NormalizedEvent",
    "ContentDelta",
    "ToolCallDelta",
    "UsageFinal",
    "FinishReason",
    "StreamEnd",
    "StreamErrorKind",
    "StreamError",
    "StreamErrorBuilder",
    # Normalization
    "EventNormalizer",
    "StreamState",
    "map_finish_reason",
    # Delivery
    "DeliveryChannel",
    "StreamPhase",
    "StreamTask",
    "MessageStreamTask",
    "StreamHandle",
    "StreamResult",
    # Entry points
    "WireFormat",
    "StreamProfile",
    "PROFILES",
    "get_profile",
    "open_stream",
    "open_message_stream",
    # Tool calls
    "ToolCallAccumulator",
    "ToolCallStreamTracker",
]
