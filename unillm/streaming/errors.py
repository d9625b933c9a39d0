"""
unillm - Streaming Error Handling

Handles errors that occur once a stream body has started.

Key principle:
- BEFORE the body starts: adapters raise exceptions (caller can retry/fallback)
- AFTER the body started: the stream task emits one StreamError event carrying
  any partial content, then stops

Error kinds:
- NETWORK: transport failure or timeout while reading the body
- PROVIDER: the provider sent an explicit error event
- RESOURCE_EXHAUSTED: an unterminated line outgrew the buffer limit
- INTERNAL: unexpected fault inside the pipeline
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, Optional

import httpx

from ..core.errors import BufferOverflowError
from .events import NormalizedEvent, StreamEventType


class StreamErrorKind(str, Enum):
    """Types of streaming errors."""
    NETWORK = "network"
    PROVIDER = "provider"
    RESOURCE_EXHAUSTED = "resource_exhausted"
    INTERNAL = "internal"


@dataclass(frozen=True)
class StreamError(NormalizedEvent):
    """
    Terminal error event. Always the last item a stream delivers.

    Contains all information needed to communicate the failure to a client.
    """
    event_type: ClassVar[StreamEventType] = StreamEventType.ERROR
    is_terminal: ClassVar[bool] = True

    kind: StreamErrorKind
    message: str
    provider: str = ""
    request_id: str = ""
    code: Optional[str] = None

    # Content state at error time
    partial_content: Optional[str] = None
    chunks_delivered: int = 0

    original_error: Optional[str] = None
    occurred_at: float = field(default_factory=time.time, compare=False)

    @property
    def content_started(self) -> bool:
        return self.chunks_delivered > 0

    @property
    def is_retryable(self) -> bool:
        """
        Check if error is retryable.

        NOT retryable once content has been delivered: a retry would
        produce a different continuation of the same answer.
        """
        if self.content_started:
            return False
        return self.kind == StreamErrorKind.NETWORK

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for SSE transmission."""
        error: Dict[str, Any] = {
            "kind": self.kind.value,
            "message": self.message,
            "provider": self.provider,
            "request_id": self.request_id,
            "retryable": self.is_retryable,
        }
        if self.code:
            error["code"] = self.code

        result: Dict[str, Any] = {"type": self.event_type.value, "error": error}

        if self.partial_content:
            result["partial_content"] = self.partial_content
            result["chunks_delivered"] = self.chunks_delivered

        return result


class StreamErrorBuilder:
    """Builder for creating stream errors with content context."""

    def __init__(self, provider: str, request_id: str):
        self.provider = provider
        self.request_id = request_id
        self._partial_content = ""
        self._chunks_delivered = 0

    def set_content_state(
        self,
        partial_content: str = "",
        chunks_delivered: int = 0
    ):
        """Set the content state at error time."""
        self._partial_content = partial_content
        self._chunks_delivered = chunks_delivered

    def _build(
        self,
        kind: StreamErrorKind,
        message: str,
        code: Optional[str] = None,
        original_error: Optional[str] = None
    ) -> StreamError:
        return StreamError(
            kind=kind,
            message=message,
            provider=self.provider,
            request_id=self.request_id,
            code=code,
            partial_content=self._partial_content or None,
            chunks_delivered=self._chunks_delivered,
            original_error=original_error
        )

    def network(
        self,
        message: str = "Stream was interrupted",
        original_error: Optional[str] = None
    ) -> StreamError:
        """Create a transport failure error."""
        return self._build(StreamErrorKind.NETWORK, message, "stream_interrupted", original_error)

    def provider_error(
        self,
        message: str = "Provider reported an error",
        code: Optional[str] = None
    ) -> StreamError:
        """Create an error for an explicit provider error event."""
        return self._build(StreamErrorKind.PROVIDER, message, code or "provider_error")

    def resource_exhausted(self, message: str) -> StreamError:
        """Create a buffer overflow error."""
        return self._build(StreamErrorKind.RESOURCE_EXHAUSTED, message, "line_too_long")

    def internal(self, message: str) -> StreamError:
        """Create an error for an unexpected pipeline fault."""
        return self._build(StreamErrorKind.INTERNAL, message, "internal_error", message)

    def from_exception(self, exception: BaseException) -> StreamError:
        """
        Create a stream error from an exception raised while reading the body.

        Timeouts and transport failures are NETWORK; buffer overflow is
        RESOURCE_EXHAUSTED.
        """
        error_message = str(exception) or type(exception).__name__

        if isinstance(exception, BufferOverflowError):
            return self.resource_exhausted(error_message)

        if isinstance(exception, httpx.TimeoutException):
            return self._build(
                StreamErrorKind.NETWORK,
                "Request timed out during streaming",
                "timeout",
                error_message
            )

        return self.network(f"Stream was interrupted: {error_message}", error_message)
