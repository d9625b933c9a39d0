"""
unillm - Stream Normalizer

Maps provider events to the unified NormalizedEvent sequence.

Ensures consistent output regardless of source provider:
- Empty text deltas are dropped
- FinishReason is emitted once, the first time a provider reports one
- Usage is accumulated across events and emitted once, right before StreamEnd
- Exactly one terminal event (StreamEnd or StreamError) ends the sequence
"""

import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from .decoders import Delta, Done, Failure, ProviderEvent, StreamStart, Usage
from .errors import StreamError, StreamErrorBuilder
from .events import (
    ContentDelta,
    FinishCode,
    FinishReason,
    NormalizedEvent,
    StreamEnd,
    ToolCallDelta,
    UsageFinal,
)


# ============================================================
# Finish reason tables
# ============================================================

OPENAI_FINISH_REASONS: Dict[str, FinishCode] = {
    "stop": FinishCode.STOP,
    "length": FinishCode.LENGTH,
    "tool_calls": FinishCode.TOOL_CALLS,
    "function_call": FinishCode.TOOL_CALLS,
    "content_filter": FinishCode.CONTENT_FILTER,
}

ANTHROPIC_FINISH_REASONS: Dict[str, FinishCode] = {
    "end_turn": FinishCode.STOP,
    "max_tokens": FinishCode.LENGTH,
    "stop_sequence": FinishCode.STOP_SEQUENCE,
    "tool_use": FinishCode.TOOL_CALLS,
    "refusal": FinishCode.CONTENT_FILTER,
}

OLLAMA_FINISH_REASONS: Dict[str, FinishCode] = {
    "stop": FinishCode.STOP,
    "length": FinishCode.LENGTH,
}

FINISH_REASON_TABLES: Dict[str, Dict[str, FinishCode]] = {
    "openai": OPENAI_FINISH_REASONS,
    "anthropic": ANTHROPIC_FINISH_REASONS,
    "ollama": OLLAMA_FINISH_REASONS,
}


def map_finish_reason(provider: str, raw: str) -> FinishCode:
    """Translate a provider's finish string; unknown values map to UNKNOWN."""
    table = FINISH_REASON_TABLES.get(provider, OPENAI_FINISH_REASONS)
    return table.get(raw, FinishCode.UNKNOWN)


# ============================================================
# Stream State
# ============================================================

@dataclass
class StreamState:
    """
    Tracks state during streaming.

    Used for:
    - Accumulating partial content for error reports
    - Holding usage until the stream ends
    - Time-to-first-token measurement
    """
    request_id: str
    provider: str = ""

    # Content tracking
    accumulated_content: str = ""
    chunks_delivered: int = 0

    # Finish / usage
    finish_reason: Optional[FinishCode] = None
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None

    # Timing
    started_at: float = field(default_factory=time.monotonic)
    first_content_at: Optional[float] = None

    @property
    def content_started(self) -> bool:
        return self.chunks_delivered > 0

    def record_content(self, text: str = ""):
        """Record a delivered content or tool call fragment."""
        if self.first_content_at is None:
            self.first_content_at = time.monotonic()
        self.chunks_delivered += 1
        self.accumulated_content += text

    def merge_usage(self, usage: Usage):
        """Keep the latest reported value of each counter."""
        if usage.prompt_tokens is not None:
            self.prompt_tokens = usage.prompt_tokens
        if usage.completion_tokens is not None:
            self.completion_tokens = usage.completion_tokens

    def has_usage(self) -> bool:
        return self.prompt_tokens is not None or self.completion_tokens is not None

    def time_to_first_token(self) -> Optional[float]:
        if self.first_content_at is None:
            return None
        return self.first_content_at - self.started_at


# ============================================================
# Normalizer
# ============================================================

class EventNormalizer:
    """
    Normalizes provider events for one stream.

    Usage:
        normalizer = EventNormalizer(provider="openai", request_id="req_123")

        for provider_event in decoded:
            for event in normalizer.process(provider_event):
                deliver(event)

        # Body ended without an end marker:
        for event in normalizer.finish():
            deliver(event)
    """

    def __init__(self, provider: str, request_id: str = ""):
        self.provider = provider
        self.state = StreamState(request_id=request_id, provider=provider)
        self._errors = StreamErrorBuilder(provider, request_id)

    def process(self, event: ProviderEvent) -> List[NormalizedEvent]:
        """Normalize one provider event into zero or more output events."""
        if isinstance(event, Delta):
            return self._process_delta(event)

        if isinstance(event, StreamStart):
            if event.usage:
                self.state.merge_usage(event.usage)
            return []

        if isinstance(event, Done):
            return self.finish()

        if isinstance(event, Failure):
            return [self._provider_error(event)]

        # Heartbeat
        return []

    def finish(self) -> List[NormalizedEvent]:
        """Terminal success: pending usage, then StreamEnd."""
        events: List[NormalizedEvent] = []
        if self.state.has_usage():
            prompt = self.state.prompt_tokens or 0
            completion = self.state.completion_tokens or 0
            events.append(UsageFinal(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=prompt + completion
            ))
        events.append(StreamEnd())
        return events

    def error_from_exception(self, exception: BaseException) -> StreamError:
        """Terminal error for a failure while reading the body."""
        self._sync_error_state()
        return self._errors.from_exception(exception)

    def internal_error(self, message: str) -> StreamError:
        """Terminal error for an unexpected pipeline fault."""
        self._sync_error_state()
        return self._errors.internal(message)

    def _process_delta(self, delta: Delta) -> List[NormalizedEvent]:
        events: List[NormalizedEvent] = []

        if delta.text:
            self.state.record_content(delta.text)
            events.append(ContentDelta(text=delta.text))

        for fragment in delta.tool_calls:
            self.state.record_content()
            events.append(ToolCallDelta(
                index=fragment.index,
                id=fragment.id,
                name=fragment.name,
                arguments=fragment.arguments
            ))

        if delta.finish_reason and self.state.finish_reason is None:
            code = map_finish_reason(self.provider, delta.finish_reason)
            self.state.finish_reason = code
            events.append(FinishReason(reason=code, raw=delta.finish_reason))

        if delta.usage:
            self.state.merge_usage(delta.usage)

        return events

    def _provider_error(self, failure: Failure) -> StreamError:
        self._sync_error_state()
        return self._errors.provider_error(failure.message, failure.code)

    def _sync_error_state(self):
        self._errors.set_content_state(
            partial_content=self.state.accumulated_content,
            chunks_delivered=self.state.chunks_delivered
        )
