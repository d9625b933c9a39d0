"""
unillm - Stream Task

Runs one provider stream in its own asyncio task and hands normalized events
to the consumer through a bounded DeliveryChannel.

Lifecycle:
    OPEN -> RECEIVING -> TERMINAL -> CLOSED

- OPEN: task started, nothing read yet
- RECEIVING: at least one chunk or message arrived
- TERMINAL: StreamEnd or StreamError was delivered
- CLOSED: source released; reached from any phase, including on cancellation

The consumer side is a StreamHandle. Closing the handle, or dropping it
without closing, cancels the task and releases the provider connection.
"""

import asyncio
import time
import uuid
import weakref
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, List, Optional, Union

from ..core.errors import BufferOverflowError, StreamFailedError
from ..observability.logging import LogContext, get_logger
from ..observability.metrics import MetricsCollector, get_metrics
from ..observability.tracing import get_tracer, mark_span_error
from .buffer import ChunkBuffer
from .channel import DeliveryChannel
from .decoders import MalformedFrameError, PreFramedDecoder, StreamDecoder
from .errors import StreamError
from .events import (
    ContentDelta,
    FinishReason,
    NormalizedEvent,
    ToolCallDelta,
    UsageFinal,
)
from .framing import FrameParser
from .normalizer import EventNormalizer
from .tool_calls import ToolCallStreamTracker


logger = get_logger(__name__)

ByteSource = Union[AsyncIterable[bytes], Iterable[bytes]]


class StreamPhase(str, Enum):
    """Stream task lifecycle phases."""
    OPEN = "open"
    RECEIVING = "receiving"
    TERMINAL = "terminal"
    CLOSED = "closed"


async def _iterate_sync(source: Iterable[Any]) -> AsyncIterator[Any]:
    for item in source:
        yield item


def _open_iterator(source: Union[AsyncIterable[Any], Iterable[Any]]) -> AsyncIterator[Any]:
    """Iterate a sync or async source uniformly."""
    if hasattr(source, "__aiter__"):
        return source.__aiter__()
    return _iterate_sync(source)


def new_stream_id() -> str:
    return f"str_{uuid.uuid4().hex[:16]}"


# ============================================================
# Stream Tasks
# ============================================================

class _BaseStreamTask(ABC):
    """
    Shared producer logic: delivery, terminal detection, metrics and cleanup.

    Subclasses implement _pump(), which returns the stream outcome:
    "end", "error" or "cancelled".
    """

    def __init__(
        self,
        source: Any,
        normalizer: EventNormalizer,
        channel: DeliveryChannel,
        *,
        model: str = "",
        stream_id: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.source = source
        self.normalizer = normalizer
        self.channel = channel
        self.model = model
        self.stream_id = stream_id or new_stream_id()
        self.phase = StreamPhase.OPEN
        self.outcome: Optional[str] = None
        self._metrics = metrics
        self._ttft_recorded = False
        self._terminal_outcome: Optional[str] = None
        self._iterator: Optional[AsyncIterator[Any]] = None

    @property
    def provider(self) -> str:
        return self.normalizer.provider

    @property
    def request_id(self) -> str:
        return self.normalizer.state.request_id

    async def run(self):
        """Task entry point. Always ends in CLOSED with the source released."""
        metrics = self._metrics or get_metrics()
        started = time.monotonic()
        metrics.record_stream_started(self.provider)
        outcome = "cancelled"

        with LogContext.scope(
            request_id=self.request_id,
            stream_id=self.stream_id,
            provider=self.provider,
            model=self.model,
        ):
            with get_tracer().start_as_current_span(
                "stream.task",
                attributes={
                    "ai.provider": self.provider,
                    "ai.model": self.model,
                    "unillm.stream_id": self.stream_id,
                    "unillm.request_id": self.request_id,
                },
            ) as span:
                logger.debug("Stream task started")
                try:
                    outcome = await self._pump()
                except asyncio.CancelledError:
                    logger.info("Stream task cancelled", chunks_delivered=self.normalizer.state.chunks_delivered)
                    raise
                except Exception as e:
                    if self._terminal_outcome is None:
                        outcome = await self._fail_internal(e)
                    else:
                        logger.exception("Stream task failed after its terminal event", error_type=type(e).__name__)
                        outcome = self._terminal_outcome
                finally:
                    self.outcome = outcome
                    await self._release_source()
                    self.channel.close_sender()
                    self.phase = StreamPhase.CLOSED

                    duration = time.monotonic() - started
                    metrics.record_stream_finished(self.provider, outcome, duration)

                    span.set_attribute("unillm.outcome", outcome)
                    span.set_attribute("unillm.chunks_delivered", self.normalizer.state.chunks_delivered)
                    if outcome == "error":
                        mark_span_error(span, "stream ended with error")

                    logger.info(
                        "Stream task finished",
                        outcome=outcome,
                        chunks_delivered=self.normalizer.state.chunks_delivered,
                        duration_ms=round(duration * 1000, 2),
                    )

    @abstractmethod
    async def _pump(self) -> str:
        """Read the source and deliver events until the stream is over."""
        pass

    async def release(self):
        """Release the source of a task that was cancelled before it ever ran."""
        if self.phase != StreamPhase.CLOSED:
            await self._release_source()
            self.channel.close_sender()
            self.phase = StreamPhase.CLOSED

    async def _release_source(self):
        # The iterator may be a wrapper around the source; close both
        closables = [self._iterator]
        if self.source is not self._iterator:
            closables.append(self.source)
        for closable in closables:
            aclose = getattr(closable, "aclose", None)
            if aclose is None:
                continue
            try:
                await aclose()
            except Exception as e:
                logger.warning("Failed to release stream source", error=str(e), error_type=type(e).__name__)

    def _mark_receiving(self):
        if self.phase == StreamPhase.OPEN:
            self.phase = StreamPhase.RECEIVING

    async def _deliver(self, event: NormalizedEvent) -> Optional[str]:
        """
        Send one event to the consumer.

        Returns:
            The outcome if the stream is over after this event, else None
        """
        if not await self.channel.send(event):
            logger.info("Consumer went away, stopping stream")
            return "cancelled"

        metrics = self._metrics or get_metrics()
        metrics.record_event(self.provider, event.event_type.value)

        if not self._ttft_recorded and isinstance(event, (ContentDelta, ToolCallDelta)):
            ttft = self.normalizer.state.time_to_first_token()
            if ttft is not None:
                metrics.record_time_to_first_token(self.provider, self.model, ttft)
                self._ttft_recorded = True

        if not event.is_terminal:
            return None

        self.phase = StreamPhase.TERMINAL
        self._terminal_outcome = "error" if isinstance(event, StreamError) else "end"
        if isinstance(event, StreamError):
            logger.warning(
                "Stream ended with error",
                error_kind=event.kind.value,
                error_message=event.message,
                chunks_delivered=event.chunks_delivered,
            )
        return self._terminal_outcome

    async def _deliver_all(self, events: List[NormalizedEvent]) -> Optional[str]:
        for event in events:
            outcome = await self._deliver(event)
            if outcome:
                return outcome
        return None

    def _skip(self, error: MalformedFrameError):
        logger.warning("Skipping undecodable frame", reason=error.reason, detail=error.detail)
        (self._metrics or get_metrics()).record_frame_skipped(self.provider, error.reason)

    async def _fail_internal(self, error: Exception) -> str:
        logger.exception("Unexpected error in stream pipeline", error_type=type(error).__name__)
        stream_error = self.normalizer.internal_error(f"{type(error).__name__}: {error}")
        return await self._deliver(stream_error) or "error"


class StreamTask(_BaseStreamTask):
    """
    Producer for byte-oriented streams (SSE and NDJSON bodies).

    bytes -> ChunkBuffer -> FrameParser -> StreamDecoder -> EventNormalizer -> channel
    """

    def __init__(
        self,
        source: ByteSource,
        framer: FrameParser,
        decoder: StreamDecoder,
        normalizer: EventNormalizer,
        channel: DeliveryChannel,
        *,
        buffer: Optional[ChunkBuffer] = None,
        model: str = "",
        stream_id: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__(
            source, normalizer, channel,
            model=model, stream_id=stream_id, metrics=metrics,
        )
        self.framer = framer
        self.decoder = decoder
        self.buffer = buffer or ChunkBuffer()

    async def _pump(self) -> str:
        chunks = self._iterator = _open_iterator(self.source)
        while True:
            try:
                chunk = await chunks.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                logger.warning("Stream read failed", error=str(e), error_type=type(e).__name__)
                return await self._deliver(self.normalizer.error_from_exception(e)) or "error"

            self._mark_receiving()
            try:
                outcome = await self._handle_chunk(chunk)
            except BufferOverflowError as e:
                return await self._deliver(self.normalizer.error_from_exception(e)) or "error"
            except Exception as e:
                return await self._fail_internal(e)
            if outcome:
                return outcome

        # Body ended; a final line may lack its newline
        try:
            for line in self.buffer.flush():
                outcome = await self._handle_line(line)
                if outcome:
                    return outcome
        except Exception as e:
            return await self._fail_internal(e)

        logger.debug("Body ended without an end-of-stream marker")
        return await self._deliver_all(self.normalizer.finish()) or "end"

    async def _handle_chunk(self, chunk: bytes) -> Optional[str]:
        for line in self.buffer.feed(chunk):
            outcome = await self._handle_line(line)
            if outcome:
                return outcome
        return None

    async def _handle_line(self, line: str) -> Optional[str]:
        frame = self.framer.parse_line(line)
        if frame is None:
            return None

        try:
            provider_events = self.decoder.decode(frame)
        except MalformedFrameError as e:
            self._skip(e)
            return None

        for provider_event in provider_events:
            outcome = await self._deliver_all(self.normalizer.process(provider_event))
            if outcome:
                return outcome
        return None


class MessageStreamTask(_BaseStreamTask):
    """
    Producer for transports that deliver whole messages (gRPC-style).

    Messages skip buffering and framing and go straight to the decoder.
    """

    def __init__(
        self,
        source: Union[AsyncIterable[Any], Iterable[Any]],
        decoder: PreFramedDecoder,
        normalizer: EventNormalizer,
        channel: DeliveryChannel,
        *,
        model: str = "",
        stream_id: Optional[str] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__(
            source, normalizer, channel,
            model=model, stream_id=stream_id, metrics=metrics,
        )
        self.decoder = decoder

    async def _pump(self) -> str:
        messages = self._iterator = _open_iterator(self.source)
        while True:
            try:
                message = await messages.__anext__()
            except StopAsyncIteration:
                break
            except Exception as e:
                logger.warning("Stream read failed", error=str(e), error_type=type(e).__name__)
                return await self._deliver(self.normalizer.error_from_exception(e)) or "error"

            self._mark_receiving()
            try:
                provider_events = self.decoder.decode_message(message)
            except MalformedFrameError as e:
                self._skip(e)
                continue
            except Exception as e:
                return await self._fail_internal(e)

            for provider_event in provider_events:
                outcome = await self._deliver_all(self.normalizer.process(provider_event))
                if outcome:
                    return outcome

        return await self._deliver_all(self.normalizer.finish()) or "end"


# ============================================================
# Consumer Side
# ============================================================

@dataclass
class StreamResult:
    """Everything a stream produced, gathered by StreamHandle.collect()."""
    content: str = ""
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)
    finish_reason: Optional[FinishReason] = None
    usage: Optional[UsageFinal] = None
    error: Optional[StreamError] = None
    event_count: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None


def _cancel_orphaned(task: asyncio.Task, channel: DeliveryChannel):
    """Finalizer for handles dropped without aclose(). Must not reference the handle."""
    if task.done():
        return
    loop = task.get_loop()
    if loop.is_closed():
        return

    def cancel():
        channel.close_receiver()
        task.cancel()

    loop.call_soon_threadsafe(cancel)


class StreamHandle:
    """
    Async iterator over a stream's NormalizedEvent sequence.

    The last event is always StreamEnd or StreamError; iteration stops
    after it.

    Usage:
        async with adapter.chat_stream(request) as stream:
            async for event in stream:
                if isinstance(event, ContentDelta):
                    print(event.text, end="")
    """

    def __init__(
        self,
        task: asyncio.Task,
        producer: _BaseStreamTask,
        channel: DeliveryChannel,
    ):
        self._task = task
        self._producer = producer
        self._channel = channel
        self._exhausted = False
        self._finalizer = weakref.finalize(self, _cancel_orphaned, task, channel)

    @property
    def stream_id(self) -> str:
        return self._producer.stream_id

    @property
    def provider(self) -> str:
        return self._producer.provider

    @property
    def model(self) -> str:
        return self._producer.model

    @property
    def request_id(self) -> str:
        return self._producer.request_id

    @property
    def phase(self) -> StreamPhase:
        return self._producer.phase

    @property
    def closed(self) -> bool:
        return self._exhausted and self._task.done()

    def __aiter__(self) -> "StreamHandle":
        return self

    async def __anext__(self) -> NormalizedEvent:
        if self._exhausted:
            raise StopAsyncIteration

        event = await self._channel.receive()
        if event is None:
            # Task ended without a terminal event (cancelled)
            self._exhausted = True
            raise StopAsyncIteration

        if event.is_terminal:
            self._exhausted = True
        return event

    async def aclose(self):
        """Stop consuming. Cancels the task if still running and waits for it to release the source."""
        self._exhausted = True
        self._channel.close_receiver()
        if not self._task.done():
            self._task.cancel()
        await asyncio.wait({self._task})
        await self._producer.release()
        self._finalizer.detach()

    async def __aenter__(self) -> "StreamHandle":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def collect(self) -> StreamResult:
        """Consume the whole stream and gather its content, tool calls and metadata."""
        result = StreamResult()
        parts: List[str] = []
        tracker = ToolCallStreamTracker()

        try:
            async for event in self:
                result.event_count += 1
                if isinstance(event, ContentDelta):
                    parts.append(event.text)
                elif isinstance(event, ToolCallDelta):
                    tracker.apply(event)
                elif isinstance(event, FinishReason):
                    result.finish_reason = event
                elif isinstance(event, UsageFinal):
                    result.usage = event
                elif isinstance(event, StreamError):
                    result.error = event
        finally:
            await self.aclose()

        result.content = "".join(parts)
        result.tool_calls = tracker.to_list()
        return result

    async def text(self) -> str:
        """
        Consume the stream and return the generated text.

        Raises:
            StreamFailedError: the stream ended with a StreamError
        """
        result = await self.collect()
        if result.error is not None:
            raise StreamFailedError(result.error)
        return result.content
