"""
unillm - Streaming Pipeline Tests

Tests for:
- End-to-end streams for each wire format
- Chunk-boundary invariance
- Order preservation and single terminal event
- Malformed frame isolation
- Network, provider, overflow and internal failures
- Backpressure, cancellation and dropped handles
- Pre-framed message streams
"""

import asyncio
import gc
from typing import List

import httpx
import pytest

from unillm.config import StreamSettings
from unillm.core.errors import StreamFailedError
from unillm.streaming import (
    ContentDelta,
    DeliveryChannel,
    EventNormalizer,
    FinishCode,
    FinishReason,
    MessageStreamTask,
    NormalizedEvent,
    StreamEnd,
    StreamError,
    StreamErrorKind,
    StreamHandle,
    StreamPhase,
    StreamTask,
    ToolCallDelta,
    UsageFinal,
    open_message_stream,
    open_stream,
)
from unillm.streaming.decoders import OpenAIDecoder, PreFramedDecoder
from unillm.streaming.framing import SSEPlainFraming


async def drain(handle: StreamHandle) -> List[NormalizedEvent]:
    """Consume a handle to the end."""
    events = []
    async with handle:
        async for event in handle:
            events.append(event)
    return events


def openai_chunk(text: str) -> bytes:
    return ('data: {"choices":[{"delta":{"content":"%s"}}]}\n\n' % text).encode("utf-8")


# ============================================================
# Wire Format Scenarios
# ============================================================

class TestWireFormats:
    """One minimal stream per wire format."""

    @pytest.mark.asyncio
    async def test_sse_typed(self, make_source, settings, metrics):
        """Anthropic-style data lines end at message_stop."""
        body = (
            b'data: {"type":"content_block_delta","delta":{"type":"text_delta","text":"Hi"}}\n'
            b'data: {"type":"message_stop"}\n'
        )
        handle = open_stream(make_source([body]), "anthropic", settings=settings, metrics=metrics)
        assert await drain(handle) == [ContentDelta(text="Hi"), StreamEnd()]

    @pytest.mark.asyncio
    async def test_ndjson(self, make_source, settings, metrics):
        """Ollama-style lines end at done: true without an empty delta."""
        body = (
            b'{"message":{"content":"Hi"},"done":false}\n'
            b'{"message":{"content":""},"done":true}\n'
        )
        handle = open_stream(make_source([body]), "ollama", settings=settings, metrics=metrics)
        assert await drain(handle) == [ContentDelta(text="Hi"), StreamEnd()]

    @pytest.mark.asyncio
    async def test_sse_plain(self, make_source, settings, metrics):
        """OpenAI-style data lines end at [DONE]."""
        body = (
            b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n'
            b'data: [DONE]\n\n'
        )
        handle = open_stream(make_source([body]), "openai", settings=settings, metrics=metrics)
        assert await drain(handle) == [ContentDelta(text="Hi"), StreamEnd()]

    @pytest.mark.asyncio
    async def test_sync_iterable_source(self, settings, metrics):
        """Plain lists of chunks are accepted."""
        handle = open_stream(
            [openai_chunk("Hi"), b"data: [DONE]\n\n"], "openai",
            settings=settings, metrics=metrics,
        )
        assert await drain(handle) == [ContentDelta(text="Hi"), StreamEnd()]

    def test_unknown_provider(self):
        """Providers without a profile are rejected."""
        with pytest.raises(ValueError):
            open_stream([], "mystery")


# ============================================================
# Chunk Boundary Invariance
# ============================================================

class TestChunkBoundaries:
    """The event sequence does not depend on how the body was split."""

    @pytest.mark.asyncio
    async def test_openai(self, openai_sse_body, chunking, make_source, settings, metrics):
        """OpenAI body under every chunking."""
        handle = open_stream(make_source(chunking(openai_sse_body)), "openai", settings=settings, metrics=metrics)
        assert await drain(handle) == [
            ContentDelta(text="Hello"),
            ContentDelta(text=" wörld \U0001F30D"),
            FinishReason(reason=FinishCode.STOP, raw="stop"),
            UsageFinal(prompt_tokens=5, completion_tokens=3, total_tokens=8),
            StreamEnd(),
        ]

    @pytest.mark.asyncio
    async def test_anthropic(self, anthropic_sse_body, chunking, make_source, settings, metrics):
        """Anthropic body under every chunking."""
        handle = open_stream(make_source(chunking(anthropic_sse_body)), "anthropic", settings=settings, metrics=metrics)
        assert await drain(handle) == [
            ContentDelta(text="Bonjour"),
            ContentDelta(text=" à tous"),
            FinishReason(reason=FinishCode.STOP, raw="end_turn"),
            UsageFinal(prompt_tokens=12, completion_tokens=6, total_tokens=18),
            StreamEnd(),
        ]

    @pytest.mark.asyncio
    async def test_ollama(self, ollama_ndjson_body, chunking, make_source, settings, metrics):
        """Ollama body under every chunking."""
        handle = open_stream(make_source(chunking(ollama_ndjson_body)), "ollama", settings=settings, metrics=metrics)
        assert await drain(handle) == [
            ContentDelta(text="Why"),
            ContentDelta(text=" 日本"),
            FinishReason(reason=FinishCode.STOP, raw="stop"),
            UsageFinal(prompt_tokens=7, completion_tokens=2, total_tokens=9),
            StreamEnd(),
        ]


# ============================================================
# Ordering and Termination
# ============================================================

class TestOrderingAndTermination:
    """Test event order and the terminal event contract."""

    @pytest.mark.asyncio
    async def test_order_preserved(self, make_source, settings, metrics):
        """Events arrive in source order."""
        chunks = [openai_chunk(str(i)) for i in range(50)] + [b"data: [DONE]\n\n"]
        events = await drain(open_stream(make_source(chunks), "openai", settings=settings, metrics=metrics))

        assert [e.text for e in events[:-1]] == [str(i) for i in range(50)]
        assert events[-1] == StreamEnd()

    @pytest.mark.asyncio
    async def test_nothing_after_done(self, make_source, settings, metrics):
        """Frames after the end marker are never delivered."""
        body = openai_chunk("a") + b"data: [DONE]\n\n" + openai_chunk("late")
        handle = open_stream(make_source([body]), "openai", settings=settings, metrics=metrics)

        events = await drain(handle)

        assert events == [ContentDelta(text="a"), StreamEnd()]
        with pytest.raises(StopAsyncIteration):
            await handle.__anext__()

    @pytest.mark.asyncio
    async def test_eof_without_marker(self, make_source, settings, metrics):
        """A body that simply stops still ends with StreamEnd."""
        handle = open_stream(make_source([openai_chunk("a")]), "openai", settings=settings, metrics=metrics)
        assert await drain(handle) == [ContentDelta(text="a"), StreamEnd()]

    @pytest.mark.asyncio
    async def test_final_line_without_newline(self, make_source, settings, metrics):
        """The last NDJSON line is processed even without a trailing newline."""
        body = b'{"message":{"content":"Hi"},"done":false}\n{"done":true}'
        handle = open_stream(make_source([body]), "ollama", settings=settings, metrics=metrics)
        assert await drain(handle) == [ContentDelta(text="Hi"), StreamEnd()]

    @pytest.mark.asyncio
    async def test_empty_body(self, make_source, settings, metrics):
        """An empty body is a stream with no content."""
        handle = open_stream(make_source([]), "openai", settings=settings, metrics=metrics)
        assert await drain(handle) == [StreamEnd()]

    @pytest.mark.asyncio
    async def test_handle_lifecycle(self, make_source, settings, metrics):
        """A drained handle is closed and its task is in CLOSED."""
        handle = open_stream(
            make_source([openai_chunk("a"), b"data: [DONE]\n\n"]), "openai",
            request_id="req_abc", model="gpt-4o", settings=settings, metrics=metrics,
        )

        assert handle.stream_id.startswith("str_")
        assert handle.request_id == "req_abc"
        assert handle.provider == "openai"
        assert handle.model == "gpt-4o"

        await drain(handle)

        assert handle.phase == StreamPhase.CLOSED
        assert handle.closed


# ============================================================
# Failure Handling
# ============================================================

class TestFailureHandling:
    """Test soft and terminal failures."""

    @pytest.mark.asyncio
    async def test_malformed_frame_is_skipped(self, make_source, settings, metrics):
        """A bad frame between two good ones suppresses neither."""
        body = openai_chunk("a") + b"data: {oops\n\n" + openai_chunk("b") + b"data: [DONE]\n\n"
        handle = open_stream(make_source([body]), "openai", settings=settings, metrics=metrics)

        assert await drain(handle) == [ContentDelta(text="a"), ContentDelta(text="b"), StreamEnd()]
        assert metrics.registry.get_sample_value(
            "unillm_frames_skipped_total", {"provider": "openai", "reason": "invalid_json"}
        ) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider,body", [
        (
            "openai",
            openai_chunk("a")
            + b'data: {"choices":[{"delta":{"content":42}}]}\n\n'
            + openai_chunk("b")
            + b"data: [DONE]\n\n",
        ),
        (
            "anthropic",
            b'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"a"}}\n'
            b'data: {"type":"message_delta","delta":{"stop_reason":["x"]}}\n'
            b'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"b"}}\n'
            b'data: {"type":"message_stop"}\n',
        ),
        (
            "ollama",
            b'{"message":{"content":"a"},"done":false}\n'
            b'{"message":{"content":{"text":"x"}},"done":false}\n'
            b'{"message":{"content":"b"},"done":false}\n'
            b'{"done":true}\n',
        ),
    ])
    async def test_wrongly_typed_frame_is_skipped(self, provider, body, make_source, settings, metrics):
        """Valid JSON with a wrongly typed field is skipped like any malformed frame."""
        handle = open_stream(make_source([body]), provider, settings=settings, metrics=metrics)

        assert await drain(handle) == [ContentDelta(text="a"), ContentDelta(text="b"), StreamEnd()]
        assert metrics.registry.get_sample_value(
            "unillm_frames_skipped_total", {"provider": provider, "reason": "unexpected_shape"}
        ) == 1

    @pytest.mark.asyncio
    async def test_string_token_count_is_skipped(self, make_source, settings, metrics):
        """A usage chunk with non-integer counts is dropped and the stream still ends."""
        body = openai_chunk("a") + b'data: {"choices":[],"usage":{"prompt_tokens":"5"}}\n\n'
        handle = open_stream(make_source([body]), "openai", settings=settings, metrics=metrics)

        assert await drain(handle) == [ContentDelta(text="a"), StreamEnd()]

    @pytest.mark.asyncio
    async def test_fault_at_end_of_body(self, make_source, settings, metrics):
        """A fault while finishing still delivers a terminal INTERNAL error."""
        class BrokenFinish(EventNormalizer):
            def finish(self):
                raise RuntimeError("finish bug")

        channel = DeliveryChannel(settings.channel_capacity)
        producer = StreamTask(
            make_source([openai_chunk("a")]),
            SSEPlainFraming(),
            OpenAIDecoder(),
            BrokenFinish("openai", "req_x"),
            channel,
            metrics=metrics,
        )
        task = asyncio.get_running_loop().create_task(producer.run())

        events = await drain(StreamHandle(task, producer, channel))

        assert events[0] == ContentDelta(text="a")
        error = events[-1]
        assert len(events) == 2
        assert error.kind == StreamErrorKind.INTERNAL
        assert "finish bug" in error.message
        assert error.partial_content == "a"
        assert producer.outcome == "error"
        await task

    @pytest.mark.asyncio
    async def test_fault_in_message_stream(self, settings, metrics):
        """Message streams report normalizer faults as INTERNAL errors too."""
        class BrokenNormalizer(EventNormalizer):
            def process(self, event):
                raise RuntimeError("process bug")

        channel = DeliveryChannel(settings.channel_capacity)
        producer = MessageStreamTask(
            [{"content": "a"}],
            PreFramedDecoder(),
            BrokenNormalizer("grpc", "req_x"),
            channel,
            metrics=metrics,
        )
        task = asyncio.get_running_loop().create_task(producer.run())

        [error] = await drain(StreamHandle(task, producer, channel))

        assert error.kind == StreamErrorKind.INTERNAL
        assert "process bug" in error.message
        await task

    @pytest.mark.asyncio
    async def test_provider_error(self, make_source, settings, metrics):
        """An in-band error ends the stream with a PROVIDER error."""
        body = openai_chunk("a") + b'data: {"error":{"message":"overloaded","type":"server_error"}}\n\n'
        handle = open_stream(make_source([body]), "openai", settings=settings, metrics=metrics)

        events = await drain(handle)

        assert events[0] == ContentDelta(text="a")
        error = events[-1]
        assert isinstance(error, StreamError)
        assert error.kind == StreamErrorKind.PROVIDER
        assert error.message == "overloaded"
        assert error.partial_content == "a"
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_network_error_after_content(self, settings, metrics):
        """A transport failure ends the stream with a NETWORK error."""
        async def source():
            yield openai_chunk("a")
            raise httpx.ReadError("connection reset")

        handle = open_stream(source(), "openai", request_id="req_1", settings=settings, metrics=metrics)
        events = await drain(handle)

        error = events[-1]
        assert events[:-1] == [ContentDelta(text="a")]
        assert error.kind == StreamErrorKind.NETWORK
        assert error.code == "stream_interrupted"
        assert error.request_id == "req_1"
        assert error.chunks_delivered == 1
        assert not error.is_retryable

    @pytest.mark.asyncio
    async def test_timeout_before_content(self, settings, metrics):
        """A read timeout before any content is retryable."""
        async def source():
            raise httpx.ReadTimeout("timed out")
            yield b""

        events = await drain(open_stream(source(), "openai", settings=settings, metrics=metrics))

        [error] = events
        assert error.kind == StreamErrorKind.NETWORK
        assert error.code == "timeout"
        assert error.is_retryable

    @pytest.mark.asyncio
    async def test_line_too_long(self, make_source, metrics):
        """An unterminated line past the limit ends the stream."""
        settings = StreamSettings(max_line_bytes=64)
        chunks = [openai_chunk("a"), b"data: " + b"x" * 200]
        events = await drain(open_stream(make_source(chunks), "openai", settings=settings, metrics=metrics))

        assert events[0] == ContentDelta(text="a")
        error = events[-1]
        assert error.kind == StreamErrorKind.RESOURCE_EXHAUSTED
        assert error.code == "line_too_long"
        assert error.partial_content == "a"

    @pytest.mark.asyncio
    async def test_internal_error(self, make_source, settings, metrics):
        """An unexpected fault becomes an INTERNAL error event."""
        class BrokenFraming(SSEPlainFraming):
            def parse_line(self, line):
                raise RuntimeError("framer bug")

        channel = DeliveryChannel(settings.channel_capacity)
        producer = StreamTask(
            make_source([openai_chunk("a")]),
            BrokenFraming(),
            OpenAIDecoder(),
            EventNormalizer("openai", "req_x"),
            channel,
            metrics=metrics,
        )
        task = asyncio.get_running_loop().create_task(producer.run())

        [error] = await drain(StreamHandle(task, producer, channel))

        assert error.kind == StreamErrorKind.INTERNAL
        assert error.code == "internal_error"
        assert "framer bug" in error.message

    @pytest.mark.asyncio
    async def test_text_raises_on_error(self, make_source, settings, metrics):
        """text() turns a StreamError into StreamFailedError."""
        body = b'data: {"error":{"message":"nope"}}\n\n'
        handle = open_stream(make_source([body]), "openai", settings=settings, metrics=metrics)

        with pytest.raises(StreamFailedError) as exc_info:
            await handle.text()

        assert exc_info.value.stream_error.kind == StreamErrorKind.PROVIDER


# ============================================================
# Backpressure and Cancellation
# ============================================================

class TestBackpressureAndCancellation:
    """Test the bounded channel and consumer-driven shutdown."""

    @pytest.mark.asyncio
    async def test_slow_consumer_throttles_producer(self, metrics):
        """The producer stops reading when the channel is full."""
        pulled = 0

        async def source():
            nonlocal pulled
            for i in range(50):
                pulled += 1
                yield openai_chunk(str(i))
            yield b"data: [DONE]\n\n"

        handle = open_stream(source(), "openai", settings=StreamSettings(channel_capacity=2), metrics=metrics)
        for _ in range(20):
            await asyncio.sleep(0)

        assert pulled <= 3

        events = await drain(handle)
        assert len(events) == 51
        assert events[-1] == StreamEnd()

    @pytest.mark.asyncio
    async def test_aclose_cancels_and_releases(self, settings, metrics):
        """Closing the handle stops the task and closes the source."""
        released = asyncio.Event()

        async def endless():
            try:
                while True:
                    yield openai_chunk("x")
                    await asyncio.sleep(0)
            finally:
                released.set()

        handle = open_stream(endless(), "openai", settings=settings, metrics=metrics)
        assert await handle.__anext__() == ContentDelta(text="x")

        await handle.aclose()

        assert released.is_set()
        assert handle.phase == StreamPhase.CLOSED
        with pytest.raises(StopAsyncIteration):
            await handle.__anext__()
        assert metrics.registry.get_sample_value(
            "unillm_streams_finished_total", {"provider": "openai", "outcome": "cancelled"}
        ) == 1

    @pytest.mark.asyncio
    async def test_dropped_handle_stops_producer(self, settings, metrics):
        """Dropping the handle without closing it still stops the task."""
        released = asyncio.Event()
        produced = 0

        async def endless():
            nonlocal produced
            try:
                while True:
                    produced += 1
                    yield openai_chunk("x")
                    await asyncio.sleep(0)
            finally:
                released.set()

        handle = open_stream(endless(), "openai", settings=settings, metrics=metrics)
        assert isinstance(await handle.__anext__(), ContentDelta)

        task = handle._task
        del handle
        gc.collect()

        await asyncio.wait({task}, timeout=2)
        assert task.done()
        await asyncio.wait_for(released.wait(), timeout=2)

        stopped_at = produced
        for _ in range(10):
            await asyncio.sleep(0)
        assert produced == stopped_at

    @pytest.mark.asyncio
    async def test_aclose_before_task_runs(self, settings, metrics):
        """Closing immediately still releases the source."""
        closed = []

        class Body:
            def __aiter__(self):
                return self

            async def __anext__(self):
                return openai_chunk("x")

            async def aclose(self):
                closed.append(True)

        handle = open_stream(Body(), "openai", settings=settings, metrics=metrics)
        await handle.aclose()

        assert closed
        assert handle.phase == StreamPhase.CLOSED


# ============================================================
# Consumer Helpers
# ============================================================

class TestCollect:
    """Test StreamHandle.collect() and text()."""

    @pytest.mark.asyncio
    async def test_collect_text(self, openai_sse_body, make_source, settings, metrics):
        """Content, finish reason and usage are gathered."""
        handle = open_stream(make_source([openai_sse_body]), "openai", settings=settings, metrics=metrics)
        result = await handle.collect()

        assert result.ok
        assert result.content == "Hello wörld \U0001F30D"
        assert result.finish_reason.reason == FinishCode.STOP
        assert result.usage.total_tokens == 8
        assert result.event_count == 5

    @pytest.mark.asyncio
    async def test_collect_tool_calls(self, make_source, settings, metrics):
        """Tool call fragments are reassembled."""
        body = (
            b'data: {"choices":[{"delta":{"tool_calls":[{"index":0,"id":"call_1","function":{"name":"get_weather","arguments":""}}]}}]}\n\n'
            b'data: {"choices":[{"delta":{"tool_calls":[{"index":0,"function":{"arguments":"{\\"city\\":"}}]}}]}\n\n'
            b'data: {"choices":[{"delta":{"tool_calls":[{"index":0,"function":{"arguments":"\\"Paris\\"}"}}]}}]}\n\n'
            b'data: {"choices":[{"delta":{},"finish_reason":"tool_calls"}]}\n\n'
            b'data: [DONE]\n\n'
        )
        result = await open_stream(make_source([body]), "openai", settings=settings, metrics=metrics).collect()

        assert result.finish_reason.reason == FinishCode.TOOL_CALLS
        assert result.tool_calls == [{
            "id": "call_1",
            "type": "function",
            "function": {"name": "get_weather", "arguments": '{"city":"Paris"}'},
        }]

    @pytest.mark.asyncio
    async def test_collect_ollama_tool_calls_in_separate_chunks(self, make_source, settings, metrics):
        """Each whole Ollama tool call is collected on its own."""
        body = (
            b'{"message":{"tool_calls":[{"function":{"name":"a","arguments":{"x":1}}}]},"done":false}\n'
            b'{"message":{"tool_calls":[{"function":{"name":"b","arguments":{"y":2}}}]},"done":false}\n'
            b'{"done":true}\n'
        )
        result = await open_stream(make_source([body]), "ollama", settings=settings, metrics=metrics).collect()

        assert [(c["function"]["name"], c["function"]["arguments"]) for c in result.tool_calls] == [
            ("a", '{"x": 1}'),
            ("b", '{"y": 2}'),
        ]

    @pytest.mark.asyncio
    async def test_text(self, ollama_ndjson_body, make_source, settings, metrics):
        """text() returns the generated text."""
        handle = open_stream(make_source([ollama_ndjson_body]), "ollama", settings=settings, metrics=metrics)
        assert await handle.text() == "Why 日本"


# ============================================================
# Pre-framed Message Streams
# ============================================================

class TestMessageStreams:
    """Test streams of whole messages."""

    @pytest.mark.asyncio
    async def test_messages(self, settings, metrics):
        """Messages go straight to the decoder."""
        messages = [
            {"content": "Hi"},
            {"content": " there"},
            {"finish_reason": "stop", "usage": {"prompt_tokens": 2, "completion_tokens": 2}, "is_final": True},
        ]
        handle = open_message_stream(messages, settings=settings, metrics=metrics)

        assert await drain(handle) == [
            ContentDelta(text="Hi"),
            ContentDelta(text=" there"),
            FinishReason(reason=FinishCode.STOP, raw="stop"),
            UsageFinal(prompt_tokens=2, completion_tokens=2, total_tokens=4),
            StreamEnd(),
        ]
        assert handle.provider == "grpc"

    @pytest.mark.asyncio
    async def test_malformed_message_is_skipped(self, settings, metrics):
        """A message that cannot be decoded does not end the stream."""
        handle = open_message_stream(
            [{"content": "a"}, None, {"content": "b"}],
            settings=settings, metrics=metrics,
        )
        assert await drain(handle) == [ContentDelta(text="a"), ContentDelta(text="b"), StreamEnd()]

    @pytest.mark.asyncio
    async def test_async_messages_with_tool_calls(self, settings, metrics):
        """Async message sources and tool calls."""
        async def messages():
            yield {"tool_calls": [{"id": "c1", "name": "lookup", "arguments": "{}"}]}
            yield {"finish_reason": "tool_calls", "is_final": True}

        events = await drain(open_message_stream(messages(), settings=settings, metrics=metrics))

        assert events == [
            ToolCallDelta(index=0, id="c1", name="lookup", arguments="{}"),
            FinishReason(reason=FinishCode.TOOL_CALLS, raw="tool_calls"),
            StreamEnd(),
        ]


# ============================================================
# Metrics
# ============================================================

class TestStreamMetrics:
    """Test the metrics a stream records."""

    @pytest.mark.asyncio
    async def test_completed_stream(self, openai_sse_body, make_source, settings, metrics):
        """Events, outcome and time to first token are recorded."""
        await drain(open_stream(
            make_source([openai_sse_body]), "openai",
            model="gpt-4o", settings=settings, metrics=metrics,
        ))

        sample = metrics.registry.get_sample_value
        assert sample("unillm_streams_started_total", {"provider": "openai"}) == 1
        assert sample("unillm_streams_finished_total", {"provider": "openai", "outcome": "end"}) == 1
        assert sample("unillm_stream_events_total", {"provider": "openai", "event_type": "content_delta"}) == 2
        assert sample("unillm_stream_events_total", {"provider": "openai", "event_type": "end"}) == 1
        assert sample("unillm_time_to_first_token_seconds_count", {"provider": "openai", "model": "gpt-4o"}) == 1
        assert sample("unillm_active_streams", {"provider": "openai"}) == 0

    @pytest.mark.asyncio
    async def test_failed_stream(self, make_source, settings, metrics):
        """Error outcomes are counted separately."""
        body = b'data: {"error":{"message":"nope"}}\n\n'
        await drain(open_stream(make_source([body]), "openai", settings=settings, metrics=metrics))

        assert metrics.registry.get_sample_value(
            "unillm_streams_finished_total", {"provider": "openai", "outcome": "error"}
        ) == 1
