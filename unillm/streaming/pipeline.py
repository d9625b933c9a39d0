"""
unillm - Streaming Pipeline

Entry points that wire a source to a stream task and return a StreamHandle.

Usage:
    handle = open_stream(response.aiter_bytes(), Provider.OPENAI, model="gpt-4o")
    async with handle:
        async for event in handle:
            ...

Each provider has a StreamProfile naming its wire format, framer and
decoder. Profiles are looked up once per stream; framers, decoders and
buffers are built fresh for every stream.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterable, Callable, Dict, Iterable, Optional, Union

from ..config import StreamSettings
from ..core.models import Provider
from ..observability.logging import get_logger
from ..observability.metrics import MetricsCollector
from .buffer import ChunkBuffer
from .channel import DeliveryChannel
from .decoders import AnthropicDecoder, OllamaDecoder, OpenAIDecoder, PreFramedDecoder, StreamDecoder
from .framing import FrameParser, NDJSONFraming, SSEPlainFraming, SSETypedFraming
from .normalizer import EventNormalizer
from .task import ByteSource, MessageStreamTask, StreamHandle, StreamTask, new_stream_id


logger = get_logger(__name__)


class WireFormat(str, Enum):
    """How a provider frames its streaming body."""
    SSE_PLAIN = "sse_plain"
    SSE_TYPED = "sse_typed"
    NDJSON = "ndjson"
    PRE_FRAMED = "pre_framed"


@dataclass(frozen=True)
class StreamProfile:
    """Per-provider streaming configuration."""
    provider: Provider
    wire_format: WireFormat
    framer_factory: Callable[[], FrameParser]
    decoder_factory: Callable[[], StreamDecoder]


PROFILES: Dict[Provider, StreamProfile] = {
    Provider.OPENAI: StreamProfile(
        provider=Provider.OPENAI,
        wire_format=WireFormat.SSE_PLAIN,
        framer_factory=SSEPlainFraming,
        decoder_factory=OpenAIDecoder,
    ),
    Provider.ANTHROPIC: StreamProfile(
        provider=Provider.ANTHROPIC,
        wire_format=WireFormat.SSE_TYPED,
        framer_factory=SSETypedFraming,
        decoder_factory=AnthropicDecoder,
    ),
    Provider.OLLAMA: StreamProfile(
        provider=Provider.OLLAMA,
        wire_format=WireFormat.NDJSON,
        framer_factory=NDJSONFraming,
        decoder_factory=OllamaDecoder,
    ),
}


def get_profile(provider: Union[Provider, str]) -> StreamProfile:
    """
    Look up the streaming profile for a provider.

    Raises:
        ValueError: unknown provider
    """
    try:
        return PROFILES[Provider(provider)]
    except (ValueError, KeyError):
        raise ValueError(f"No streaming profile for provider: {provider}")


def _spawn(producer, channel: DeliveryChannel) -> StreamHandle:
    loop = asyncio.get_running_loop()
    task = loop.create_task(producer.run(), name=f"unillm-stream-{producer.stream_id}")
    return StreamHandle(task, producer, channel)


def open_stream(
    source: ByteSource,
    provider: Union[Provider, str],
    *,
    model: str = "",
    request_id: str = "",
    settings: Optional[StreamSettings] = None,
    metrics: Optional[MetricsCollector] = None,
    stream_id: Optional[str] = None,
) -> StreamHandle:
    """
    Start a stream task over a byte source and return its handle.

    The task starts immediately and reads ahead until the channel is full.
    Must be called from a running event loop.

    Args:
        source: Async (or sync) iterable of raw body chunks
        provider: Selects framing and decoding
        model: Model name, for logs and metrics
        request_id: Correlation id carried into errors and logs
        settings: Channel capacity and line limit (defaults from environment)
        metrics: Collector override, for tests
        stream_id: Stream id override
    """
    profile = get_profile(provider)
    settings = settings or StreamSettings.from_env()
    channel = DeliveryChannel(settings.channel_capacity)

    producer = StreamTask(
        source,
        profile.framer_factory(),
        profile.decoder_factory(),
        EventNormalizer(profile.provider.value, request_id),
        channel,
        buffer=ChunkBuffer(settings.max_line_bytes),
        model=model,
        stream_id=stream_id or new_stream_id(),
        metrics=metrics,
    )

    logger.debug(
        "Opening stream",
        provider=profile.provider.value,
        wire_format=profile.wire_format.value,
        stream_id=producer.stream_id,
    )
    return _spawn(producer, channel)


def open_message_stream(
    messages: Union[AsyncIterable[Any], Iterable[Any]],
    *,
    provider: str = "grpc",
    model: str = "",
    request_id: str = "",
    settings: Optional[StreamSettings] = None,
    metrics: Optional[MetricsCollector] = None,
    stream_id: Optional[str] = None,
) -> StreamHandle:
    """
    Start a stream task over already-framed messages (gRPC-style transports).

    Messages bypass buffering and framing. See PreFramedDecoder for the
    accepted message shape.
    """
    settings = settings or StreamSettings.from_env()
    channel = DeliveryChannel(settings.channel_capacity)

    producer = MessageStreamTask(
        messages,
        PreFramedDecoder(),
        EventNormalizer(provider, request_id),
        channel,
        model=model,
        stream_id=stream_id or new_stream_id(),
        metrics=metrics,
    )

    logger.debug(
        "Opening message stream",
        provider=provider,
        wire_format=WireFormat.PRE_FRAMED.value,
        stream_id=producer.stream_id,
    )
    return _spawn(producer, channel)
