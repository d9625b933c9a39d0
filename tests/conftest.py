"""
unillm - Pytest Configuration

Configures:
- Integration test markers (skip by default)
- Smoke test handling (skip with SKIP_SMOKE=1)
- Recorded provider stream bodies for unit tests
- Chunk splitting helpers for boundary tests
"""

import os
import asyncio
import pytest
import logging
from typing import AsyncIterator, Callable, Iterable, List, Optional

from prometheus_client import CollectorRegistry

from unillm.config import StreamSettings
from unillm.observability.metrics import MetricsCollector


# ============================================================
# Environment Configuration
# ============================================================

def _is_truthy(value: Optional[str]) -> bool:
    """Check if environment variable is truthy."""
    if value is None:
        return False
    return value.lower() in ("1", "true", "yes", "on")


RUN_INTEGRATION = _is_truthy(os.getenv("RUN_INTEGRATION"))
SKIP_SMOKE = _is_truthy(os.getenv("SKIP_SMOKE"))


# ============================================================
# Pytest Markers
# ============================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test (requires RUN_INTEGRATION=1)"
    )
    config.addinivalue_line(
        "markers",
        "smoke: mark test as smoke test (skip with SKIP_SMOKE=1)"
    )
    config.addinivalue_line(
        "markers",
        "requires_provider(name): mark test as requiring specific provider"
    )


def pytest_collection_modifyitems(config, items):
    """
    Modify test collection to handle integration and smoke tests.

    - Integration tests: Skip unless RUN_INTEGRATION=1
    - Smoke tests: Skip if SKIP_SMOKE=1
    """
    skip_integration = pytest.mark.skip(
        reason="Integration test - set RUN_INTEGRATION=1 to run"
    )
    skip_smoke = pytest.mark.skip(
        reason="Smoke test skipped - SKIP_SMOKE=1"
    )

    for item in items:
        if "integration" in item.keywords:
            if not RUN_INTEGRATION:
                item.add_marker(skip_integration)

        if "smoke" in item.keywords:
            if SKIP_SMOKE:
                item.add_marker(skip_smoke)


# ============================================================
# Recorded Stream Bodies
# ============================================================

OPENAI_SSE_BODY = (
    b'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{"role":"assistant","content":""},"finish_reason":null}]}\n\n'
    b'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{"content":"Hello"},"finish_reason":null}]}\n\n'
    b'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{"content":" w\xc3\xb6rld \xf0\x9f\x8c\x8d"},"finish_reason":null}]}\n\n'
    b'data: {"id":"chatcmpl-1","choices":[{"index":0,"delta":{},"finish_reason":"stop"}]}\n\n'
    b'data: {"id":"chatcmpl-1","choices":[],"usage":{"prompt_tokens":5,"completion_tokens":3,"total_tokens":8}}\n\n'
    b'data: [DONE]\n\n'
)

ANTHROPIC_SSE_BODY = (
    b'event: message_start\n'
    b'data: {"type":"message_start","message":{"id":"msg_1","model":"claude-3-5-sonnet","usage":{"input_tokens":12,"output_tokens":1}}}\n\n'
    b'event: content_block_start\n'
    b'data: {"type":"content_block_start","index":0,"content_block":{"type":"text","text":""}}\n\n'
    b'event: ping\n'
    b'data: {"type": "ping"}\n\n'
    b'event: content_block_delta\n'
    b'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":"Bonjour"}}\n\n'
    b'event: content_block_delta\n'
    b'data: {"type":"content_block_delta","index":0,"delta":{"type":"text_delta","text":" \xc3\xa0 tous"}}\n\n'
    b'event: content_block_stop\n'
    b'data: {"type":"content_block_stop","index":0}\n\n'
    b'event: message_delta\n'
    b'data: {"type":"message_delta","delta":{"stop_reason":"end_turn","stop_sequence":null},"usage":{"output_tokens":6}}\n\n'
    b'event: message_stop\n'
    b'data: {"type":"message_stop"}\n\n'
)

OLLAMA_NDJSON_BODY = (
    b'{"model":"llama3","message":{"role":"assistant","content":"Why"},"done":false}\n'
    b'{"model":"llama3","message":{"role":"assistant","content":" \xe6\x97\xa5\xe6\x9c\xac"},"done":false}\n'
    b'{"model":"llama3","message":{"role":"assistant","content":""},"done":true,"done_reason":"stop","prompt_eval_count":7,"eval_count":2}\n'
)


@pytest.fixture
def openai_sse_body() -> bytes:
    """OpenAI chat.completion.chunk stream with a usage chunk and [DONE]."""
    return OPENAI_SSE_BODY


@pytest.fixture
def anthropic_sse_body() -> bytes:
    """Anthropic Messages stream with named events and a ping."""
    return ANTHROPIC_SSE_BODY


@pytest.fixture
def ollama_ndjson_body() -> bytes:
    """Ollama /api/chat NDJSON stream."""
    return OLLAMA_NDJSON_BODY


# ============================================================
# Chunk Splitting
# ============================================================

def split_every(data: bytes, size: int) -> List[bytes]:
    """Split a body into fixed-size chunks."""
    return [data[i:i + size] for i in range(0, len(data), size)]


def split_inside_multibyte(data: bytes) -> List[bytes]:
    """Split a body in the middle of every multi-byte UTF-8 character."""
    chunks: List[bytes] = []
    start = 0
    for i, byte in enumerate(data):
        # Continuation bytes are 0b10xxxxxx
        if byte & 0xC0 == 0x80 and i > start:
            chunks.append(data[start:i])
            start = i
    chunks.append(data[start:])
    return chunks


CHUNKINGS = {
    "single": lambda data: [data],
    "one_byte": lambda data: split_every(data, 1),
    "seven_bytes": lambda data: split_every(data, 7),
    "mid_multibyte": split_inside_multibyte,
}


async def async_chunks(chunks: Iterable[bytes], delay: float = 0) -> AsyncIterator[bytes]:
    """Async byte source that yields control between chunks."""
    for chunk in chunks:
        await asyncio.sleep(delay)
        yield chunk


@pytest.fixture(params=sorted(CHUNKINGS))
def chunking(request) -> Callable[[bytes], List[bytes]]:
    """Each way of splitting a body into chunks, in turn."""
    return CHUNKINGS[request.param]


@pytest.fixture
def make_source() -> Callable[..., AsyncIterator[bytes]]:
    """Factory for async byte sources."""
    return async_chunks


# ============================================================
# Pipeline Fixtures
# ============================================================

@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on a private registry."""
    return MetricsCollector(CollectorRegistry())


@pytest.fixture
def settings() -> StreamSettings:
    """Default stream settings, independent of the environment."""
    return StreamSettings()


# ============================================================
# Logging Configuration
# ============================================================

@pytest.fixture(autouse=True)
def configure_test_logging():
    """Configure logging for tests."""
    logging.basicConfig(
        level=logging.DEBUG,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    yield


# ============================================================
# Skip Helpers
# ============================================================

requires_integration = pytest.mark.skipif(
    not RUN_INTEGRATION,
    reason="Requires RUN_INTEGRATION=1"
)

skip_if_no_openai = pytest.mark.skipif(
    not os.getenv("OPENAI_API_KEY"),
    reason="Requires OPENAI_API_KEY"
)

skip_if_no_anthropic = pytest.mark.skipif(
    not os.getenv("ANTHROPIC_API_KEY"),
    reason="Requires ANTHROPIC_API_KEY"
)

skip_if_no_ollama = pytest.mark.skipif(
    not os.getenv("OLLAMA_HOST"),
    reason="Requires OLLAMA_HOST"
)
