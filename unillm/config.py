"""
unillm - Configuration

Environment-driven settings for the streaming pipeline and provider adapters.

Environment variables:
- UNILLM_CHANNEL_CAPACITY: delivery channel slots per stream (default 100)
- UNILLM_MAX_LINE_BYTES: longest unterminated line tolerated (default 1 MiB)
- UNILLM_HTTP_TIMEOUT: read timeout in seconds for provider calls (default 120)
- OPENAI_API_KEY / OPENAI_BASE_URL
- ANTHROPIC_API_KEY / ANTHROPIC_BASE_URL
- OLLAMA_HOST (Ollama is enabled only when this is set)
"""

import os
from dataclasses import dataclass
from typing import Dict, Optional

from .core.models import Provider


DEFAULT_CHANNEL_CAPACITY = 100
DEFAULT_MAX_LINE_BYTES = 1024 * 1024
DEFAULT_HTTP_TIMEOUT = 120.0


def _int_from_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def _float_from_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


@dataclass(frozen=True)
class StreamSettings:
    """Limits applied to every stream task."""
    channel_capacity: int = DEFAULT_CHANNEL_CAPACITY
    max_line_bytes: int = DEFAULT_MAX_LINE_BYTES

    def __post_init__(self):
        if self.channel_capacity <= 0:
            raise ValueError("channel_capacity must be positive")
        if self.max_line_bytes <= 0:
            raise ValueError("max_line_bytes must be positive")

    @classmethod
    def from_env(cls) -> "StreamSettings":
        return cls(
            channel_capacity=_int_from_env("UNILLM_CHANNEL_CAPACITY", DEFAULT_CHANNEL_CAPACITY),
            max_line_bytes=_int_from_env("UNILLM_MAX_LINE_BYTES", DEFAULT_MAX_LINE_BYTES),
        )


@dataclass
class AdapterConfig:
    """Configuration for a provider adapter."""
    api_key: str
    base_url: Optional[str] = None
    timeout: float = DEFAULT_HTTP_TIMEOUT
    connect_timeout: float = 10.0


def get_http_timeout() -> float:
    """Read timeout for provider calls, in seconds."""
    return _float_from_env("UNILLM_HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT)


def load_adapter_configs() -> Dict[Provider, AdapterConfig]:
    """
    Build adapter configs for every provider with credentials in the environment.

    OpenAI and Anthropic need an API key; Ollama needs OLLAMA_HOST.
    """
    timeout = get_http_timeout()
    configs: Dict[Provider, AdapterConfig] = {}

    openai_key = os.getenv("OPENAI_API_KEY")
    if openai_key:
        configs[Provider.OPENAI] = AdapterConfig(
            api_key=openai_key,
            base_url=os.getenv("OPENAI_BASE_URL") or None,
            timeout=timeout,
        )

    anthropic_key = os.getenv("ANTHROPIC_API_KEY")
    if anthropic_key:
        configs[Provider.ANTHROPIC] = AdapterConfig(
            api_key=anthropic_key,
            base_url=os.getenv("ANTHROPIC_BASE_URL") or None,
            timeout=timeout,
        )

    ollama_host: Optional[str] = os.getenv("OLLAMA_HOST")
    if ollama_host:
        configs[Provider.OLLAMA] = AdapterConfig(
            api_key="",
            base_url=ollama_host,
            timeout=timeout,
        )

    return configs
