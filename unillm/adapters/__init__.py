"""
unillm Provider Adapters

Each adapter opens a provider's streaming endpoint and returns a StreamHandle.
"""

from typing import Dict, Optional, Type

from ..config import AdapterConfig, StreamSettings
from ..core.models import Provider
from .base import BaseAdapter, ProviderHealth
from .openai_adapter import OpenAIAdapter
from .anthropic_adapter import AnthropicAdapter
from .ollama_adapter import OllamaAdapter


ADAPTER_CLASSES: Dict[Provider, Type[BaseAdapter]] = {
    Provider.OPENAI: OpenAIAdapter,
    Provider.ANTHROPIC: AnthropicAdapter,
    Provider.OLLAMA: OllamaAdapter,
}


def create_adapters(
    configs: Dict[Provider, AdapterConfig],
    settings: Optional[StreamSettings] = None
) -> Dict[Provider, BaseAdapter]:
    """Instantiate an adapter for every configured provider."""
    return {
        provider: ADAPTER_CLASSES[provider](config, settings)
        for provider, config in configs.items()
    }


__all__ = [
    "AdapterConfig",
    "BaseAdapter",
    "ProviderHealth",
    "OpenAIAdapter",
    "AnthropicAdapter",
    "OllamaAdapter",
    "ADAPTER_CLASSES",
    "create_adapters",
]
