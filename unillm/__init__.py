"""
unillm - Unified LLM Streaming

Incremental streaming of chat completions from multiple providers (OpenAI,
Anthropic, Ollama) through a single, provider-agnostic event model.
"""

__version__ = "0.1.0"
