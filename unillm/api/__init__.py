"""
unillm - API Layer

HTTP surface for the streaming pipeline.

Provides:
- POST /v1/chat/stream: provider stream relayed as normalized SSE events
"""

from .models import (
    StreamChatRequest,
    MessageInput,
    RoleEnum,
    ProviderEnum,
    ToolDefinition,
    FunctionDefinition,
)
from .dependencies import (
    get_adapters,
    get_request_id,
)
from .routes import chat_router


__all__ = [
    "chat_router",
    "StreamChatRequest",
    "MessageInput",
    "RoleEnum",
    "ProviderEnum",
    "ToolDefinition",
    "FunctionDefinition",
    "get_adapters",
    "get_request_id",
]
