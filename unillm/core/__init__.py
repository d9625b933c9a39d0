"""
unillm Core Module

Contains the unified request and response models and the canonical error taxonomy.
"""

from .models import (
    # Enums
    Provider,
    Role,

    # Messages
    Message,

    # Tool calling
    Tool,
    FunctionDefinition,

    # Requests
    ChatRequest,
    CompletionRequest,

    # Responses
    Usage,
    ToolCall,
    ChatResponse,
    CompletionResponse,
    Embedding,

    # Serialization
    message_to_dict,
    tool_to_dict,
)

from .errors import (
    ErrorType,
    ErrorDetails,
    UnillmException,
    InfraError,
    SemanticError,
    ConnectionTimeoutError,
    ReadTimeoutError,
    UpstreamError,
    RateLimitedError,
    InvalidRequestError,
    ModelNotFoundError,
    ProviderNotConfiguredError,
    StreamingError,
    BufferOverflowError,
    StreamFailedError,
    handle_provider_error,
)

__all__ = [
    "Provider",
    "Role",
    "Message",
    "Tool",
    "FunctionDefinition",
    "ChatRequest",
    "CompletionRequest",
    "Usage",
    "ToolCall",
    "ChatResponse",
    "CompletionResponse",
    "Embedding",
    "message_to_dict",
    "tool_to_dict",
    "ErrorType",
    "ErrorDetails",
    "UnillmException",
    "InfraError",
    "SemanticError",
    "ConnectionTimeoutError",
    "ReadTimeoutError",
    "UpstreamError",
    "RateLimitedError",
    "InvalidRequestError",
    "ModelNotFoundError",
    "ProviderNotConfiguredError",
    "StreamingError",
    "BufferOverflowError",
    "StreamFailedError",
    "handle_provider_error",
]
