"""
unillm - API Request Models

Pydantic models for validating requests to the streaming HTTP surface.
"""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, model_validator

from ..core.models import (
    ChatRequest,
    FunctionDefinition as InternalFunctionDefinition,
    Message,
    Provider,
    Role,
    Tool,
)


class RoleEnum(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ProviderEnum(str, Enum):
    """Providers a client may target."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


# ============================================================
# Tool Definitions
# ============================================================

class FunctionDefinition(BaseModel):
    """Function definition for tool calling."""
    name: str = Field(..., min_length=1, max_length=64, pattern=r"^[a-zA-Z0-9_-]+$")
    description: str = Field(default="", max_length=1024)
    parameters: Dict[str, Any] = Field(default_factory=dict)


class ToolDefinition(BaseModel):
    """Tool definition."""
    type: Literal["function"] = "function"
    function: FunctionDefinition


# ============================================================
# Messages
# ============================================================

class MessageInput(BaseModel):
    """Input message."""
    role: RoleEnum
    content: str = ""
    name: Optional[str] = Field(default=None, max_length=64)
    tool_call_id: Optional[str] = None

    @model_validator(mode="after")
    def validate_tool_message(self):
        """Tool messages must reference the call they answer."""
        if self.role == RoleEnum.TOOL and not self.tool_call_id:
            raise ValueError("tool messages require tool_call_id")
        return self


# ============================================================
# Requests
# ============================================================

class StreamChatRequest(BaseModel):
    """
    Body of POST /v1/chat/stream.

    Example:
        {"provider": "openai", "model": "gpt-4o-mini",
         "messages": [{"role": "user", "content": "Hello"}]}
    """
    provider: ProviderEnum
    model: str = Field(..., min_length=1)
    messages: List[MessageInput] = Field(..., min_length=1)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, gt=0)
    top_p: Optional[float] = Field(default=None, ge=0, le=1)
    stop: Optional[List[str]] = Field(default=None, max_length=4)
    tools: Optional[List[ToolDefinition]] = None

    def to_internal(self) -> ChatRequest:
        """Convert to the unified ChatRequest used by adapters."""
        return ChatRequest(
            model=self.model,
            messages=[
                Message(
                    role=Role(m.role.value),
                    content=m.content,
                    name=m.name,
                    tool_call_id=m.tool_call_id
                )
                for m in self.messages
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=self.top_p,
            stop=self.stop,
            tools=[
                Tool(function=InternalFunctionDefinition(
                    name=t.function.name,
                    description=t.function.description,
                    parameters=t.function.parameters
                ))
                for t in self.tools
            ] if self.tools else None
        )

    @property
    def provider_id(self) -> Provider:
        return Provider(self.provider.value)
