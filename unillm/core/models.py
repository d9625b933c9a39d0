"""
unillm - Core Data Models

Unified request and response models shared by every provider adapter.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


# ============================================================
# Enums
# ============================================================

class Provider(str, Enum):
    """Supported text-generation providers."""
    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    OLLAMA = "ollama"


class Role(str, Enum):
    """Message roles."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


# ============================================================
# Tool Calling
# ============================================================

@dataclass
class FunctionDefinition:
    """Function definition for tool calling."""
    name: str
    description: str = ""
    parameters: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Tool:
    """Tool definition."""
    type: str = "function"
    function: FunctionDefinition = field(default_factory=lambda: FunctionDefinition(""))


# ============================================================
# Messages
# ============================================================

@dataclass
class Message:
    """Unified text message."""
    role: Role
    content: str = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        """Create an assistant message."""
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> Message:
        """Create a tool result message."""
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)


# ============================================================
# Request Models
# ============================================================

@dataclass
class ChatRequest:
    """
    Unified streaming chat request.

    Example:
        request = ChatRequest(
            model="gpt-4o-mini",
            messages=[
                Message.system("You are helpful."),
                Message.user("Hello!")
            ],
            temperature=0.7
        )
    """
    model: str
    messages: List[Message]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None
    tools: Optional[List[Tool]] = None

    @property
    def system_prompt(self) -> Optional[str]:
        """Concatenated system messages, for providers that take them separately."""
        parts = [m.content for m in self.messages if m.role == Role.SYSTEM and m.content]
        return "\n\n".join(parts) if parts else None

    @property
    def conversation(self) -> List[Message]:
        """Messages without the system prompt."""
        return [m for m in self.messages if m.role != Role.SYSTEM]


@dataclass
class CompletionRequest:
    """Unified text completion request: a bare prompt instead of messages."""
    model: str
    prompt: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    top_p: Optional[float] = None
    stop: Optional[List[str]] = None


# ============================================================
# Response Models
# ============================================================

@dataclass
class Usage:
    """Token usage statistics."""
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


@dataclass
class ToolCall:
    """A complete tool call; arguments is the JSON text the model produced."""
    id: Optional[str]
    name: str
    arguments: str = ""


@dataclass
class ChatResponse:
    """
    Unified non-streaming chat response.

    finish_reason is the provider-agnostic code ("stop", "length",
    "tool_calls", ...); raw_finish_reason keeps the provider's own string.
    """
    model: str
    content: str = ""
    id: str = ""
    tool_calls: List[ToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None
    raw_finish_reason: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    latency_ms: int = 0


@dataclass
class CompletionResponse:
    """Unified text completion response."""
    model: str
    text: str = ""
    id: str = ""
    finish_reason: Optional[str] = None
    raw_finish_reason: Optional[str] = None
    usage: Usage = field(default_factory=Usage)
    latency_ms: int = 0


@dataclass
class Embedding:
    """One embedding vector; index is the position of its input text."""
    embedding: List[float]
    index: int


# ============================================================
# Serialization Helpers
# ============================================================

def message_to_dict(msg: Message) -> Dict[str, Any]:
    """Convert Message to the OpenAI-style dictionary most providers accept."""
    result: Dict[str, Any] = {"role": msg.role.value, "content": msg.content}

    if msg.name:
        result["name"] = msg.name
    if msg.tool_call_id:
        result["tool_call_id"] = msg.tool_call_id

    return result


def tool_to_dict(tool: Tool) -> Dict[str, Any]:
    """Convert Tool to the OpenAI-style function tool dictionary."""
    return {
        "type": tool.type,
        "function": {
            "name": tool.function.name,
            "description": tool.function.description,
            "parameters": tool.function.parameters
        }
    }
