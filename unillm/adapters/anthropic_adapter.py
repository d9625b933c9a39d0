"""
unillm - Anthropic Provider Adapter

Adapter for Anthropic's Messages API.
Streams typed Server-Sent Events terminated by the message_stop event.
"""

import json
from typing import Any, Dict, List, Optional

from .base import BaseAdapter, ProviderHealth
from ..core.models import (
    ChatRequest,
    ChatResponse,
    Message,
    Provider,
    Role,
    Tool,
    ToolCall,
    Usage,
)


class AnthropicAdapter(BaseAdapter):
    """
    Adapter for Anthropic Claude API.

    Supports:
    - Streaming and non-streaming messages
    - Tool use
    - System prompts (sent as a top-level field, not a message)

    Text completion and embeddings are not offered by the Messages API.
    """

    provider = Provider.ANTHROPIC
    DEFAULT_BASE_URL = "https://api.anthropic.com"
    STREAM_PATH = "/v1/messages"
    API_VERSION = "2023-06-01"

    # Anthropic requires max_tokens
    DEFAULT_MAX_TOKENS = 4096

    def _default_headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": self.API_VERSION,
            "Content-Type": "application/json",
        }

    def _build_stream_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Build Anthropic-specific chat payload."""
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": self._convert_messages(request.conversation),
            "max_tokens": request.max_tokens or self.DEFAULT_MAX_TOKENS,
            "stream": True,
        }

        system_prompt = request.system_prompt
        if system_prompt:
            payload["system"] = system_prompt

        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.stop:
            payload["stop_sequences"] = request.stop
        if request.tools:
            payload["tools"] = self._normalize_tools(request.tools)

        return payload

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        """Convert unified messages to Anthropic format."""
        result = []

        for msg in messages:
            if msg.role == Role.TOOL:
                # Tool results go back as user turns with a tool_result block
                result.append({
                    "role": "user",
                    "content": [{
                        "type": "tool_result",
                        "tool_use_id": msg.tool_call_id,
                        "content": msg.content
                    }]
                })
                continue

            result.append({"role": msg.role.value, "content": msg.content})

        return result

    def _normalize_tools(self, tools: Optional[List[Tool]]) -> Optional[List[Dict[str, Any]]]:
        """Convert tools to Anthropic format."""
        if not tools:
            return None
        return [
            {
                "name": tool.function.name,
                "description": tool.function.description,
                "input_schema": tool.function.parameters or {"type": "object", "properties": {}}
            }
            for tool in tools
        ]

    def _parse_chat_response(
        self,
        data: Dict[str, Any],
        model: str,
        latency_ms: int
    ) -> ChatResponse:
        """Parse Anthropic response to unified format."""
        text_parts = []
        tool_calls = []

        for block in data["content"]:
            if block["type"] == "text":
                text_parts.append(block["text"])
            elif block["type"] == "tool_use":
                tool_calls.append(ToolCall(
                    id=block["id"],
                    name=block["name"],
                    arguments=json.dumps(block.get("input") or {})
                ))

        usage = data.get("usage") or {}
        raw_finish = data.get("stop_reason")

        return ChatResponse(
            id=data.get("id", ""),
            model=data.get("model") or model,
            content="".join(text_parts),
            tool_calls=tool_calls,
            finish_reason=self._finish_reason(raw_finish),
            raw_finish_reason=raw_finish,
            usage=Usage(
                prompt_tokens=usage.get("input_tokens") or 0,
                completion_tokens=usage.get("output_tokens") or 0
            ),
            latency_ms=latency_ms
        )

    async def health_check(self) -> ProviderHealth:
        """Check Anthropic API health."""
        return await self._check_endpoint("/v1/models")
