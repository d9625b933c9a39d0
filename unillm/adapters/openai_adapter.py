"""
unillm - OpenAI Provider Adapter

Adapter for OpenAI's Chat Completions API and compatible servers.
Streams Server-Sent Events terminated by "data: [DONE]".
"""

import time
from typing import Any, Dict, List, Optional

from .base import BaseAdapter, ProviderHealth, RESPONSE_SHAPE_ERRORS
from ..core.models import (
    ChatRequest,
    ChatResponse,
    CompletionRequest,
    CompletionResponse,
    Embedding,
    Provider,
    ToolCall,
    Usage,
    message_to_dict,
)


def _usage(data: Dict[str, Any]) -> Usage:
    usage = data.get("usage") or {}
    return Usage(
        prompt_tokens=usage.get("prompt_tokens") or 0,
        completion_tokens=usage.get("completion_tokens") or 0
    )


class OpenAIAdapter(BaseAdapter):
    """
    Adapter for OpenAI API.

    Supports:
    - Streaming and non-streaming chat completions
    - Tool/Function calling
    - Usage reporting via stream_options.include_usage
    - Legacy text completions
    - Embeddings
    """

    provider = Provider.OPENAI
    DEFAULT_BASE_URL = "https://api.openai.com/v1"
    STREAM_PATH = "/chat/completions"
    COMPLETIONS_PATH = "/completions"
    EMBEDDINGS_PATH = "/embeddings"
    DEFAULT_EMBEDDING_MODEL = "text-embedding-ada-002"

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }

    def _build_stream_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Build OpenAI-specific chat payload."""
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": [message_to_dict(msg) for msg in request.messages],
            "stream": True,
            # Final chunk carries token usage
            "stream_options": {"include_usage": True},
        }

        self._add_sampling(payload, request.temperature, request.max_tokens, request.top_p, request.stop)
        if request.tools:
            payload["tools"] = self._normalize_tools(request.tools)

        return payload

    @staticmethod
    def _add_sampling(
        payload: Dict[str, Any],
        temperature: Optional[float],
        max_tokens: Optional[int],
        top_p: Optional[float],
        stop: Optional[List[str]]
    ):
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if top_p is not None:
            payload["top_p"] = top_p
        if stop:
            payload["stop"] = stop

    def _parse_chat_response(
        self,
        data: Dict[str, Any],
        model: str,
        latency_ms: int
    ) -> ChatResponse:
        """Parse OpenAI response to unified format."""
        choice = data["choices"][0]
        message = choice["message"]
        raw_finish = choice.get("finish_reason")

        tool_calls = [
            ToolCall(
                id=tc.get("id"),
                name=tc["function"]["name"],
                arguments=tc["function"].get("arguments") or ""
            )
            for tc in message.get("tool_calls") or []
        ]

        return ChatResponse(
            id=data.get("id", ""),
            model=data.get("model") or model,
            content=message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=self._finish_reason(raw_finish),
            raw_finish_reason=raw_finish,
            usage=_usage(data),
            latency_ms=latency_ms
        )

    async def complete(
        self,
        request: CompletionRequest,
        request_id: str = ""
    ) -> CompletionResponse:
        """Complete a prompt with the legacy /completions endpoint."""
        payload: Dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt,
            "stream": False,
        }
        self._add_sampling(payload, request.temperature, request.max_tokens, request.top_p, request.stop)

        start_time = time.monotonic()
        data = await self._post_json(self.COMPLETIONS_PATH, payload, request.model, request_id, "complete")
        latency_ms = int((time.monotonic() - start_time) * 1000)

        try:
            choice = data["choices"][0]
            raw_finish = choice.get("finish_reason")
            return CompletionResponse(
                id=data.get("id", ""),
                model=data.get("model") or request.model,
                text=choice.get("text") or "",
                finish_reason=self._finish_reason(raw_finish),
                raw_finish_reason=raw_finish,
                usage=_usage(data),
                latency_ms=latency_ms
            )
        except RESPONSE_SHAPE_ERRORS as e:
            raise self._malformed_reply(request_id, e)

    async def embed(
        self,
        texts: List[str],
        model: Optional[str] = None,
        request_id: str = ""
    ) -> List[Embedding]:
        """Create embeddings using OpenAI."""
        if not texts:
            return []

        model = model or self.DEFAULT_EMBEDDING_MODEL
        payload: Dict[str, Any] = {
            "model": model,
            "input": texts[0] if len(texts) == 1 else texts,
            "encoding_format": "float",
        }

        data = await self._post_json(self.EMBEDDINGS_PATH, payload, model, request_id, "embed")

        try:
            embeddings = [
                Embedding(embedding=item["embedding"], index=item["index"])
                for item in data["data"]
            ]
        except RESPONSE_SHAPE_ERRORS as e:
            raise self._malformed_reply(request_id, e)
        return sorted(embeddings, key=lambda e: e.index)

    async def health_check(self) -> ProviderHealth:
        """Check OpenAI API health."""
        return await self._check_endpoint("/models")
