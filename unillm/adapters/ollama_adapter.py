"""
unillm - Ollama Provider Adapter

Adapter for a local or remote Ollama server.
Streams newline-delimited JSON; the last object carries "done": true.
"""

import json
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


def _options(
    temperature: Optional[float],
    max_tokens: Optional[int],
    top_p: Optional[float],
    stop: Optional[List[str]]
) -> Dict[str, Any]:
    """Sampling parameters in Ollama's "options" object."""
    options: Dict[str, Any] = {}
    if temperature is not None:
        options["temperature"] = temperature
    if top_p is not None:
        options["top_p"] = top_p
    if max_tokens is not None:
        options["num_predict"] = max_tokens
    if stop:
        options["stop"] = stop
    return options


def _usage(data: Dict[str, Any]) -> Usage:
    return Usage(
        prompt_tokens=data.get("prompt_eval_count") or 0,
        completion_tokens=data.get("eval_count") or 0
    )


class OllamaAdapter(BaseAdapter):
    """
    Adapter for Ollama /api/chat.

    Sampling parameters go in the "options" object; max_tokens maps to
    num_predict. An API key, if configured, is sent as a bearer token for
    servers behind an authenticating proxy.

    Text completion uses /api/generate. Embeddings use /api/embeddings,
    which takes one text per request.
    """

    provider = Provider.OLLAMA
    DEFAULT_BASE_URL = "http://localhost:11434"
    STREAM_PATH = "/api/chat"
    GENERATE_PATH = "/api/generate"
    EMBEDDINGS_PATH = "/api/embeddings"
    DEFAULT_EMBEDDING_MODEL = "nomic-embed-text"

    def _default_headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _build_stream_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Build Ollama-specific chat payload."""
        payload: Dict[str, Any] = {
            "model": request.model,
            "messages": [message_to_dict(msg) for msg in request.messages],
            "stream": True,
        }

        options = _options(request.temperature, request.max_tokens, request.top_p, request.stop)
        if options:
            payload["options"] = options

        if request.tools:
            payload["tools"] = self._normalize_tools(request.tools)

        return payload

    def _parse_chat_response(
        self,
        data: Dict[str, Any],
        model: str,
        latency_ms: int
    ) -> ChatResponse:
        """Parse Ollama response to unified format."""
        message = data["message"]
        raw_finish = data.get("done_reason")

        tool_calls = []
        for tc in message.get("tool_calls") or []:
            function = tc["function"]
            arguments = function.get("arguments")
            if not isinstance(arguments, str):
                arguments = json.dumps(arguments or {})
            tool_calls.append(ToolCall(id=tc.get("id"), name=function["name"], arguments=arguments))

        return ChatResponse(
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
        """Complete a prompt with /api/generate."""
        payload: Dict[str, Any] = {
            "model": request.model,
            "prompt": request.prompt,
            "stream": False,
        }
        options = _options(request.temperature, request.max_tokens, request.top_p, request.stop)
        if options:
            payload["options"] = options

        start_time = time.monotonic()
        data = await self._post_json(self.GENERATE_PATH, payload, request.model, request_id, "complete")
        latency_ms = int((time.monotonic() - start_time) * 1000)

        raw_finish = data.get("done_reason")
        return CompletionResponse(
            model=data.get("model") or request.model,
            text=data.get("response") or "",
            finish_reason=self._finish_reason(raw_finish),
            raw_finish_reason=raw_finish,
            usage=_usage(data),
            latency_ms=latency_ms
        )

    async def embed(
        self,
        texts: List[str],
        model: Optional[str] = None,
        request_id: str = ""
    ) -> List[Embedding]:
        """Create embeddings, one request per text."""
        model = model or self.DEFAULT_EMBEDDING_MODEL
        embeddings = []

        for index, text in enumerate(texts):
            data = await self._post_json(
                self.EMBEDDINGS_PATH,
                {"model": model, "prompt": text},
                model,
                request_id,
                "embed"
            )
            try:
                embeddings.append(Embedding(embedding=data["embedding"], index=index))
            except RESPONSE_SHAPE_ERRORS as e:
                raise self._malformed_reply(request_id, e)

        return embeddings

    async def health_check(self) -> ProviderHealth:
        """Check Ollama server health."""
        return await self._check_endpoint("/api/tags")
