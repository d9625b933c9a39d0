"""
unillm - Provider Adapter Base

Abstract base class for provider adapters.
Each provider (OpenAI, Anthropic, Ollama) implements this interface.

The adapter is responsible for:
1. Converting the unified ChatRequest into the provider's request body
2. Opening the streaming HTTP call
3. Raising canonical exceptions for failures before the body starts
4. Handing the body to the streaming pipeline, which owns it from then on

Non-streaming chat, text completion and embeddings share one JSON POST path
and raise the same canonical exceptions.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..config import AdapterConfig, StreamSettings
from ..core.errors import (
    ErrorDetails,
    ErrorType,
    SemanticError,
    UpstreamError,
    handle_provider_error,
)
from ..core.models import (
    ChatRequest,
    ChatResponse,
    CompletionRequest,
    CompletionResponse,
    Embedding,
    Provider,
    Tool,
    tool_to_dict,
)
from ..observability.logging import TimedOperation, get_logger
from ..observability.tracing import trace_provider_call
from ..streaming.normalizer import map_finish_reason
from ..streaming.pipeline import open_stream
from ..streaming.task import StreamHandle


logger = get_logger(__name__)

# Shapes a malformed reply body can trip over while being parsed
RESPONSE_SHAPE_ERRORS = (KeyError, IndexError, TypeError, AttributeError, ValueError)


@dataclass
class ProviderHealth:
    """Health status of a provider."""
    provider: Provider
    is_healthy: bool
    latency_ms: Optional[int] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider.value,
            "healthy": self.is_healthy,
            "latency_ms": self.latency_ms,
            "last_error": self.last_error,
        }


async def _response_body(response: httpx.Response) -> AsyncIterator[bytes]:
    """Yield body chunks and always release the connection afterwards."""
    try:
        async for chunk in response.aiter_bytes():
            yield chunk
    finally:
        await response.aclose()


class BaseAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Each provider adapter must implement:
    - _build_stream_payload: Provider request body for a ChatRequest
    - _parse_chat_response: Unified response from a non-streaming reply
    - _default_headers: Auth and content headers
    - health_check: Check provider health

    complete() and embed() are optional; providers without them raise
    SemanticError with code "unsupported_operation".

    Usage:
        adapter = OpenAIAdapter(AdapterConfig(api_key="sk-..."))
        async with await adapter.chat_stream(request) as stream:
            async for event in stream:
                ...
    """

    provider: Provider
    DEFAULT_BASE_URL: str
    STREAM_PATH: str

    def __init__(
        self,
        config: AdapterConfig,
        settings: Optional[StreamSettings] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        self.config = config
        self.settings = settings or StreamSettings.from_env()
        self.base_url = (config.base_url or self.DEFAULT_BASE_URL).rstrip("/")
        self.client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._default_headers(),
            timeout=httpx.Timeout(config.timeout, connect=config.connect_timeout)
        )

    @abstractmethod
    def _default_headers(self) -> Dict[str, str]:
        """Headers sent with every request."""
        pass

    @abstractmethod
    def _build_stream_payload(self, request: ChatRequest) -> Dict[str, Any]:
        """Build the provider-specific streaming request body."""
        pass

    @abstractmethod
    def _parse_chat_response(
        self,
        data: Dict[str, Any],
        model: str,
        latency_ms: int
    ) -> ChatResponse:
        """Convert a non-streaming chat reply to the unified response."""
        pass

    @abstractmethod
    async def health_check(self) -> ProviderHealth:
        """
        Check the health of this provider.

        Never raises; failures are reported in the result.
        """
        pass

    async def chat_stream(
        self,
        request: ChatRequest,
        request_id: str = ""
    ) -> StreamHandle:
        """
        Start a streaming chat completion.

        Errors before the body starts (connection failure, timeout, HTTP
        status >= 400) are raised as UnillmException so the caller can retry
        or report them. Once the handle is returned, failures arrive as a
        terminal StreamError event instead.

        Args:
            request: Unified chat request
            request_id: Request ID for error tracking

        Returns:
            Handle yielding NormalizedEvent values
        """
        payload = self._build_stream_payload(request)
        http_request = self.client.build_request("POST", self.STREAM_PATH, json=payload)

        with trace_provider_call(self.provider.value, request.model) as span:
            try:
                async with TimedOperation(
                    f"{self.provider.value}.connect",
                    logger,
                    extra={"model": request.model, "request_id": request_id},
                ):
                    response = await self.client.send(http_request, stream=True)
            except httpx.HTTPError as e:
                raise handle_provider_error(self.provider.value, e, request_id, request.model)

            span.set_attribute("http.status_code", response.status_code)

            if response.status_code >= 400:
                await response.aread()
                await response.aclose()
                logger.warning(
                    "Provider rejected stream request",
                    status_code=response.status_code,
                    model=request.model,
                    request_id=request_id,
                )
                error = httpx.HTTPStatusError(
                    f"{self.provider.value} returned HTTP {response.status_code}",
                    request=http_request,
                    response=response
                )
                raise handle_provider_error(self.provider.value, error, request_id, request.model)

        return open_stream(
            _response_body(response),
            self.provider,
            model=request.model,
            request_id=request_id,
            settings=self.settings,
        )

    async def chat(
        self,
        request: ChatRequest,
        request_id: str = ""
    ) -> ChatResponse:
        """
        Generate a complete chat response in one call.

        Raises:
            UnillmException: transport failure, HTTP status >= 400, or a
                reply body that cannot be read
        """
        payload = self._build_stream_payload(request)
        payload["stream"] = False
        payload.pop("stream_options", None)

        start_time = time.monotonic()
        data = await self._post_json(self.STREAM_PATH, payload, request.model, request_id, "chat")
        latency_ms = int((time.monotonic() - start_time) * 1000)

        try:
            return self._parse_chat_response(data, request.model, latency_ms)
        except RESPONSE_SHAPE_ERRORS as e:
            raise self._malformed_reply(request_id, e)

    async def complete(
        self,
        request: CompletionRequest,
        request_id: str = ""
    ) -> CompletionResponse:
        """Complete a bare text prompt."""
        raise self._unsupported("text completion", request_id)

    async def embed(
        self,
        texts: List[str],
        model: Optional[str] = None,
        request_id: str = ""
    ) -> List[Embedding]:
        """Create one embedding per input text, in input order."""
        raise self._unsupported("embeddings", request_id)

    async def _post_json(
        self,
        path: str,
        payload: Dict[str, Any],
        model: str,
        request_id: str,
        operation: str
    ) -> Dict[str, Any]:
        """POST a JSON body and return the decoded JSON object reply."""
        with trace_provider_call(self.provider.value, model, operation) as span:
            try:
                async with TimedOperation(
                    f"{self.provider.value}.{operation}",
                    logger,
                    extra={"model": model, "request_id": request_id},
                ):
                    response = await self.client.post(path, json=payload)
                span.set_attribute("http.status_code", response.status_code)
                response.raise_for_status()
            except httpx.HTTPError as e:
                raise handle_provider_error(self.provider.value, e, request_id, model)

        try:
            data = response.json()
        except ValueError as e:
            raise self._malformed_reply(request_id, e)
        if not isinstance(data, dict):
            raise self._malformed_reply(request_id, TypeError(type(data).__name__))
        return data

    def _finish_reason(self, raw: Optional[str]) -> Optional[str]:
        """Map a provider finish string to the unified code value."""
        if not raw:
            return None
        return map_finish_reason(self.provider.value, raw).value

    def _malformed_reply(self, request_id: str, error: Exception) -> UpstreamError:
        logger.warning(
            "Provider reply could not be parsed",
            error_type=type(error).__name__,
            request_id=request_id,
        )
        return UpstreamError(
            self.provider.value,
            502,
            f"{self.provider.value} returned an unreadable response",
            request_id
        )

    def _unsupported(self, operation: str, request_id: str) -> SemanticError:
        return SemanticError(
            ErrorDetails(
                code="unsupported_operation",
                message=f"{self.provider.value} does not support {operation}.",
                type=ErrorType.SEMANTIC,
                provider=self.provider.value,
                request_id=request_id,
                retryable=False
            ),
            status_code=400
        )

    async def _check_endpoint(self, path: str) -> ProviderHealth:
        """GET a cheap endpoint and report the outcome."""
        start = time.monotonic()
        try:
            response = await self.client.get(path)
        except httpx.HTTPError as e:
            return ProviderHealth(
                provider=self.provider,
                is_healthy=False,
                last_error=str(e) or type(e).__name__
            )

        latency = int((time.monotonic() - start) * 1000)
        healthy = response.status_code == 200
        return ProviderHealth(
            provider=self.provider,
            is_healthy=healthy,
            latency_ms=latency,
            last_error=None if healthy else f"HTTP {response.status_code}"
        )

    def _normalize_tools(self, tools: Optional[List[Tool]]) -> Optional[List[Dict[str, Any]]]:
        """
        Convert unified tools to provider-specific format.
        Override in subclass if needed.
        """
        if not tools:
            return None
        return [tool_to_dict(tool) for tool in tools]

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
