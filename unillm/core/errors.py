"""
unillm - Error Definitions

Canonical error taxonomy with infra vs semantic classification.

Two families live here:
- Request errors (UnillmException subclasses): raised BEFORE a stream body
  starts, so the caller can still retry or fall back.
- Pipeline errors (StreamingError subclasses): internal faults of the
  streaming pipeline. These never reach a consumer as exceptions; the stream
  task converts them into a terminal StreamError event.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorType(str, Enum):
    """Error classification."""
    INFRA = "infra_error"
    SEMANTIC = "semantic_error"


@dataclass
class ErrorDetails:
    """Full error information for API responses and logs."""
    code: str
    message: str
    type: ErrorType

    provider: Optional[str] = None
    param: Optional[str] = None

    request_id: str = ""
    provider_request_id: Optional[str] = None

    retryable: bool = False
    retry_after: Optional[int] = None

    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "code": self.code,
            "message": self.message,
            "type": self.type.value,
            "request_id": self.request_id,
            "retryable": self.retryable,
        }

        if self.provider:
            result["provider"] = self.provider
        if self.param:
            result["param"] = self.param
        if self.provider_request_id:
            result["provider_request_id"] = self.provider_request_id
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        if self.details:
            result["details"] = self.details

        return {"error": result}


class UnillmException(Exception):
    """Base exception for all unillm request errors."""

    def __init__(self, error: ErrorDetails, status_code: int = 500):
        self.error = error
        self.status_code = status_code
        super().__init__(error.message)


# ============================================================
# Infra Errors (Retryable)
# ============================================================

class InfraError(UnillmException):
    """Base class for infrastructure errors."""
    pass


class ConnectionTimeoutError(InfraError):
    """Failed to connect to provider."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="connection_timeout",
                message=f"Failed to connect to {provider} API within timeout",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=5
            ),
            status_code=504
        )


class ReadTimeoutError(InfraError):
    """Provider did not respond in time."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="read_timeout",
                message=f"{provider} did not respond within timeout",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=10
            ),
            status_code=504
        )


class UpstreamError(InfraError):
    """Provider returned server error."""

    def __init__(
        self,
        provider: str,
        status_code: int,
        message: str = "",
        request_id: str = "",
        provider_request_id: str = ""
    ):
        code_map = {
            500: "upstream_500",
            502: "upstream_502",
            503: "upstream_503",
            504: "upstream_504",
        }
        super().__init__(
            ErrorDetails(
                code=code_map.get(status_code, "upstream_error"),
                message=message or f"{provider} returned error {status_code}",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                provider_request_id=provider_request_id or None,
                retryable=True,
                retry_after=30
            ),
            status_code=502 if status_code == 500 else status_code
        )


class RateLimitedError(InfraError):
    """Provider rate limit exceeded."""

    def __init__(
        self,
        provider: str,
        retry_after: int = 60,
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                code="rate_limited",
                message=f"{provider} rate limit exceeded. Retry after {retry_after} seconds.",
                type=ErrorType.INFRA,
                provider=provider,
                request_id=request_id,
                retryable=True,
                retry_after=retry_after
            ),
            status_code=429
        )


# ============================================================
# Semantic Errors (Not Retryable)
# ============================================================

class SemanticError(UnillmException):
    """Base class for semantic errors (client must fix request)."""
    pass


class InvalidRequestError(SemanticError):
    """Request validation failed."""

    def __init__(
        self,
        message: str,
        param: str = "",
        provider: str = "",
        request_id: str = ""
    ):
        super().__init__(
            ErrorDetails(
                code="invalid_request",
                message=message,
                type=ErrorType.SEMANTIC,
                provider=provider or None,
                param=param or None,
                request_id=request_id,
                retryable=False
            ),
            status_code=400
        )


class ModelNotFoundError(SemanticError):
    """Requested model does not exist on the provider."""

    def __init__(self, model: str, provider: str = "", request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="model_not_found",
                message=f"Model '{model}' not found",
                type=ErrorType.SEMANTIC,
                provider=provider or None,
                request_id=request_id,
                retryable=False,
                details={"requested_model": model}
            ),
            status_code=404
        )


class ProviderNotConfiguredError(SemanticError):
    """No adapter is configured for the requested provider."""

    def __init__(self, provider: str, request_id: str = ""):
        super().__init__(
            ErrorDetails(
                code="provider_not_configured",
                message=f"Provider '{provider}' is not configured",
                type=ErrorType.SEMANTIC,
                provider=provider,
                request_id=request_id,
                retryable=False
            ),
            status_code=503
        )


# ============================================================
# Streaming pipeline errors
# ============================================================

class StreamingError(Exception):
    """Internal fault raised inside the streaming pipeline."""
    pass


class BufferOverflowError(StreamingError):
    """An unterminated line grew past the configured maximum."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Unterminated line of {size} bytes exceeds limit of {limit} bytes"
        )


class StreamFailedError(Exception):
    """Raised by convenience consumers when a stream ends with an error event."""

    def __init__(self, stream_error: Any):
        self.stream_error = stream_error
        super().__init__(stream_error.message)


# ============================================================
# Error Factory
# ============================================================

def _extract_error_message(body: Any, fallback: str) -> tuple:
    """Pull (message, code) out of the error bodies the providers return."""
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return (
                error.get("message") or fallback,
                error.get("code") or error.get("type") or ""
            )
        if isinstance(error, str) and error:
            return error, ""
        if isinstance(body.get("message"), str):
            return body["message"], ""
    return fallback, ""


def handle_provider_error(
    provider: str,
    error: Exception,
    request_id: str = "",
    model: str = ""
) -> UnillmException:
    """
    Convert an httpx failure that happened before streaming began into a
    canonical unillm exception.

    Provider error bodies:
        OpenAI:    {"error": {"message": "...", "type": "...", "code": "..."}}
        Anthropic: {"type": "error", "error": {"type": "...", "message": "..."}}
        Ollama:    {"error": "..."}
    """
    if isinstance(error, httpx.TimeoutException):
        if isinstance(error, httpx.ConnectTimeout):
            return ConnectionTimeoutError(provider, request_id)
        return ReadTimeoutError(provider, request_id)

    if isinstance(error, httpx.ConnectError):
        return ConnectionTimeoutError(provider, request_id)

    if isinstance(error, httpx.HTTPStatusError):
        response = error.response
        status_code = response.status_code

        try:
            body = response.json()
        except ValueError:
            body = None
        message, error_code = _extract_error_message(body, response.text or str(error))
        provider_req_id = response.headers.get("x-request-id", "") or response.headers.get("request-id", "")

        if status_code in (401, 403):
            return SemanticError(
                ErrorDetails(
                    code="provider_auth_error",
                    message=f"{provider} authentication failed: {message}",
                    type=ErrorType.SEMANTIC,
                    provider=provider,
                    request_id=request_id,
                    provider_request_id=provider_req_id or None,
                    retryable=False
                ),
                status_code=502
            )

        if status_code == 429:
            retry_after = 60
            if "retry-after" in response.headers:
                try:
                    retry_after = int(response.headers["retry-after"])
                except ValueError:
                    pass
            return RateLimitedError(provider, retry_after, request_id=request_id)

        if status_code >= 500:
            return UpstreamError(
                provider, status_code, message,
                request_id, provider_req_id
            )

        if status_code == 404 and "model" in message.lower():
            return ModelNotFoundError(model or error_code or "unknown", provider, request_id)

        if status_code == 400:
            return InvalidRequestError(message, provider=provider, request_id=request_id)

        return SemanticError(
            ErrorDetails(
                code=error_code or "provider_error",
                message=message,
                type=ErrorType.SEMANTIC,
                provider=provider,
                request_id=request_id,
                provider_request_id=provider_req_id or None,
                retryable=False
            ),
            status_code=status_code
        )

    return InfraError(
        ErrorDetails(
            code="unknown_error",
            message=str(error),
            type=ErrorType.INFRA,
            provider=provider,
            request_id=request_id,
            retryable=True
        ),
        status_code=500
    )
