"""
unillm - API Server

FastAPI application exposing the streaming pipeline over HTTP.

Features:
- POST /v1/chat/stream: normalized SSE stream from OpenAI, Anthropic or Ollama
- GET /health: per-provider health
- GET /metrics: Prometheus metrics
- Canonical JSON errors for failures before a stream starts

Providers are enabled by environment variables (see unillm.config).
"""

import os
import uuid
from contextlib import asynccontextmanager
from typing import Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import __version__
from .adapters import BaseAdapter, create_adapters
from .config import StreamSettings, load_adapter_configs
from .core.errors import UnillmException
from .core.models import Provider
from .api import chat_router
from .observability import (
    get_logger,
    metrics_endpoint,
    setup_logging,
    setup_tracing,
)


logger = get_logger(__name__)


def create_app(adapters: Optional[Dict[Provider, BaseAdapter]] = None) -> FastAPI:
    """
    Build the application.

    Args:
        adapters: Adapters to serve. When omitted, adapters are created at
            startup from environment configuration and closed at shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - startup and shutdown."""
        owned = adapters is None
        if owned:
            setup_logging(
                level=os.getenv("LOG_LEVEL", "INFO"),
                json_output=os.getenv("LOG_FORMAT", "json").lower() == "json",
            )
            setup_tracing(service_name="unillm", service_version=__version__)
            app.state.adapters = create_adapters(load_adapter_configs(), StreamSettings.from_env())
        else:
            app.state.adapters = adapters

        logger.info(
            "unillm starting",
            providers=[p.value for p in app.state.adapters],
        )
        if not app.state.adapters:
            logger.warning("No providers configured (set OPENAI_API_KEY, ANTHROPIC_API_KEY or OLLAMA_HOST)")

        yield

        if owned:
            for adapter in app.state.adapters.values():
                await adapter.close()
        logger.info("unillm stopped")

    app = FastAPI(
        title="unillm",
        description="Unified streaming interface for LLM providers",
        version=__version__,
        lifespan=lifespan,
    )
    if adapters is not None:
        # Available before startup, for clients that skip the lifespan
        app.state.adapters = adapters

    app.include_router(chat_router)

    # ============================================================
    # Core Endpoints
    # ============================================================

    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        configured: Dict[Provider, BaseAdapter] = request.app.state.adapters
        results = {
            provider.value: (await adapter.health_check()).to_dict()
            for provider, adapter in configured.items()
        }

        all_healthy = all(r["healthy"] for r in results.values())
        return {
            "status": "healthy" if all_healthy else "degraded",
            "version": __version__,
            "providers": results,
        }

    @app.get("/metrics")
    async def prometheus_metrics():
        """Prometheus metrics endpoint."""
        return metrics_endpoint()

    # ============================================================
    # Error handlers
    # ============================================================

    @app.exception_handler(UnillmException)
    async def unillm_exception_handler(request: Request, exc: UnillmException):
        """Handle all canonical unillm errors."""
        headers = {
            "X-Request-Id": exc.error.request_id,
            "X-Error-Type": exc.error.type.value,
            "X-Error-Code": exc.error.code,
        }

        if exc.error.retry_after:
            headers["Retry-After"] = str(exc.error.retry_after)

        if exc.error.provider:
            headers["X-Provider"] = exc.error.provider

        logger.warning(
            "Request failed",
            error_code=exc.error.code,
            status_code=exc.status_code,
            request_id=exc.error.request_id,
        )

        return JSONResponse(
            status_code=exc.status_code,
            content=exc.error.to_dict(),
            headers=headers
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        """Handle standard HTTP exceptions."""
        request_id = f"req_{uuid.uuid4().hex[:24]}"

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": {
                    "code": "http_error",
                    "message": exc.detail if isinstance(exc.detail, str) else str(exc.detail),
                    "type": "semantic_error" if exc.status_code < 500 else "infra_error",
                    "request_id": request_id,
                    "retryable": exc.status_code >= 500
                }
            },
            headers={"X-Request-Id": request_id}
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        request_id = f"req_{uuid.uuid4().hex[:24]}"
        logger.exception("Unhandled error", request_id=request_id, error_type=type(exc).__name__)

        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "code": "internal_error",
                    "message": "An unexpected error occurred",
                    "type": "infra_error",
                    "request_id": request_id,
                    "retryable": True
                }
            },
            headers={"X-Request-Id": request_id}
        )

    return app


app = create_app()


# ============================================================
# Run server
# ============================================================

def main():
    """Console entry point: serve on UNILLM_HOST:UNILLM_PORT."""
    import uvicorn
    uvicorn.run(
        "unillm.server:app",
        host=os.getenv("UNILLM_HOST", "0.0.0.0"),
        port=int(os.getenv("UNILLM_PORT", "8000")),
    )


if __name__ == "__main__":
    main()
