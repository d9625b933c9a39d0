"""
unillm - OpenTelemetry Tracing

Span creation for stream tasks and provider calls.

Features:
- One "stream.task" span per stream, covering its whole lifetime
- Client spans for the request that opens a provider stream
- Console exporter for debugging (OTEL_CONSOLE_EXPORT=true)

Usage:
    from unillm.observability.tracing import setup_tracing, get_tracer

    # Setup at startup
    setup_tracing(service_name="unillm")

    # Create spans
    tracer = get_tracer()
    with tracer.start_as_current_span("operation_name") as span:
        span.set_attribute("key", "value")
"""

import os
from contextlib import contextmanager
from typing import Optional

from opentelemetry import trace
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.resources import Resource, SERVICE_NAME, SERVICE_VERSION
from opentelemetry.trace import SpanKind, Status, StatusCode


TRACER_NAME = "unillm"


class TracingManager:
    """
    Owns the SDK tracer provider.

    Until setup_tracing() is called, get_tracer() returns the OpenTelemetry
    API tracer, which is a no-op unless the host application installed a
    provider of its own.
    """

    def __init__(
        self,
        service_name: str = "unillm",
        service_version: str = "0.1.0",
        console_export: bool = False,
        set_global: bool = True,
    ):
        """
        Initialize tracing.

        Args:
            service_name: Name of the service
            service_version: Version of the service
            console_export: Whether to export spans to console (for debugging)
            set_global: Install as the global tracer provider
        """
        self.service_name = service_name
        self.service_version = service_version

        resource = Resource.create({
            SERVICE_NAME: service_name,
            SERVICE_VERSION: service_version,
            "deployment.environment": os.getenv("MODE", "local"),
        })

        self.provider = TracerProvider(resource=resource)

        if console_export:
            self.provider.add_span_processor(
                SimpleSpanProcessor(ConsoleSpanExporter())
            )

        if set_global:
            trace.set_tracer_provider(self.provider)

        self.tracer = self.provider.get_tracer(TRACER_NAME, service_version)

    def get_tracer(self) -> trace.Tracer:
        """Get the tracer instance."""
        return self.tracer

    def shutdown(self):
        """Shutdown the tracer provider."""
        self.provider.shutdown()


_tracing_instance: Optional[TracingManager] = None


def setup_tracing(
    service_name: str = "unillm",
    service_version: str = "0.1.0",
    console_export: bool = False,
) -> TracingManager:
    """
    Setup tracing.

    Call once at application startup.
    """
    global _tracing_instance

    if os.getenv("OTEL_CONSOLE_EXPORT", "").lower() == "true":
        console_export = True

    _tracing_instance = TracingManager(
        service_name=service_name,
        service_version=service_version,
        console_export=console_export,
    )
    return _tracing_instance


def get_tracer() -> trace.Tracer:
    """Get the configured tracer, or the global API tracer if none was set up."""
    if _tracing_instance is not None:
        return _tracing_instance.get_tracer()
    return trace.get_tracer(TRACER_NAME)


def mark_span_error(span: trace.Span, description: str):
    """Set ERROR status on a span."""
    span.set_status(Status(StatusCode.ERROR, description))


@contextmanager
def trace_provider_call(provider: str, model: str, operation: str = "chat_stream"):
    """
    Context manager for tracing the call that opens a provider stream.

    Usage:
        with trace_provider_call("openai", "gpt-4o", "chat_stream") as span:
            response = await client.send(request, stream=True)
            span.set_attribute("http.status_code", response.status_code)
    """
    with get_tracer().start_as_current_span(
        f"{provider}.{operation}",
        kind=SpanKind.CLIENT,
        attributes={
            "ai.provider": provider,
            "ai.model": model,
            "ai.operation": operation,
        },
    ) as span:
        yield span
