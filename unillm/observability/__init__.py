"""
unillm Observability Module

Structured logging, Prometheus metrics and OpenTelemetry tracing.
"""

from .logging import (
    LogContext,
    JSONFormatter,
    StructuredLogger,
    TimedOperation,
    setup_logging,
    get_logger,
)

from .metrics import (
    MetricsCollector,
    setup_metrics,
    get_metrics,
    metrics_endpoint,
)

from .tracing import (
    TracingManager,
    setup_tracing,
    get_tracer,
    trace_provider_call,
)

__all__ = [
    "LogContext",
    "JSONFormatter",
    "StructuredLogger",
    "TimedOperation",
    "setup_logging",
    "get_logger",
    "MetricsCollector",
    "setup_metrics",
    "get_metrics",
    "metrics_endpoint",
    "TracingManager",
    "setup_tracing",
    "get_tracer",
    "trace_provider_call",
]
