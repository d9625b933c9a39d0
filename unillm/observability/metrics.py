"""
unillm - Prometheus Metrics

Metrics collection with the Prometheus client library.

Metrics exposed:
- unillm_streams_started_total: Counter of stream tasks started, by provider
- unillm_streams_finished_total: Counter of finished streams by provider and outcome
- unillm_stream_events_total: Counter of delivered events by provider and event type
- unillm_frames_skipped_total: Counter of undecodable frames by provider and reason
- unillm_active_streams: Gauge of stream tasks currently running
- unillm_time_to_first_token_seconds: Histogram of latency to the first content event
- unillm_stream_duration_seconds: Histogram of stream task lifetime

Usage:
    from unillm.observability.metrics import get_metrics, setup_metrics, metrics_endpoint

    # Setup at startup
    setup_metrics()

    # Record metrics
    metrics = get_metrics()
    metrics.record_event(provider="openai", event_type="content_delta")

    # Expose /metrics endpoint
    @app.get("/metrics")
    async def metrics():
        return metrics_endpoint()
"""

from typing import Optional

from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST,
    REGISTRY,
)
from fastapi import Response


class MetricsCollector:
    """
    Central metrics collector for the streaming pipeline.

    One collector per registry; the module-level instance uses the default
    Prometheus registry. Tests pass a fresh CollectorRegistry.
    """

    def __init__(self, registry: CollectorRegistry = REGISTRY):
        """Initialize metrics collectors."""
        self.registry = registry

        self.streams_started = Counter(
            "unillm_streams_started_total",
            "Total number of stream tasks started",
            labelnames=["provider"],
            registry=registry,
        )

        # outcome = end/error/cancelled
        self.streams_finished = Counter(
            "unillm_streams_finished_total",
            "Total number of stream tasks finished",
            labelnames=["provider", "outcome"],
            registry=registry,
        )

        self.stream_events = Counter(
            "unillm_stream_events_total",
            "Normalized events delivered to consumers",
            labelnames=["provider", "event_type"],
            registry=registry,
        )

        self.frames_skipped = Counter(
            "unillm_frames_skipped_total",
            "Frames that could not be decoded and were skipped",
            labelnames=["provider", "reason"],
            registry=registry,
        )

        self.active_streams = Gauge(
            "unillm_active_streams",
            "Number of stream tasks currently running",
            labelnames=["provider"],
            registry=registry,
        )

        self.time_to_first_token = Histogram(
            "unillm_time_to_first_token_seconds",
            "Time from task start to the first content or tool call event",
            labelnames=["provider", "model"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, float("inf")),
            registry=registry,
        )

        # Streams run from well under a second to several minutes
        self.stream_duration = Histogram(
            "unillm_stream_duration_seconds",
            "Stream task lifetime in seconds",
            labelnames=["provider", "outcome"],
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 25.0, 50.0, 100.0, 300.0, float("inf")),
            registry=registry,
        )

    def record_stream_started(self, provider: str):
        """Record a stream task start."""
        self.streams_started.labels(provider=provider).inc()
        self.active_streams.labels(provider=provider).inc()

    def record_stream_finished(self, provider: str, outcome: str, duration_seconds: float):
        """Record a stream task finishing with the given outcome."""
        self.active_streams.labels(provider=provider).dec()
        self.streams_finished.labels(provider=provider, outcome=outcome).inc()
        self.stream_duration.labels(provider=provider, outcome=outcome).observe(duration_seconds)

    def record_event(self, provider: str, event_type: str):
        """Record a delivered normalized event."""
        self.stream_events.labels(provider=provider, event_type=event_type).inc()

    def record_frame_skipped(self, provider: str, reason: str):
        """Record a frame dropped by its decoder."""
        self.frames_skipped.labels(provider=provider, reason=reason).inc()

    def record_time_to_first_token(
        self,
        provider: str,
        model: str,
        ttft_seconds: float,
    ):
        """Record time to first token."""
        self.time_to_first_token.labels(
            provider=provider,
            model=model,
        ).observe(ttft_seconds)


# Module-level functions for convenience
_metrics_instance: Optional[MetricsCollector] = None


def setup_metrics(registry: CollectorRegistry = REGISTRY) -> MetricsCollector:
    """
    Setup metrics collection.

    Safe to call multiple times with the same registry; returns the
    existing instance.
    """
    global _metrics_instance

    if _metrics_instance is not None and _metrics_instance.registry is registry:
        return _metrics_instance

    _metrics_instance = MetricsCollector(registry)
    return _metrics_instance


def get_metrics() -> MetricsCollector:
    """Get the metrics collector, creating it on the default registry if needed."""
    if _metrics_instance is None:
        return setup_metrics()
    return _metrics_instance


def metrics_endpoint(registry: Optional[CollectorRegistry] = None) -> Response:
    """
    Generate Prometheus metrics endpoint response.

    Usage:
        @app.get("/metrics")
        async def metrics():
            return metrics_endpoint()
    """
    if registry is None:
        registry = get_metrics().registry
    content = generate_latest(registry)
    return Response(
        content=content,
        media_type=CONTENT_TYPE_LATEST,
    )
