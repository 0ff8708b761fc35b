"""
Prometheus metrics for monitoring queue consumers.

Defines and exposes metrics for:
- Messages received and dispatched
- Acknowledgment outcomes
- Error rates by reason code
- Rate limiter waits
- Running workers

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from sqs_consumer.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds). Receive latency includes the
# long-poll wait, so the upper buckets go past the 20s SQS maximum.
LATENCY_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0)


class MetricsCollector:
    """
    Prometheus metrics collector for queue consumers.

    Usage:
        metrics = get_metrics()
        metrics.start_server()

        metrics.record_received(count=10, latency=0.4)
        metrics.record_error("polling")
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        # Message counters
        self.messages_received = Counter(
            "sqs_consumer_messages_received_total",
            "Total number of messages received from the queue",
        )

        self.messages_dispatched = Counter(
            "sqs_consumer_messages_dispatched_total",
            "Total number of messages handed to the handler",
            ["status"],  # success, error
        )

        self.messages_deleted = Counter(
            "sqs_consumer_messages_deleted_total",
            "Acknowledgment outcomes per message",
            ["status"],  # acknowledged, failed, skipped
        )

        self.empty_receives = Counter(
            "sqs_consumer_empty_receives_total",
            "Receive calls that returned no messages",
        )

        # Errors by reason code
        self.errors = Counter(
            "sqs_consumer_errors_total",
            "Errors reported to the handler's error sink",
            ["kind"],
        )

        self.error_sink_failures = Counter(
            "sqs_consumer_error_sink_failures_total",
            "Exceptions raised by the on_error hook itself",
        )

        # Latency histograms
        self.receive_latency = Histogram(
            "sqs_consumer_receive_latency_seconds",
            "Duration of receive calls including long-poll wait",
            buckets=LATENCY_BUCKETS,
        )

        self.dispatch_latency = Histogram(
            "sqs_consumer_dispatch_latency_seconds",
            "Time to dispatch one received batch",
            buckets=LATENCY_BUCKETS,
        )

        # Limiter
        self.limiter_waits = Counter(
            "sqs_consumer_limiter_waits_total",
            "Times a caller waited for the next rate limiter window",
        )

        self.limiter_wait_seconds = Histogram(
            "sqs_consumer_limiter_wait_seconds",
            "Time spent waiting for the next rate limiter window",
            buckets=LATENCY_BUCKETS,
        )

        # Workers
        self.workers_running = Gauge(
            "sqs_consumer_workers_running",
            "Number of poll loops currently running",
        )

        logger.info("Prometheus metrics initialized")

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to expose metrics on (default from settings)
        """
        settings = get_settings()
        port = port or settings.metrics_port

        start_http_server(port, registry=REGISTRY)
        logger.info(f"Prometheus metrics server started on port {port}")

    # Convenience methods

    def record_received(self, count: int, latency: float | None = None) -> None:
        """
        Record a successful receive call.

        Args:
            count: Number of messages in the batch
            latency: Optional receive latency in seconds
        """
        if count:
            self.messages_received.inc(count)
        else:
            self.empty_receives.inc()

        if latency is not None:
            self.receive_latency.observe(latency)

    def record_dispatch(self, count: int, success: bool, latency: float | None = None) -> None:
        """Record a dispatched batch and its result."""
        status = "success" if success else "error"
        if count:
            self.messages_dispatched.labels(status=status).inc(count)
        if latency is not None:
            self.dispatch_latency.observe(latency)

    def record_delete(self, status: str, count: int = 1) -> None:
        """Record acknowledgment outcomes (acknowledged, failed, skipped)."""
        if count:
            self.messages_deleted.labels(status=status).inc(count)

    def record_error(self, kind: str) -> None:
        """Record an error reported to the error sink."""
        self.errors.labels(kind=kind).inc()

    def record_error_sink_failure(self) -> None:
        self.error_sink_failures.inc()

    def record_limiter_wait(self, seconds: float) -> None:
        """Record a wait for the next rate limiter window."""
        self.limiter_waits.inc()
        self.limiter_wait_seconds.observe(seconds)

    def worker_started(self) -> None:
        self.workers_running.inc()

    def worker_stopped(self) -> None:
        self.workers_running.dec()


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
