"""Observability layer - logging, metrics, and tracing."""

from sqs_consumer.observability.logging import setup_logging
from sqs_consumer.observability.metrics import MetricsCollector, get_metrics
from sqs_consumer.observability.tracing import get_tracer, setup_tracing

__all__ = ["setup_logging", "MetricsCollector", "get_metrics", "setup_tracing", "get_tracer"]
