"""
OpenTelemetry tracing for queue consumers.

A producer that wants its trace continued on the consumer side adds the
attributes returned by ``inject_trace_context()`` to its SendMessage call.
The W3C ``traceparent`` header then travels as a String message attribute,
and the poll loop parents every dispatch span on it. Consumers must include
``traceparent`` in ``message_attribute_names`` or SQS will not deliver it.

Tracing is off unless ``setup_tracing()`` runs (the CLI does so when
TRACING_ENABLED is set); until then every tracer is a no-op.

Usage:
    setup_tracing("orders-consumer", "http://otel-collector:4317")

    # producer side
    with get_tracer("orders").start_as_current_span("publish"):
        sqs.send_message(
            QueueUrl=url,
            MessageBody=body,
            MessageAttributes=inject_trace_context(),
        )
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Iterator

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, StatusCode, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

if TYPE_CHECKING:
    from sqs_consumer.queues.schemas import Message

logger = logging.getLogger(__name__)

TRACE_PARENT_ATTRIBUTE = "traceparent"

_propagator = TraceContextTextMapPropagator()
_tracing_enabled = False


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install the global TracerProvider.

    Spans go to an OTLP gRPC collector in batches, or, when ``exporter`` is
    given (tests use InMemorySpanExporter), are exported synchronously to it.
    """
    global _tracing_enabled

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        target = type(exporter).__name__
    else:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        target = endpoint = otlp_endpoint or "http://localhost:4317"
        provider.add_span_processor(
            BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=True))
        )

    trace.set_tracer_provider(provider)
    _tracing_enabled = True
    logger.info("Tracing enabled for %s (exporter: %s)", service_name, target)
    return provider


def get_tracer(name: str) -> Tracer:
    """Named tracer from the global provider; a no-op tracer before setup."""
    return trace.get_tracer(name)


def is_tracing_enabled() -> bool:
    return _tracing_enabled


def inject_trace_context() -> dict[str, dict[str, str]]:
    """
    Current span context as an SQS ``MessageAttributes`` mapping.

    Returns {} outside an active span.
    """
    carrier: dict[str, str] = {}
    _propagator.inject(carrier)

    traceparent = carrier.get(TRACE_PARENT_ATTRIBUTE)
    if not traceparent:
        return {}
    return {TRACE_PARENT_ATTRIBUTE: {"DataType": "String", "StringValue": traceparent}}


def extract_trace_context(message: Message) -> Context | None:
    """
    Remote parent context from a message's ``traceparent`` attribute.

    Returns None when the attribute is missing or not a valid W3C header.
    """
    traceparent = message.string_attribute(TRACE_PARENT_ATTRIBUTE)
    if not traceparent:
        return None

    ctx = _propagator.extract({TRACE_PARENT_ATTRIBUTE: traceparent})
    if not trace.get_current_span(ctx).get_span_context().is_valid:
        logger.debug("Ignoring malformed traceparent on message %s", message.message_id)
        return None
    return ctx


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: dict[str, Any] | None = None,
    parent_context: Context | None = None,
) -> Iterator[Span]:
    """
    Run a block inside a span, marking the span as failed if the block raises.

    Usage:
        with traced(tracer, "sqs.dispatch", {"worker.id": 0}, parent_context=ctx):
            await handler.on_receive(messages)
    """
    with tracer.start_as_current_span(
        name, context=parent_context, attributes=attributes
    ) as span:
        try:
            yield span
        except Exception as exc:
            span.set_status(StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """structlog processor adding trace_id/span_id of the active span."""
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        event_dict["trace_id"] = f"{span_context.trace_id:032x}"
        event_dict["span_id"] = f"{span_context.span_id:016x}"
    return event_dict
