"""
structlog configuration for consumer processes.

Every module logs through ``structlog.get_logger(__name__)`` with keyword
context. ``setup_logging()`` routes those events through the standard
library so boto3/botocore output ends up in the same stream, rendered as
JSON lines in production and as colored console output elsewhere.
"""

import logging
import sys

import structlog
from structlog.types import Processor

from sqs_consumer.config.settings import Settings, get_settings

# Third-party loggers that are chatty at INFO (boto logs every request)
NOISY_LOGGERS = ("boto3", "botocore", "urllib3", "asyncio")


def _processor_chain(settings: Settings) -> list[Processor]:
    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.tracing_enabled:
        from sqs_consumer.observability.tracing import add_trace_context

        chain.append(add_trace_context)

    if settings.is_production:
        chain += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=True))
    return chain


def setup_logging() -> None:
    """
    Configure structlog and the stdlib root logger from Settings.

    Usage:
        setup_logging()
        logger = structlog.get_logger(__name__)
        logger.info("Batch received", count=10, worker_id=0)
    """
    settings = get_settings()

    structlog.configure(
        processors=_processor_chain(settings),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger, optionally named."""
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """
    Attach key/value pairs to every later log event in the current context.

    Context variables are copied into each asyncio task when it is created,
    so values bound inside a poll loop's task stay local to that loop.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
