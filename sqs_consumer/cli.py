"""
Command-line interface for sqs-consumer.

Runs a worker pool against a queue and checks queue connectivity. Queue
settings come from SQS_CONSUMER_* / AWS_* environment variables; options
given on the command line override them.

Usage:
    sqs-consumer run --handler myapp.handlers:OrderHandler --concurrency 4
    sqs-consumer health
"""

import asyncio
import importlib
import signal
import sys
from typing import Any

import click

from sqs_consumer.config.settings import get_settings
from sqs_consumer.observability.logging import get_logger, setup_logging
from sqs_consumer.observability.metrics import get_metrics
from sqs_consumer.queues.config import ConsumerConfig, LimiterConfig
from sqs_consumer.queues.errors import ConfigurationError


def load_handler(path: str) -> Any:
    """
    Load a MessageHandler from a ``module:attribute`` path.

    The attribute may be a MessageHandler instance or a class/factory that
    builds one with no arguments.
    """
    from sqs_consumer.queues.handler import MessageHandler

    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise click.BadParameter(f"expected 'module:attribute', got '{path}'")

    try:
        target = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise click.BadParameter(f"cannot load handler '{path}': {e}") from e

    handler = target if isinstance(target, MessageHandler) else target()
    if not isinstance(handler, MessageHandler):
        raise click.BadParameter(f"'{path}' did not produce a MessageHandler")
    return handler


def _consumer_config(**overrides: Any) -> ConsumerConfig:
    """Load ConsumerConfig from the environment, applying non-None overrides."""
    return ConsumerConfig(**{k: v for k, v in overrides.items() if v is not None})


@click.group()
@click.option("--debug", is_flag=True, help="Enable debug logging")
def main(debug: bool) -> None:
    """SQS Consumer - rate-limited multi-worker queue consumer."""
    if debug:
        import os
        os.environ["LOG_LEVEL"] = "DEBUG"
        get_settings.cache_clear()

    setup_logging()

    # Initialize tracing if enabled
    settings = get_settings()
    if settings.tracing_enabled:
        from sqs_consumer.observability.tracing import setup_tracing

        setup_tracing(
            service_name=settings.otel_service_name,
            otlp_endpoint=settings.otel_exporter_otlp_endpoint,
        )


@main.command()
@click.option("--handler", "handler_path", required=True, help="Handler as module:attribute")
@click.option("--queue-url", default=None, help="Queue URL (overrides SQS_CONSUMER_QUEUE_URL)")
@click.option("--concurrency", default=None, type=int, help="Number of poll loops")
@click.option("--batch-size", default=None, type=int, help="Messages per receive call")
@click.option("--quota", default=None, type=int, help="Handler invocations allowed per interval")
@click.option("--interval-ms", default=None, type=float, help="Rate limit window in milliseconds")
@click.option("--auto-delete/--no-auto-delete", default=False, help="Delete messages after successful handling")
@click.option("--metrics/--no-metrics", default=True, help="Enable metrics server")
@click.option("--metrics-port", default=None, type=int, help="Metrics server port")
def run(
    handler_path: str,
    queue_url: str | None,
    concurrency: int | None,
    batch_size: int | None,
    quota: int | None,
    interval_ms: float | None,
    auto_delete: bool,
    metrics: bool,
    metrics_port: int | None,
) -> None:
    """Run a worker pool until SIGINT/SIGTERM."""
    from sqs_consumer.queues.handler import AutoDeleteHandler
    from sqs_consumer.queues.pool import WorkerPool

    handler = load_handler(handler_path)
    config = _consumer_config(
        queue_url=queue_url,
        concurrency=concurrency,
        batch_size=batch_size,
    )
    if quota is not None or interval_ms is not None:
        base = config.limiter or LimiterConfig()
        config = config.model_copy(
            update={
                "limiter": LimiterConfig(
                    interval_ms=interval_ms if interval_ms is not None else base.interval_ms,
                    quota=quota if quota is not None else base.quota,
                    options=base.options,
                )
            }
        )

    if auto_delete:
        handler = AutoDeleteHandler(handler)

    async def serve():
        pool = WorkerPool(handler, config)
        if auto_delete:
            handler.attach(pool.acks)

        if metrics:
            get_metrics().start_server(port=metrics_port)

        # Handle shutdown signals
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, pool.stop)

        async with pool:
            pool.start()
            await pool.wait_closed()

    try:
        asyncio.run(serve())
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e


@main.command()
@click.option("--queue-url", default=None, help="Queue URL (overrides SQS_CONSUMER_QUEUE_URL)")
@click.option("--attempts", default=3, help="Connection attempts before giving up")
def health(queue_url: str | None, attempts: int) -> None:
    """Check that the queue is reachable."""
    from sqs_consumer.queues.backoff import run_with_backoff
    from sqs_consumer.queues.errors import QueueError
    from sqs_consumer.queues.transport import SQSTransport

    logger = get_logger(__name__)

    async def check() -> bool:
        transport = SQSTransport(_consumer_config(queue_url=queue_url))

        async def probe() -> int:
            if not await transport.health_check():
                raise QueueError("health_check", "queue unreachable")
            return await transport.approximate_depth()

        try:
            await transport.connect()
            depth = await run_with_backoff(probe, max_attempts=attempts)
        except ConfigurationError as e:
            click.echo(click.style(f"  ✗ configuration: {e}", fg="red"))
            return False
        except QueueError as e:
            logger.error("Queue health check failed", error=str(e))
            click.echo(click.style(f"  ✗ queue: {e}", fg="red"))
            return False
        finally:
            await transport.close()

        click.echo(click.style(f"  ✓ queue: {transport.queue_url}", fg="green"))
        click.echo(f"    approximate messages: {depth}")
        return True

    click.echo("\nHealth Check Results:")
    click.echo("-" * 40)
    healthy = asyncio.run(check())
    click.echo("-" * 40)
    sys.exit(0 if healthy else 1)


if __name__ == "__main__":
    main()
