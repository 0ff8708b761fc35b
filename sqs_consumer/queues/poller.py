"""
Poll loop - one autonomous worker that receives and dispatches batches.

Runs as an asyncio task that:
1. Receives a batch from the queue transport (long poll)
2. Hands it to the handler, optionally through a rate limiter
3. On receive failure, reports the error and waits a fixed retry delay

stop() is cooperative: the flag is checked at the top of each iteration,
so an in-flight receive, dispatch or delete always runs to completion.
"""

import asyncio
import functools
import time
from enum import Enum

import structlog

from sqs_consumer.observability.logging import bind_context
from sqs_consumer.observability.metrics import get_metrics
from sqs_consumer.observability.tracing import extract_trace_context, get_tracer, traced
from sqs_consumer.queues.ack import AckReconciler
from sqs_consumer.queues.config import ConsumerConfig
from sqs_consumer.queues.errors import ErrorKind
from sqs_consumer.queues.handler import CallbackDispatcher, MessageHandler
from sqs_consumer.queues.limiter import RateLimiter
from sqs_consumer.queues.schemas import DeleteOutcome, Message
from sqs_consumer.queues.transport import QueueTransport

logger = structlog.get_logger(__name__)
tracer = get_tracer(__name__)


class DispatchMode(str, Enum):
    """How a received batch goes through the rate limiter."""

    BATCH = "batch"  # one limiter slot per batch
    PER_MESSAGE = "per_message"  # one limiter slot per message, in receipt order


class PollLoop:
    """
    Polling worker for one queue.

    Features:
    - Idempotent start(), cooperative stop()
    - Fixed-delay retry after receive failures (no exponential backoff:
      the long-poll wait already bounds the request rate)
    - Handler errors reported as onReceive, never fatal to the loop
    - Optional rate limiting of handler invocations
    - Dispatch spans parented on the producer's trace when the message
      carries a traceparent attribute

    Usage:
        loop = PollLoop(SQSTransport(config), MyHandler(), config)
        await transport.connect()
        loop.start()
        ...
        loop.stop()
        await loop.wait_closed()
    """

    def __init__(
        self,
        transport: QueueTransport,
        handler: MessageHandler,
        config: ConsumerConfig,
        limiter: RateLimiter | None = None,
        dispatch_mode: DispatchMode = DispatchMode.BATCH,
        dispatcher: CallbackDispatcher | None = None,
        acks: AckReconciler | None = None,
        worker_id: int = 0,
    ):
        """
        Initialize the poll loop.

        Args:
            transport: Queue transport (must be connected before start())
            handler: User message handler
            config: Consumer configuration
            limiter: Optional rate limiter wrapping handler invocations
            dispatch_mode: Limiter granularity, ignored without a limiter
            dispatcher: Shared error sink (or create one for handler)
            acks: Shared ack reconciler (or create one)
            worker_id: Identifier used in logs
        """
        self._transport = transport
        self._config = config
        self._limiter = limiter
        self._dispatch_mode = dispatch_mode
        self._dispatcher = dispatcher or CallbackDispatcher(handler)
        self._acks = acks or AckReconciler(transport, self._dispatcher)
        self._worker_id = worker_id

        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def worker_id(self) -> int:
        return self._worker_id

    @property
    def acks(self) -> AckReconciler:
        return self._acks

    def start(self) -> asyncio.Task:
        """
        Start polling in a background task.

        No-op while already running. Must be called from a running event loop.

        Returns:
            The task running the loop
        """
        if self._running and self._task is not None:
            return self._task

        self._running = True
        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(
                self.run(), name=f"poll-loop-{self._worker_id}"
            )
        # else: a stopped loop is still finishing its iteration and will
        # see the flag set again at its next check
        return self._task

    def stop(self) -> None:
        """Request termination after the current iteration."""
        if self._running:
            logger.info("Stopping poll loop", worker_id=self._worker_id)
        self._running = False

    async def wait_closed(self) -> None:
        """Wait for the loop task to finish."""
        if self._task is not None:
            await self._task

    async def run(self) -> None:
        """Main polling loop, launched by start(). Runs until stop() is called."""
        # Task-local: each loop task runs in its own contextvars copy
        bind_context(worker_id=self._worker_id)
        metrics = get_metrics()
        metrics.worker_started()
        logger.info(
            "Poll loop started",
            worker_id=self._worker_id,
            batch_size=self._config.batch_size,
            wait_time_seconds=self._config.wait_time_seconds,
        )

        try:
            while self._running:
                try:
                    started = time.monotonic()
                    messages = await self._transport.receive(
                        self._config.batch_size,
                        self._config.wait_time_seconds,
                        self._config.visibility_timeout,
                        self._config.attribute_names,
                        self._config.message_attribute_names,
                    )
                except Exception as e:
                    await self._dispatcher.report(ErrorKind.POLLING, e, None)
                    if not self._running:
                        break
                    logger.warning(
                        "Receive failed, retrying",
                        worker_id=self._worker_id,
                        error=str(e),
                        retry_in_ms=self._config.polling_retry_delay_ms,
                    )
                    await self._wait(self._config.polling_retry_delay)
                    continue

                metrics.record_received(len(messages), time.monotonic() - started)
                await self._dispatch(messages)
        except asyncio.CancelledError:
            logger.info("Poll loop cancelled", worker_id=self._worker_id)
            self._running = False
        finally:
            metrics.worker_stopped()
            logger.info("Poll loop stopped", worker_id=self._worker_id)

    async def delete_message(self, message: Message) -> DeleteOutcome:
        """Delete one processed message."""
        return await self._acks.delete_one(message)

    async def delete_messages_batch(self, messages: list[Message]) -> list[DeleteOutcome]:
        """Delete processed messages in batch requests."""
        return await self._acks.delete_batch(messages)

    async def _dispatch(self, messages: list[Message]) -> None:
        """Hand a received batch to the handler. Never raises."""
        try:
            if self._limiter is None or not messages:
                await self._deliver(messages)
            elif self._dispatch_mode == DispatchMode.PER_MESSAGE:
                for message in messages:
                    await self._limiter.exec(functools.partial(self._deliver, [message]))
            else:
                await self._limiter.exec(functools.partial(self._deliver, messages))
        except Exception as e:
            await self._dispatcher.report(ErrorKind.ON_RECEIVE, e, messages)

    async def _deliver(self, messages: list[Message]) -> None:
        parent = next(
            (ctx for ctx in map(extract_trace_context, messages) if ctx is not None),
            None,
        )
        started = time.monotonic()
        with traced(
            tracer,
            "sqs.dispatch",
            {"messaging.batch.message_count": len(messages), "worker.id": self._worker_id},
            parent_context=parent,
        ):
            ok = await self._dispatcher.deliver(messages)
        get_metrics().record_dispatch(len(messages), ok, time.monotonic() - started)

    async def _wait(self, seconds: float) -> None:
        await asyncio.sleep(seconds)
