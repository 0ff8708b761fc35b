"""
Worker pool - several poll loops sharing one rate limiter.

Every loop dispatches each message as its own rate-limited invocation, so
the limiter's quota bounds handler invocations across the whole pool
regardless of how many loops are polling.
"""

import asyncio
from types import TracebackType

import structlog

from sqs_consumer.queues.ack import AckReconciler
from sqs_consumer.queues.config import ConsumerConfig, LimiterConfig
from sqs_consumer.queues.handler import CallbackDispatcher, MessageHandler
from sqs_consumer.queues.limiter import RateLimiter
from sqs_consumer.queues.poller import DispatchMode, PollLoop
from sqs_consumer.queues.schemas import DeleteOutcome, Message
from sqs_consumer.queues.transport import QueueTransport, SQSTransport

logger = structlog.get_logger(__name__)


class WorkerPool:
    """
    Runs ``config.concurrency`` poll loops behind one shared RateLimiter.

    Usage:
        async with WorkerPool(MyHandler(), ConsumerConfig(concurrency=4)) as pool:
            pool.start()
            ...
            pool.set_limiter_config(LimiterConfig(interval_ms=1000, quota=50))
    """

    def __init__(
        self,
        handler: MessageHandler,
        config: ConsumerConfig | None = None,
        transport: QueueTransport | None = None,
    ):
        """
        Initialize the pool.

        Args:
            handler: User message handler shared by all loops
            config: Consumer configuration (or load from environment)
            transport: Queue transport (or create an SQSTransport from config)
        """
        self._config = config or ConsumerConfig()
        self._transport = transport or SQSTransport(self._config)
        self._limiter = RateLimiter(self._config.limiter)
        self._dispatcher = CallbackDispatcher(handler)
        self._acks = AckReconciler(self._transport, self._dispatcher)

        self._loops = [
            PollLoop(
                self._transport,
                handler,
                self._config,
                limiter=self._limiter,
                dispatch_mode=DispatchMode.PER_MESSAGE,
                dispatcher=self._dispatcher,
                acks=self._acks,
                worker_id=worker_id,
            )
            for worker_id in range(self._config.concurrency)
        ]

        logger.info(
            "WorkerPool initialized",
            concurrency=self._config.concurrency,
            interval_ms=self._limiter.interval_ms,
            quota=self._limiter.quota,
        )

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def loops(self) -> list[PollLoop]:
        return list(self._loops)

    @property
    def acks(self) -> AckReconciler:
        return self._acks

    @property
    def transport(self) -> QueueTransport:
        return self._transport

    @property
    def is_running(self) -> bool:
        return any(loop.is_running for loop in self._loops)

    async def __aenter__(self) -> "WorkerPool":
        await self._transport.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.stop()
        await self.wait_closed()
        await self._limiter.drain()
        await self._transport.close()

    def start(self) -> None:
        """Start every loop. Loops already running are left alone."""
        for loop in self._loops:
            loop.start()

    def stop(self) -> None:
        """Ask every loop to stop after its current iteration."""
        for loop in self._loops:
            loop.stop()

    async def wait_closed(self) -> None:
        """Wait until every loop has exited."""
        await asyncio.gather(*(loop.wait_closed() for loop in self._loops))

    def set_limiter_config(self, config: LimiterConfig, immediate: bool = False) -> None:
        """Reconfigure the shared limiter; affects every loop's next dispatch."""
        self._limiter.set_configs(config, immediate=immediate)

    async def delete_message(self, message: Message) -> DeleteOutcome:
        """Delete one processed message."""
        return await self._acks.delete_one(message)

    async def delete_messages_batch(self, messages: list[Message]) -> list[DeleteOutcome]:
        """Delete processed messages in batch requests."""
        return await self._acks.delete_batch(messages)
