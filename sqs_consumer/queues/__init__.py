"""
Rate-limited SQS consumer engine.

This package polls a queue with one or more workers, dispatches received
messages to a user handler under a shared rate limit, and acknowledges
processed messages with per-message outcome reporting.

Classes:
    WorkerPool: N poll loops sharing one RateLimiter
    PollLoop: A single polling worker
    RateLimiter: Fixed-window limiter safe for concurrent callers
    AckReconciler: Single and batch deletion with per-message outcomes
    MessageHandler: Interface implemented by users
    ConsumerConfig: Queue and worker configuration
    LimiterConfig: Rate limiter window settings

Example:
    from sqs_consumer.queues import ConsumerConfig, MessageHandler, WorkerPool

    class MyHandler(MessageHandler):
        async def on_receive(self, messages):
            for message in messages:
                await process(message.body)
            await pool.delete_messages_batch(messages)

    pool = WorkerPool(MyHandler(), ConsumerConfig(queue_url=url, concurrency=4))
    async with pool:
        pool.start()
        await pool.wait_closed()
"""

from sqs_consumer.queues.ack import AckReconciler
from sqs_consumer.queues.backoff import ExponentialBackoff, run_with_backoff
from sqs_consumer.queues.config import ConsumerConfig, LimiterConfig, LimiterOptions
from sqs_consumer.queues.errors import (
    ConfigurationError,
    DeleteEntryFailedError,
    ErrorKind,
    MissingSettingError,
    QueueError,
)
from sqs_consumer.queues.handler import CallbackHandler, MessageHandler
from sqs_consumer.queues.limiter import RateLimiter
from sqs_consumer.queues.poller import DispatchMode, PollLoop
from sqs_consumer.queues.pool import WorkerPool
from sqs_consumer.queues.schemas import DeleteOutcome, DeleteStatus, Message
from sqs_consumer.queues.transport import QueueTransport, SQSTransport

__all__ = [
    "AckReconciler",
    "CallbackHandler",
    "ConfigurationError",
    "ConsumerConfig",
    "DeleteEntryFailedError",
    "DeleteOutcome",
    "DeleteStatus",
    "DispatchMode",
    "ErrorKind",
    "ExponentialBackoff",
    "LimiterConfig",
    "LimiterOptions",
    "Message",
    "MessageHandler",
    "MissingSettingError",
    "PollLoop",
    "QueueError",
    "QueueTransport",
    "RateLimiter",
    "SQSTransport",
    "WorkerPool",
    "run_with_backoff",
]
