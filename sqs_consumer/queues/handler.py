"""
Handler interface and the error sink that guards calls into user code.

Users implement ``MessageHandler``. Internally every call into the handler
goes through ``CallbackDispatcher``, which turns exceptions into ``on_error``
reports so that nothing raised by user code can stop a poll loop, and which
logs and swallows exceptions raised by ``on_error`` itself.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Union

import structlog

from sqs_consumer.observability.metrics import get_metrics
from sqs_consumer.queues.errors import ErrorKind
from sqs_consumer.queues.schemas import Message

if TYPE_CHECKING:
    from sqs_consumer.queues.ack import AckReconciler

logger = structlog.get_logger(__name__)

# Message(s) associated with a reported error, if any
ErrorContext = Union[Message, list[Message], None]


class MessageHandler(ABC):
    """
    User-supplied message processing.

    Subclasses must implement:
        - on_receive(): Process a received batch

    And may override:
        - on_error(): Observe failures (default logs them)
        - on_processed(): Observe messages confirmed deleted

    Usage:
        class PrintHandler(MessageHandler):
            def __init__(self):
                self.pool = None

            async def on_receive(self, messages):
                for message in messages:
                    print(message.body)
                await self.pool.delete_messages_batch(messages)
    """

    @abstractmethod
    async def on_receive(self, messages: list[Message]) -> None:
        """
        Process a received batch.

        Called with the whole batch (possibly empty) by a standalone poll
        loop, and with a single-message batch per rate-limited invocation
        by a WorkerPool.
        """
        ...

    async def on_error(
        self,
        kind: ErrorKind,
        error: BaseException,
        context: ErrorContext,
    ) -> None:
        """
        Observe a failure.

        Args:
            kind: Reason code
            error: The exception (for per-entry batch-delete failures a
                DeleteEntryFailedError carrying the failure detail)
            context: The affected message(s), or None
        """
        logger.warning(
            "Consumer error",
            kind=kind.value,
            error=str(error),
            error_type=type(error).__name__,
            messages=_describe(context),
        )

    async def on_processed(self, message: Message) -> None:
        """Called once a message has been confirmed deleted from the queue."""
        return None


class CallbackHandler(MessageHandler):
    """
    Adapts plain coroutine functions to the MessageHandler interface.

    Usage:
        handler = CallbackHandler(on_receive=handle_batch, on_error=alert)
    """

    def __init__(
        self,
        on_receive: Callable[[list[Message]], Awaitable[None]],
        on_error: Callable[[ErrorKind, BaseException, ErrorContext], Awaitable[None]] | None = None,
        on_processed: Callable[[Message], Awaitable[None]] | None = None,
    ):
        self._on_receive = on_receive
        self._on_error = on_error
        self._on_processed = on_processed

    async def on_receive(self, messages: list[Message]) -> None:
        await self._on_receive(messages)

    async def on_error(
        self,
        kind: ErrorKind,
        error: BaseException,
        context: ErrorContext,
    ) -> None:
        if self._on_error is None:
            await super().on_error(kind, error, context)
            return
        await self._on_error(kind, error, context)

    async def on_processed(self, message: Message) -> None:
        if self._on_processed is not None:
            await self._on_processed(message)


class AutoDeleteHandler(MessageHandler):
    """
    Wraps a handler and deletes messages once it returns normally.

    Messages whose handling raised are left on the queue and become
    visible again after the visibility timeout. A single message is deleted
    with DeleteMessage, larger batches with DeleteMessageBatch. The
    reconciler is passed in or attached (normally ``WorkerPool.acks``)
    before the first batch arrives.
    """

    def __init__(self, inner: MessageHandler, acks: "AckReconciler | None" = None):
        self._inner = inner
        self.acks: "AckReconciler | None" = acks

    def attach(self, acks: "AckReconciler") -> None:
        self.acks = acks

    @property
    def inner(self) -> MessageHandler:
        return self._inner

    async def on_receive(self, messages: list[Message]) -> None:
        await self._inner.on_receive(messages)
        if messages:
            if self.acks is None:
                raise RuntimeError("AutoDeleteHandler.acks is not set")
            if len(messages) == 1:
                await self.acks.delete_one(messages[0])
            else:
                await self.acks.delete_batch(messages)

    async def on_error(
        self,
        kind: ErrorKind,
        error: BaseException,
        context: ErrorContext,
    ) -> None:
        await self._inner.on_error(kind, error, context)

    async def on_processed(self, message: Message) -> None:
        await self._inner.on_processed(message)


class CallbackDispatcher:
    """
    Single error sink shared by poll loops and the ack reconciler.

    Every reported error is counted by kind before being passed to the
    handler's on_error.
    """

    def __init__(self, handler: MessageHandler):
        self._handler = handler

    @property
    def handler(self) -> MessageHandler:
        return self._handler

    async def deliver(self, messages: list[Message]) -> bool:
        """
        Hand messages to on_receive.

        Returns:
            True if the handler returned normally, False if it raised (the
            error has then been reported as onReceive)
        """
        try:
            await self._handler.on_receive(messages)
        except Exception as e:
            await self.report(ErrorKind.ON_RECEIVE, e, messages)
            return False
        return True

    async def processed(self, message: Message) -> None:
        """Notify on_processed, reporting its failure as onProcessed."""
        try:
            await self._handler.on_processed(message)
        except Exception as e:
            await self.report(ErrorKind.ON_PROCESSED, e, message)

    async def report(
        self,
        kind: ErrorKind,
        error: BaseException,
        context: ErrorContext = None,
    ) -> None:
        """Pass an error to on_error. Errors raised by on_error are logged, never re-raised."""
        get_metrics().record_error(kind.value)
        try:
            await self._handler.on_error(kind, error, context)
        except Exception as sink_error:
            get_metrics().record_error_sink_failure()
            logger.error(
                "on_error handler raised",
                kind=kind.value,
                original_error=str(error),
                error=str(sink_error),
                error_type=type(sink_error).__name__,
            )


def _describe(context: ErrorContext) -> list[str] | str | None:
    """Message ids for logging."""
    if context is None:
        return None
    if isinstance(context, Message):
        return context.message_id
    return [m.message_id for m in context]
