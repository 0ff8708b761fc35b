"""
Acknowledgment (deletion) of processed messages with per-message outcomes.

A batch delete is reconciled through a request-scoped correlation table:
every sent entry gets a fresh uuid, and the ids in the response's success
and failure lists are mapped back to the original Message objects. The
table lives only for the duration of one request.
"""

import uuid

import structlog

from sqs_consumer.observability.metrics import get_metrics
from sqs_consumer.queues.config import SQS_MAX_BATCH_SIZE
from sqs_consumer.queues.errors import (
    AllMessagesInvalidError,
    DeleteEntryFailedError,
    ErrorKind,
)
from sqs_consumer.queues.handler import CallbackDispatcher
from sqs_consumer.queues.schemas import (
    DeleteEntry,
    DeleteOutcome,
    DeleteStatus,
    Message,
)
from sqs_consumer.queues.transport import QueueTransport

logger = structlog.get_logger(__name__)


class AckReconciler:
    """
    Deletes messages and reports each one as processed or failed.

    Every message that was not confirmed deleted is reported through the
    error sink, except skipped messages mixed into an otherwise valid
    batch, which are logged.

    Usage:
        acks = AckReconciler(transport, dispatcher)
        outcomes = await acks.delete_batch(messages)
        failed = [o.message for o in outcomes if not o.acknowledged]
    """

    def __init__(
        self,
        transport: QueueTransport,
        dispatcher: CallbackDispatcher,
        max_batch_size: int = SQS_MAX_BATCH_SIZE,
    ):
        self._transport = transport
        self._dispatcher = dispatcher
        self._max_batch_size = max_batch_size

    async def delete_one(self, message: Message) -> DeleteOutcome:
        """
        Delete a single message.

        On success on_processed fires; on failure on_error fires with
        deleteMessage and the message.
        """
        metrics = get_metrics()
        try:
            await self._transport.delete(message.receipt_handle)
        except Exception as e:
            metrics.record_delete(DeleteStatus.FAILED.value)
            await self._dispatcher.report(ErrorKind.DELETE_MESSAGE, e, message)
            return DeleteOutcome(message, DeleteStatus.FAILED, str(e))

        metrics.record_delete(DeleteStatus.ACKNOWLEDGED.value)
        await self._dispatcher.processed(message)
        return DeleteOutcome(message, DeleteStatus.ACKNOWLEDGED)

    async def delete_batch(self, messages: list[Message]) -> list[DeleteOutcome]:
        """
        Delete messages in as few batch requests as the queue allows.

        Messages without a receipt handle are set aside first. If none of
        the input is deletable, one deleteMessageBatch error carrying the
        whole input is reported and nothing is sent. Otherwise the valid
        messages are sent in consecutive requests of at most the queue's
        batch limit. Requests that fail outright are reported together as
        one error carrying every message they contained.

        Returns:
            Outcomes per request (acknowledged, then failed), then skipped
        """
        if not messages:
            return []

        metrics = get_metrics()
        valid = [m for m in messages if m.has_ack_handle]
        skipped = [
            DeleteOutcome(m, DeleteStatus.SKIPPED, "missing receipt handle")
            for m in messages
            if not m.has_ack_handle
        ]

        if not valid:
            metrics.record_delete(DeleteStatus.SKIPPED.value, len(messages))
            await self._dispatcher.report(
                ErrorKind.DELETE_MESSAGE_BATCH,
                AllMessagesInvalidError(len(messages)),
                messages,
            )
            return skipped

        if skipped:
            metrics.record_delete(DeleteStatus.SKIPPED.value, len(skipped))
            logger.warning(
                "Skipping messages without receipt handle",
                skipped=[o.message.message_id for o in skipped],
            )

        outcomes: list[DeleteOutcome] = []
        request_error: Exception | None = None
        unsent: list[Message] = []
        for start in range(0, len(valid), self._max_batch_size):
            chunk = valid[start:start + self._max_batch_size]
            try:
                outcomes.extend(await self._delete_chunk(chunk))
            except Exception as e:
                metrics.record_delete(DeleteStatus.FAILED.value, len(chunk))
                request_error = request_error or e
                unsent.extend(chunk)
                outcomes.extend(DeleteOutcome(m, DeleteStatus.FAILED, str(e)) for m in chunk)

        if request_error is not None:
            await self._dispatcher.report(ErrorKind.DELETE_MESSAGE_BATCH, request_error, unsent)
        return outcomes + skipped

    async def _delete_chunk(self, valid: list[Message]) -> list[DeleteOutcome]:
        """Send one batch request and reconcile its result. Request failures propagate."""
        metrics = get_metrics()
        correlation: dict[str, Message] = {}
        entries: list[DeleteEntry] = []
        for message in valid:
            correlation_id = str(uuid.uuid4())
            correlation[correlation_id] = message
            entries.append(DeleteEntry(correlation_id, message.receipt_handle))

        result = await self._transport.delete_batch(entries)

        outcomes: list[DeleteOutcome] = []

        for correlation_id in result.successful:
            message = correlation.get(correlation_id)
            if message is None:
                logger.warning("Unknown id in batch delete success list", correlation_id=correlation_id)
                continue
            metrics.record_delete(DeleteStatus.ACKNOWLEDGED.value)
            await self._dispatcher.processed(message)
            outcomes.append(DeleteOutcome(message, DeleteStatus.ACKNOWLEDGED))

        for entry in result.failed:
            message = correlation.get(entry.correlation_id)
            if message is None:
                await self._dispatcher.report(
                    ErrorKind.DELETE_MESSAGE_BATCH,
                    DeleteEntryFailedError(entry, mapped=False),
                    None,
                )
                continue
            metrics.record_delete(DeleteStatus.FAILED.value)
            error = DeleteEntryFailedError(entry)
            await self._dispatcher.report(ErrorKind.DELETE_MESSAGE_BATCH, error, message)
            outcomes.append(DeleteOutcome(message, DeleteStatus.FAILED, str(error)))

        return outcomes
