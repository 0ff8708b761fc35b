"""
Error taxonomy for the consumer engine.

Every failure a caller can observe is reported through the handler's
``on_error`` hook tagged with an ``ErrorKind``. Configuration problems are
raised eagerly as ``ConfigurationError`` so a misconfigured worker never
starts polling.
"""

from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sqs_consumer.queues.schemas import FailedEntry


class ErrorKind(str, Enum):
    """Reason code passed to ``MessageHandler.on_error``."""

    POLLING = "polling"
    ON_RECEIVE = "onReceive"
    ON_PROCESSED = "onProcessed"
    DELETE_MESSAGE = "deleteMessage"
    DELETE_MESSAGE_BATCH = "deleteMessageBatch"


class ConfigurationError(Exception):
    """Raised when the consumer cannot be configured."""


class MissingSettingError(ConfigurationError):
    """
    Raised when a required setting is neither passed explicitly nor
    present in the environment.

    Attributes:
        field: Name of the ``ConsumerConfig`` field that is missing
        sources: Where the resolver looked, in lookup order
    """

    def __init__(self, field: str, sources: list[str]):
        self.field = field
        self.sources = sources
        super().__init__(
            f"Missing required setting '{field}' "
            f"(looked in: {', '.join(sources)})"
        )


class QueueError(Exception):
    """Raised by a transport when a queue call fails."""

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class AllMessagesInvalidError(Exception):
    """Reported when a batch delete is requested for messages that all lack an ack handle."""

    def __init__(self, count: int):
        self.count = count
        super().__init__(
            f"All {count} provided message(s) are missing a receipt handle"
        )


class DeleteEntryFailedError(Exception):
    """
    Reported for a single entry the queue refused to delete in a batch call.

    ``mapped`` is False when the entry's correlation id did not match any
    message in the request; the error is then reported with no message.
    """

    def __init__(self, entry: "FailedEntry", mapped: bool = True):
        self.entry = entry
        self.mapped = mapped
        detail = f"{entry.code}: {entry.message}" if entry.message else entry.code
        prefix = "" if mapped else "unmapped entry "
        super().__init__(f"Batch delete rejected {prefix}{entry.correlation_id} ({detail})")
