"""
Message and acknowledgment types shared by the poller, the handler and the
ack reconciler.

Messages are immutable once received. Ownership is transient: the poll loop
holds a batch until it is handed to the handler, and the handler passes
messages to the ack reconciler until deletion completes or fails.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


@dataclass(frozen=True)
class Message:
    """
    A message received from the queue.

    Attributes:
        message_id: Queue-assigned message identifier
        receipt_handle: Ack handle required to delete the message. Distinct
            from message_id and changes on every receive.
        body: Raw message body
        attributes: System attributes requested via attribute_names
        message_attributes: User attributes requested via
            message_attribute_names, keyed by name
        md5_of_body: Body checksum reported by the queue
    """

    message_id: str
    receipt_handle: str | None
    body: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    message_attributes: dict[str, Any] = field(default_factory=dict)
    md5_of_body: str | None = None

    @classmethod
    def from_sqs(cls, raw: dict[str, Any]) -> "Message":
        """Build a Message from one entry of a ReceiveMessage response."""
        return cls(
            message_id=raw.get("MessageId", ""),
            receipt_handle=raw.get("ReceiptHandle") or None,
            body=raw.get("Body", ""),
            attributes=dict(raw.get("Attributes") or {}),
            message_attributes=dict(raw.get("MessageAttributes") or {}),
            md5_of_body=raw.get("MD5OfBody"),
        )

    @property
    def has_ack_handle(self) -> bool:
        return bool(self.receipt_handle)

    def string_attribute(self, name: str) -> str | None:
        """Return a String-typed message attribute value, if present."""
        attr = self.message_attributes.get(name)
        if not isinstance(attr, dict):
            return None
        return attr.get("StringValue")


@dataclass(frozen=True)
class DeleteEntry:
    """One entry of a batch-delete request."""

    correlation_id: str
    receipt_handle: str


@dataclass(frozen=True)
class FailedEntry:
    """
    One per-item failure of a batch-delete response.

    Attributes:
        correlation_id: Id sent in the request entry
        code: Error code returned by the queue
        message: Human-readable reason, if any
        sender_fault: True when the request entry itself was invalid
    """

    correlation_id: str
    code: str
    message: str | None = None
    sender_fault: bool = False


@dataclass
class BatchDeleteResult:
    """Per-item outcome of a batch-delete call."""

    successful: list[str] = field(default_factory=list)
    failed: list[FailedEntry] = field(default_factory=list)

    @classmethod
    def from_sqs(cls, raw: dict[str, Any]) -> "BatchDeleteResult":
        """Build a result from a DeleteMessageBatch response."""
        return cls(
            successful=[
                entry["Id"] for entry in raw.get("Successful") or [] if entry.get("Id")
            ],
            failed=[
                FailedEntry(
                    correlation_id=entry.get("Id", ""),
                    code=entry.get("Code", "Unknown"),
                    message=entry.get("Message"),
                    sender_fault=bool(entry.get("SenderFault", False)),
                )
                for entry in raw.get("Failed") or []
            ],
        )


class DeleteStatus(str, Enum):
    """Outcome of an acknowledgment attempt for one message."""

    ACKNOWLEDGED = "acknowledged"
    FAILED = "failed"
    SKIPPED = "skipped"  # no receipt handle, never sent


@dataclass(frozen=True)
class DeleteOutcome:
    """Per-message result returned by AckReconciler operations."""

    message: Message
    status: DeleteStatus
    reason: str | None = None

    @property
    def acknowledged(self) -> bool:
        return self.status == DeleteStatus.ACKNOWLEDGED
