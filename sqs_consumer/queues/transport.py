"""
Queue transport: the network capability the consumer engine drives.

``QueueTransport`` is the abstract capability (receive, delete one, delete a
batch). ``SQSTransport`` implements it on a boto3 SQS client; boto3 is
blocking, so each call runs in a worker thread via ``asyncio.to_thread``.
"""

import asyncio
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any

import boto3
import structlog
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from sqs_consumer.queues.backoff import run_with_backoff
from sqs_consumer.queues.config import ConsumerConfig
from sqs_consumer.queues.errors import QueueError
from sqs_consumer.queues.schemas import BatchDeleteResult, DeleteEntry, Message

logger = structlog.get_logger(__name__)


class QueueTransport(ABC):
    """
    Abstract queue capability.

    Subclasses must implement:
        - receive(): Fetch up to batch_size messages
        - delete(): Delete one message by receipt handle
        - delete_batch(): Delete several messages in one request

    Implementations raise on whole-call failure; per-entry batch-delete
    failures are returned in the BatchDeleteResult instead.
    """

    async def connect(self) -> None:
        """Open connections. Default: nothing to do."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    async def health_check(self) -> bool:
        """Check that the queue is reachable."""
        return True

    async def __aenter__(self) -> "QueueTransport":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @abstractmethod
    async def receive(
        self,
        batch_size: int,
        wait_time_seconds: int,
        visibility_timeout: int | None,
        attribute_names: list[str],
        message_attribute_names: list[str],
    ) -> list[Message]:
        """
        Receive a batch of messages.

        Returns:
            Received messages in queue order; empty when the long poll
            expired without messages
        """
        ...

    @abstractmethod
    async def delete(self, receipt_handle: str) -> None:
        """Delete one message."""
        ...

    @abstractmethod
    async def delete_batch(self, entries: list[DeleteEntry]) -> BatchDeleteResult:
        """Delete several messages, reporting success or failure per entry."""
        ...


class SQSTransport(QueueTransport):
    """
    Amazon SQS transport on boto3.

    Usage:
        async with SQSTransport(ConsumerConfig(queue_url=url)) as transport:
            messages = await transport.receive(10, 20, None, [], [])
    """

    def __init__(self, config: ConsumerConfig, client: Any | None = None):
        """
        Initialize the transport.

        Args:
            config: Consumer configuration (credentials resolved on connect)
            client: Pre-built boto3 SQS client, mainly for tests
        """
        self._config = config
        self._client = client
        self._queue_url: str | None = config.queue_url

    @property
    def client(self) -> Any:
        """Get the SQS client, raising if not connected."""
        if self._client is None:
            raise RuntimeError("Not connected to SQS. Call connect() first.")
        return self._client

    @property
    def queue_url(self) -> str:
        if self._queue_url is None:
            raise RuntimeError("Queue URL not resolved. Call connect() first.")
        return self._queue_url

    async def connect(self) -> None:
        """
        Create the SQS client and resolve the queue URL.

        Raises:
            MissingSettingError: if credentials, region or queue are not configured
        """
        connection = self._config.resolve_connection()

        if self._client is None:
            self._client = boto3.client(
                "sqs",
                region_name=connection.region,
                aws_access_key_id=connection.access_key_id,
                aws_secret_access_key=connection.secret_access_key,
                endpoint_url=connection.endpoint_url,
                config=BotoConfig(
                    read_timeout=self._config.read_timeout,
                    tcp_keepalive=True,
                    retries={"mode": "standard"},
                ),
            )

        if self._queue_url is None:
            response = await run_with_backoff(
                lambda: self._call(
                    "get_queue_url", self.client.get_queue_url, QueueName=connection.queue_name
                ),
                max_attempts=3,
            )
            self._queue_url = response["QueueUrl"]

        logger.info("Connected to SQS", queue_url=self._queue_url, region=connection.region)

    async def close(self) -> None:
        """Close the SQS client."""
        if self._client is not None:
            close = getattr(self._client, "close", None)
            if close is not None:
                close()
            self._client = None
            logger.info("SQS client closed", queue_url=self._queue_url)

    async def health_check(self) -> bool:
        """Check that the queue exists and is reachable."""
        try:
            await self._call(
                "get_queue_attributes",
                self.client.get_queue_attributes,
                QueueUrl=self.queue_url,
                AttributeNames=["QueueArn"],
            )
            return True
        except (QueueError, RuntimeError):
            return False

    async def approximate_depth(self) -> int:
        """Approximate number of visible messages."""
        response = await self._call(
            "get_queue_attributes",
            self.client.get_queue_attributes,
            QueueUrl=self.queue_url,
            AttributeNames=["ApproximateNumberOfMessages"],
        )
        return int(response.get("Attributes", {}).get("ApproximateNumberOfMessages", 0))

    async def receive(
        self,
        batch_size: int,
        wait_time_seconds: int,
        visibility_timeout: int | None,
        attribute_names: list[str],
        message_attribute_names: list[str],
    ) -> list[Message]:
        params: dict[str, Any] = {
            "QueueUrl": self.queue_url,
            "MaxNumberOfMessages": batch_size,
            "WaitTimeSeconds": wait_time_seconds,
            "AttributeNames": attribute_names,
            "MessageAttributeNames": message_attribute_names,
        }
        if visibility_timeout is not None:
            params["VisibilityTimeout"] = visibility_timeout

        response = await self._call("receive_message", self.client.receive_message, **params)
        return [Message.from_sqs(raw) for raw in response.get("Messages") or []]

    async def delete(self, receipt_handle: str) -> None:
        await self._call(
            "delete_message",
            self.client.delete_message,
            QueueUrl=self.queue_url,
            ReceiptHandle=receipt_handle,
        )

    async def delete_batch(self, entries: list[DeleteEntry]) -> BatchDeleteResult:
        response = await self._call(
            "delete_message_batch",
            self.client.delete_message_batch,
            QueueUrl=self.queue_url,
            Entries=[
                {"Id": entry.correlation_id, "ReceiptHandle": entry.receipt_handle}
                for entry in entries
            ],
        )
        return BatchDeleteResult.from_sqs(response)

    async def _call(self, operation: str, method: Any, **kwargs: Any) -> dict[str, Any]:
        """Run a blocking boto3 call in a thread, wrapping its errors in QueueError."""
        try:
            return await asyncio.to_thread(method, **kwargs)
        except ClientError as e:
            error = e.response.get("Error", {})
            raise QueueError(
                operation, f"{error.get('Code', 'ClientError')}: {error.get('Message', e)}"
            ) from e
        except BotoCoreError as e:
            raise QueueError(operation, str(e)) from e
