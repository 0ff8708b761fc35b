"""Pytest fixtures for sqs-consumer tests."""

import os
from unittest.mock import AsyncMock

import pytest

from sqs_consumer.queues.config import ConsumerConfig
from sqs_consumer.queues.handler import MessageHandler
from sqs_consumer.queues.schemas import Message
from sqs_consumer.queues.transport import QueueTransport

_CONNECTION_ENV = (
    "AWS_ACCESS_KEY_ID",
    "AWS_SECRET_ACCESS_KEY",
    "AWS_REGION",
    "ACCESS_KEY_ID",
    "SECRET_ACCESS_KEY",
    "REGION",
)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep the developer's AWS and consumer environment out of tests."""
    for name in list(os.environ):
        if name in _CONNECTION_ENV or name.startswith("SQS_CONSUMER_"):
            monkeypatch.delenv(name, raising=False)


def _make_message(n: int = 1, receipt_handle: str | None = "auto", **kwargs) -> Message:
    """Build a Message; receipt_handle defaults to a unique handle."""
    if receipt_handle == "auto":
        receipt_handle = f"rh-{n}"
    return Message(
        message_id=f"msg-{n}",
        receipt_handle=receipt_handle,
        body=kwargs.pop("body", f"body {n}"),
        **kwargs,
    )


@pytest.fixture
def messages() -> list[Message]:
    """Three deletable messages."""
    return [_make_message(i) for i in range(1, 4)]


@pytest.fixture
def consumer_config() -> ConsumerConfig:
    """Consumer config with credentials and a fast retry delay."""
    return ConsumerConfig(
        queue_url="https://sqs.eu-west-1.amazonaws.com/123456789012/jobs",
        access_key_id="AKIDEXAMPLE",
        secret_access_key="secret",
        region="eu-west-1",
        wait_time_seconds=1,
        polling_retry_delay_ms=2500,
    )


@pytest.fixture
def transport() -> AsyncMock:
    """Queue transport double; receive() returns no messages by default."""
    mock = AsyncMock(spec=QueueTransport)
    mock.receive.return_value = []
    return mock


@pytest.fixture
def handler() -> AsyncMock:
    """Message handler double with awaitable hooks."""
    return AsyncMock(spec=MessageHandler)


@pytest.fixture
def make_message():
    """Factory for Message objects: make_message(n, receipt_handle=..., **fields)."""
    return _make_message
