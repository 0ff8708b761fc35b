"""
Consumer and rate-limiter configuration.

``ConsumerConfig`` is a pydantic-settings model: every field can be passed
explicitly or read from ``SQS_CONSUMER_*`` environment variables, and the
AWS connection fields also honour the standard ``AWS_*`` variables.
Explicit values always win over the environment.

Limiter settings are plain dataclasses because they are swapped at runtime
(``WorkerPool.set_limiter_config``) rather than loaded once.
"""

from dataclasses import dataclass, field
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from sqs_consumer.queues.errors import MissingSettingError

# Hard limit imposed by SQS on ReceiveMessage and DeleteMessageBatch
SQS_MAX_BATCH_SIZE = 10


@dataclass
class LimiterOptions:
    """
    Invocation options for the rate limiter.

    Attributes:
        await_task: Await each task before exec() returns. When False the
            task is scheduled and exec() only waits for the post delay.
        post_delay_ms: Fixed wait after every invocation. None disables it;
            0 still yields to the event loop.
    """

    await_task: bool = False
    post_delay_ms: float | None = 0


@dataclass
class LimiterConfig:
    """
    Rate limiter window settings: at most ``quota`` invocations per
    ``interval_ms`` milliseconds.

    ``options`` of None keeps whatever options the limiter already has when
    passed to ``RateLimiter.set_configs``.
    """

    interval_ms: float = 1000
    quota: int = 100
    options: LimiterOptions | None = None

    def __post_init__(self) -> None:
        if self.interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        if self.quota < 1:
            raise ValueError("quota must be at least 1")


@dataclass(frozen=True)
class ConnectionSettings:
    """Resolved connection parameters for the queue transport."""

    region: str
    access_key_id: str = field(repr=False)
    secret_access_key: str = field(repr=False)
    queue_url: str | None = None
    queue_name: str | None = None
    endpoint_url: str | None = None


class ConsumerConfig(BaseSettings):
    """
    Configuration for a queue consumer (one PollLoop or a WorkerPool).

    All fields are immutable for the lifetime of a worker except the
    limiter settings, which a WorkerPool may hot-swap.

    Example:
        SQS_CONSUMER_QUEUE_URL=https://sqs.eu-west-1.amazonaws.com/123/jobs
        SQS_CONSUMER_CONCURRENCY=4
        SQS_CONSUMER_LIMITER='{"interval_ms": 1000, "quota": 20}'
        AWS_REGION=eu-west-1
    """

    model_config = SettingsConfigDict(
        env_prefix="SQS_CONSUMER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        # Aliases name environment variables only; keyword arguments use field names
        populate_by_name=True,
    )

    # Queue identity
    queue_url: Optional[str] = Field(
        default=None,
        description="Full queue URL. Takes precedence over queue_name.",
    )
    queue_name: Optional[str] = Field(
        default=None,
        description="Queue name, resolved to a URL when the transport connects.",
    )
    endpoint_url: Optional[str] = Field(
        default=None,
        description="Custom SQS endpoint (e.g. a local emulator).",
    )

    # Credentials
    access_key_id: Optional[str] = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices(
            "sqs_consumer_access_key_id", "aws_access_key_id"
        ),
    )
    secret_access_key: Optional[str] = Field(
        default=None,
        repr=False,
        validation_alias=AliasChoices(
            "sqs_consumer_secret_access_key", "aws_secret_access_key"
        ),
    )
    region: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sqs_consumer_region", "aws_region"),
    )

    # Receive parameters
    attribute_names: list[str] = Field(
        default_factory=list,
        description="System attributes to request with each message.",
    )
    message_attribute_names: list[str] = Field(
        default_factory=list,
        description="User message attributes to request with each message.",
    )
    batch_size: int = Field(
        default=10,
        ge=1,
        le=SQS_MAX_BATCH_SIZE,
        description="Maximum messages per receive call.",
    )
    visibility_timeout: Optional[int] = Field(
        default=None,
        ge=0,
        le=43_200,
        description="Seconds a received message stays hidden. None = queue default.",
    )
    wait_time_seconds: int = Field(
        default=20,
        ge=0,
        le=20,
        description="Long-poll wait per receive call.",
    )

    # Worker behaviour
    polling_retry_delay_ms: int = Field(
        default=10_000,
        ge=0,
        description="Fixed wait after a failed receive before polling again.",
    )
    concurrency: int = Field(
        default=1,
        ge=1,
        description="Number of poll loops run by a WorkerPool.",
    )
    limiter: Optional[LimiterConfig] = Field(
        default=None,
        description="Shared rate limiter settings. None = limiter defaults.",
    )

    # HTTP
    http_timeout_padding_seconds: float = Field(
        default=10.0,
        ge=0.0,
        description="Added to wait_time_seconds to form the socket read timeout.",
    )

    @property
    def polling_retry_delay(self) -> float:
        """Polling retry delay in seconds."""
        return self.polling_retry_delay_ms / 1000

    @property
    def read_timeout(self) -> float:
        """Socket read timeout that outlasts one long poll."""
        return self.wait_time_seconds + self.http_timeout_padding_seconds

    def resolve_connection(self) -> ConnectionSettings:
        """
        Resolve connection settings, failing on the first missing field.

        Lookup order per field is: explicit constructor argument, then
        ``SQS_CONSUMER_<FIELD>``, then the standard ``AWS_*`` variable.

        Raises:
            MissingSettingError: naming the field that could not be resolved
        """
        if not self.queue_url and not self.queue_name:
            raise MissingSettingError(
                "queue_url",
                ["queue_url", "queue_name", "SQS_CONSUMER_QUEUE_URL", "SQS_CONSUMER_QUEUE_NAME"],
            )

        for name, env_var in (
            ("access_key_id", "AWS_ACCESS_KEY_ID"),
            ("secret_access_key", "AWS_SECRET_ACCESS_KEY"),
            ("region", "AWS_REGION"),
        ):
            if not getattr(self, name):
                raise MissingSettingError(
                    name,
                    [name, f"SQS_CONSUMER_{name.upper()}", env_var],
                )

        return ConnectionSettings(
            region=self.region,
            access_key_id=self.access_key_id,
            secret_access_key=self.secret_access_key,
            queue_url=self.queue_url,
            queue_name=self.queue_name,
            endpoint_url=self.endpoint_url,
        )
