"""Process-wide runtime settings read from the environment."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Logging, metrics and tracing switches for a consumer process.

    Variables are unprefixed (LOG_LEVEL, METRICS_PORT, TRACING_ENABLED, ...)
    so they match what container platforms and OTel tooling already set.
    Queue and worker settings are separate: see ConsumerConfig.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: Literal["development", "staging", "production"] = "development"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    debug: bool = False

    metrics_port: int = Field(default=8000, ge=1, le=65535)

    tracing_enabled: bool = False
    otel_exporter_otlp_endpoint: str | None = None
    otel_service_name: str = "sqs-consumer"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Settings loaded once per process; call get_settings.cache_clear() to reload."""
    return Settings()
