"""sqs-consumer: rate-limited, multi-worker SQS consumer engine."""

__version__ = "0.1.0"
