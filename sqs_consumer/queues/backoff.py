"""
Exponential backoff utility for bounded retries.

Provides jittered delay calculation and a retry helper for one-off calls
(queue URL resolution, health checks) that should ride out transient
failures. The poll loop does not use this: it retries with a fixed delay
because long polling already bounds its request rate.
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ExponentialBackoff:
    """
    Exponential backoff with half-spread jitter.

    Computes the raw delay for attempt k as min(base * multiplier^k, max_delay)
    and draws the actual delay uniformly from [raw / 2, raw], so a delay is
    never above the cap nor below half of the un-jittered value.

    Usage:
        backoff = ExponentialBackoff(base_delay=0.05, max_delay=1.0)
        while True:
            try:
                await do_work()
                backoff.reset()
            except Exception:
                await asyncio.sleep(backoff.next_delay())
    """

    def __init__(
        self,
        base_delay: float = 0.05,
        max_delay: float = 1.0,
        multiplier: float = 2.0,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self._attempt = 0

    @property
    def attempt(self) -> int:
        """Number of failed attempts recorded so far."""
        return self._attempt

    def raw_delay(self, attempt: int) -> float:
        """Un-jittered delay to wait after failed attempt number ``attempt`` (1-indexed)."""
        attempt = max(0, int(attempt))
        return min(self.base_delay * (self.multiplier ** attempt), self.max_delay)

    @staticmethod
    def apply_jitter(delay: float) -> float:
        """Draw a delay uniformly from [delay / 2, delay]."""
        start = delay / 2
        return start + random.random() * (delay - start)

    def next_delay(self) -> float:
        """Record a failed attempt and return the jittered delay before the next one."""
        self._attempt += 1
        return self.apply_jitter(self.raw_delay(self._attempt))

    def reset(self) -> None:
        """Reset the attempt counter after a successful operation."""
        self._attempt = 0


async def run_with_backoff(
    task: Callable[[], Awaitable[T]],
    max_attempts: int = 5,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
) -> T:
    """
    Await ``task`` until it succeeds or ``max_attempts`` attempts have failed.

    Between attempt k and k+1 waits a jittered min(base_delay * 2^k, max_delay)
    seconds. The error of the final attempt is re-raised unchanged.

    Args:
        task: Zero-argument coroutine function to attempt
        max_attempts: Total attempts including the first
        base_delay: Base delay in seconds
        max_delay: Upper bound for any single delay in seconds

    Returns:
        The task's result from the first successful attempt
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    backoff = ExponentialBackoff(base_delay=base_delay, max_delay=max_delay)
    while True:
        try:
            return await task()
        except Exception as e:
            if backoff.attempt + 1 >= max_attempts:
                raise
            delay = backoff.next_delay()
            logger.debug(
                "Retrying after failure",
                attempt=backoff.attempt,
                max_attempts=max_attempts,
                delay=round(delay, 3),
                error=str(e),
            )
            await asyncio.sleep(delay)
