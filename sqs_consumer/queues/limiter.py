"""
Fixed-window rate limiter shared by concurrent poll loops.

Allows at most ``quota`` task invocations per window of ``interval_ms``.
A window starts at ``window_start`` and rolls over once the clock passes
``window_start + interval_ms``. All workers of a pool call ``exec`` on one
instance, so the window check, reset and increment run under an
``asyncio.Lock``; a caller that has to wait for the next window waits while
holding the lock, which queues the other callers behind it.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from sqs_consumer.observability.metrics import get_metrics
from sqs_consumer.queues.config import LimiterConfig, LimiterOptions

logger = structlog.get_logger(__name__)

Task = Callable[[], Awaitable[Any]]


class RateLimiter:
    """
    Rate limiter enforcing "at most quota invocations per interval".

    Usage:
        limiter = RateLimiter(LimiterConfig(interval_ms=1000, quota=5))
        await limiter.exec(lambda: handle(message))

        # Hot-swap limits; the next exec first waits out the current window
        limiter.set_configs(LimiterConfig(interval_ms=1000, quota=50))
    """

    def __init__(self, config: LimiterConfig | None = None):
        self._interval_ms: float = 1000
        self._quota: int = 100
        self._options = LimiterOptions()
        self._invoked_count = 0
        self._window_start = 0.0
        self._pending_reconfig_delay_ms: float | None = None
        self._lock = asyncio.Lock()
        self._background: set[asyncio.Future] = set()

        self.set_configs(config or LimiterConfig(), immediate=True)

    @property
    def interval_ms(self) -> float:
        return self._interval_ms

    @property
    def quota(self) -> int:
        return self._quota

    @property
    def options(self) -> LimiterOptions:
        return self._options

    @property
    def invoked_count(self) -> int:
        """Invocations counted in the current window."""
        return self._invoked_count

    @property
    def window_start(self) -> float:
        return self._window_start

    @property
    def pending_reconfig_delay_ms(self) -> float | None:
        """Remaining time of a superseded window, waited once by the next exec."""
        return self._pending_reconfig_delay_ms

    async def exec(self, task: Task) -> None:
        """
        Run ``task`` once the window allows it.

        Returns after the task has been invoked (and awaited, when
        ``options.await_task`` is set) and the post delay has elapsed.
        """
        async with self._lock:
            if self._pending_reconfig_delay_ms:
                await self._wait(self._pending_reconfig_delay_ms)
                # Only the first caller after a reconfiguration waits
                self._pending_reconfig_delay_ms = None

            if self._invoked_count >= self._quota:
                await self._wait_for_window()

            if self._now() >= self._window_start + self._interval_ms:
                self._reset_window()

            self._invoked_count += 1

            # Read before invoking; set_configs may swap them mid-task
            await_task = self._options.await_task
            post_delay_ms = self._options.post_delay_ms

        if await_task:
            await task()
        else:
            self._schedule(task)

        if post_delay_ms is not None and post_delay_ms >= 0:
            await self._wait(post_delay_ms)

    def set_configs(self, config: LimiterConfig, immediate: bool = False) -> None:
        """
        Apply new window settings and start a fresh window.

        When ``immediate`` is False the remaining time of the current window
        is captured now and waited once by the next ``exec`` call before the
        new limits apply. The new settings still take effect right after that
        single wait rather than at the old window's natural rollover.

        Args:
            config: New interval, quota and (optionally) options
            immediate: Skip the one-time wait for the current window
        """
        self._pending_reconfig_delay_ms = None if immediate else self.remaining_ms()

        self._interval_ms = config.interval_ms
        self._quota = config.quota
        if config.options is not None:
            self._options = LimiterOptions(
                await_task=config.options.await_task,
                post_delay_ms=config.options.post_delay_ms,
            )

        self._reset_window()

        logger.info(
            "Rate limiter configured",
            interval_ms=self._interval_ms,
            quota=self._quota,
            immediate=immediate,
            pending_delay_ms=self._pending_reconfig_delay_ms,
        )

    def remaining_ms(self) -> float:
        """Milliseconds until the current window rolls over, never negative."""
        remaining = self._window_start + self._interval_ms + 1 - self._now()
        return remaining if remaining > 0 else 0

    async def drain(self) -> None:
        """Wait for tasks that were scheduled without being awaited."""
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def _wait_for_window(self) -> None:
        remaining = self.remaining_ms()
        if not remaining:
            return
        get_metrics().record_limiter_wait(remaining / 1000)
        logger.debug(
            "Quota reached, waiting for next window",
            quota=self._quota,
            wait_ms=round(remaining, 1),
        )
        await self._wait(remaining)

    def _reset_window(self) -> None:
        self._invoked_count = 0
        self._window_start = self._now()

    def _schedule(self, task: Task) -> None:
        future = asyncio.ensure_future(task())
        self._background.add(future)
        future.add_done_callback(self._on_background_done)

    def _on_background_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            logger.error("Rate-limited task failed", error=str(exc), error_type=type(exc).__name__)

    async def _wait(self, ms: float) -> None:
        await asyncio.sleep(ms / 1000)

    def _now(self) -> float:
        """Current time in milliseconds."""
        return time.monotonic() * 1000
