"""
Request throttling for the OpenPhone API client.

Three independent limits apply to every request:

- ConcurrencyGate bounds how many requests are in flight at once
- QuotaWindow enforces the local per-minute and per-hour budget
- RemoteRateLimit tracks the x-ratelimit-* headers OpenPhone returns and
  pauses when the remote budget is nearly spent

All three are owned by one OpenPhoneAPI instance; there is no module-level
state, so two clients never share (or corrupt) each other's counters.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Requests left below which we wait for the remote window to reset
REMOTE_RESERVE = 5

# Extra second added when waiting for a remote reset
RESET_BUFFER_SECONDS = 1.0

DEFAULT_REMOTE_LIMIT = 60
DEFAULT_REMOTE_WINDOW_SECONDS = 60.0

MINUTE = 60.0
HOUR = 3600.0

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]


class ConcurrencyGate:
    """
    Bounded pool of request slots.

    Waiters are served in arrival order. Use as an async context manager so
    the slot is released on every exit path:

        async with gate:
            response = await client.send(request)

    Attributes:
        limit: Maximum number of concurrent holders
        in_flight: Current number of holders
        peak: Highest number of simultaneous holders observed
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError(f"Concurrency limit must be >= 1, got {limit}")
        self.limit = limit
        self.in_flight = 0
        self.peak = 0
        self._semaphore = asyncio.Semaphore(limit)

    async def __aenter__(self) -> ConcurrencyGate:
        await self._semaphore.acquire()
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        self.in_flight -= 1
        self._semaphore.release()

    @property
    def available(self) -> int:
        return self.limit - self.in_flight


class QuotaWindow:
    """
    Local per-minute and per-hour request budget.

    Each counter resets when its window expires. acquire() suspends until
    both budgets have room, then consumes one request from each.

    Args:
        per_minute: Requests allowed per minute
        per_hour: Requests allowed per hour
        clock: Monotonic clock in seconds (injectable for tests)
        sleep: Coroutine used to wait (injectable for tests)
    """

    def __init__(
        self,
        per_minute: int,
        per_hour: int,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ):
        self.per_minute = per_minute
        self.per_hour = per_hour
        self._clock = clock
        self._sleep = sleep

        now = clock()
        self.minute_count = 0
        self.hour_count = 0
        self.minute_reset_at = now + MINUTE
        self.hour_reset_at = now + HOUR

    def _roll_windows(self, now: float) -> None:
        if now >= self.minute_reset_at:
            self.minute_count = 0
            self.minute_reset_at = now + MINUTE
        if now >= self.hour_reset_at:
            self.hour_count = 0
            self.hour_reset_at = now + HOUR

    async def acquire(self) -> None:
        """Wait for room in both windows and record one request."""
        while True:
            now = self._clock()
            self._roll_windows(now)

            minute_full = self.minute_count >= self.per_minute
            hour_full = self.hour_count >= self.per_hour
            if not minute_full and not hour_full:
                self.minute_count += 1
                self.hour_count += 1
                return

            wait = 0.0
            if minute_full:
                wait = max(wait, self.minute_reset_at - now)
            if hour_full:
                wait = max(wait, self.hour_reset_at - now)

            logger.info(
                f"Local quota reached ({self.minute_count}/{self.per_minute} per "
                f"minute, {self.hour_count}/{self.per_hour} per hour), "
                f"waiting {wait:.1f}s"
            )
            await self._sleep(wait)


@dataclass(frozen=True)
class RateLimitStatus:
    """Snapshot of the remote rate-limit state."""

    remaining: int
    limit: int
    reset_at: float  # epoch seconds


def parse_reset(value: str, now: float) -> Optional[float]:
    """
    Convert an x-ratelimit-reset header to epoch seconds.

    OpenPhone has sent epoch milliseconds, epoch seconds and a
    seconds-from-now delta at different times; all three are accepted.

    Returns:
        Epoch seconds, or None when the value is not a number
    """
    try:
        raw = float(value)
    except (TypeError, ValueError):
        return None

    if raw > 1e12:
        return raw / 1000.0
    if raw > 1e9:
        return raw
    return now + raw


class RemoteRateLimit:
    """
    Remote rate-limit state reported by OpenPhone response headers.

    Args:
        clock: Wall clock in epoch seconds (injectable for tests)
        sleep: Coroutine used to wait (injectable for tests)
        reserve: Remaining count at or below which requests pause
    """

    def __init__(
        self,
        clock: Clock = time.time,
        sleep: Sleep = asyncio.sleep,
        reserve: int = REMOTE_RESERVE,
    ):
        self._clock = clock
        self._sleep = sleep
        self.reserve = reserve
        self._reset_state(clock())

    def _reset_state(self, now: float) -> None:
        self.remaining = DEFAULT_REMOTE_LIMIT
        self.limit = DEFAULT_REMOTE_LIMIT
        self.reset_at = now + DEFAULT_REMOTE_WINDOW_SECONDS

    def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Record x-ratelimit-* headers; absent or malformed headers are ignored."""
        now = self._clock()

        remaining = headers.get("x-ratelimit-remaining")
        if remaining is not None:
            try:
                self.remaining = int(float(remaining))
            except ValueError:
                logger.debug(f"Ignoring malformed x-ratelimit-remaining: {remaining!r}")

        limit = headers.get("x-ratelimit-limit")
        if limit is not None:
            try:
                self.limit = int(float(limit))
            except ValueError:
                logger.debug(f"Ignoring malformed x-ratelimit-limit: {limit!r}")

        reset = headers.get("x-ratelimit-reset")
        if reset is not None:
            reset_at = parse_reset(reset, now)
            if reset_at is not None:
                self.reset_at = reset_at

    async def wait_if_needed(self) -> None:
        """Pause until the remote window resets if the budget is nearly spent."""
        now = self._clock()
        if now >= self.reset_at:
            self._reset_state(now)
            return

        if self.remaining <= self.reserve:
            wait = self.reset_at - now + RESET_BUFFER_SECONDS
            logger.warning(
                f"Remote rate limit nearly exhausted ({self.remaining}/{self.limit}), "
                f"waiting {wait:.1f}s for reset"
            )
            await self._sleep(wait)
            self._reset_state(self._clock())

    def status(self) -> RateLimitStatus:
        return RateLimitStatus(
            remaining=self.remaining, limit=self.limit, reset_at=self.reset_at
        )
