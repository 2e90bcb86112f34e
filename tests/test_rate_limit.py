"""Tests for request throttling."""

import asyncio

import pytest

from openphone_sync.api.rate_limit import (
    RESET_BUFFER_SECONDS,
    ConcurrencyGate,
    QuotaWindow,
    RemoteRateLimit,
    parse_reset,
)


class FakeClock:
    """Clock whose sleep advances time instead of waiting."""

    def __init__(self, now=1_000.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, delay):
        self.sleeps.append(delay)
        self.now += delay


class TestConcurrencyGate:
    """Tests for ConcurrencyGate."""

    def test_invalid_limit(self):
        """A limit below one is rejected."""
        with pytest.raises(ValueError):
            ConcurrencyGate(0)

    async def test_peak_never_exceeds_limit(self):
        """No more than `limit` holders are ever inside the gate."""
        gate = ConcurrencyGate(3)

        async def hold():
            async with gate:
                await asyncio.sleep(0.01)

        await asyncio.gather(*(hold() for _ in range(12)))

        assert gate.peak == 3
        assert gate.in_flight == 0

    async def test_slot_released_on_error(self):
        """A slot is returned when the body raises."""
        gate = ConcurrencyGate(1)

        with pytest.raises(RuntimeError):
            async with gate:
                raise RuntimeError("boom")

        assert gate.available == 1


class TestQuotaWindow:
    """Tests for the local per-minute and per-hour budget."""

    async def test_within_budget_does_not_wait(self):
        """Requests inside the budget pass immediately."""
        clock = FakeClock()
        quota = QuotaWindow(3, 100, clock=clock, sleep=clock.sleep)

        for _ in range(3):
            await quota.acquire()

        assert clock.sleeps == []
        assert quota.minute_count == 3

    async def test_minute_budget_waits_for_reset(self):
        """The request after the minute budget waits for the window to roll."""
        clock = FakeClock()
        quota = QuotaWindow(2, 100, clock=clock, sleep=clock.sleep)

        await quota.acquire()
        clock.now += 10
        await quota.acquire()
        await quota.acquire()

        assert clock.sleeps == [50.0]
        assert quota.minute_count == 1
        assert quota.hour_count == 3

    async def test_hour_budget(self):
        """The hour budget is enforced independently."""
        clock = FakeClock()
        quota = QuotaWindow(100, 2, clock=clock, sleep=clock.sleep)

        await quota.acquire()
        await quota.acquire()
        await quota.acquire()

        assert clock.sleeps == [3600.0]


class TestParseReset:
    """Tests for x-ratelimit-reset parsing."""

    def test_epoch_milliseconds(self):
        """Millisecond timestamps are converted to seconds."""
        assert parse_reset("1700000000000", now=0) == 1_700_000_000.0

    def test_epoch_seconds(self):
        """Second timestamps are used as is."""
        assert parse_reset("1700000000", now=0) == 1_700_000_000.0

    def test_delta_seconds(self):
        """Small values are a delta from now."""
        assert parse_reset("30", now=1_000.0) == 1_030.0

    def test_garbage(self):
        """Non-numeric values are ignored."""
        assert parse_reset("soon", now=0) is None


class TestRemoteRateLimit:
    """Tests for remote rate-limit tracking."""

    def test_headers_recorded(self):
        """Header values are stored and reported by status()."""
        clock = FakeClock()
        remote = RemoteRateLimit(clock=clock, sleep=clock.sleep)

        remote.update_from_headers(
            {
                "x-ratelimit-remaining": "42",
                "x-ratelimit-limit": "100",
                "x-ratelimit-reset": "20",
            }
        )

        status = remote.status()
        assert status.remaining == 42
        assert status.limit == 100
        assert status.reset_at == 1_020.0

    def test_malformed_headers_ignored(self):
        """Malformed values leave the previous state in place."""
        clock = FakeClock()
        remote = RemoteRateLimit(clock=clock, sleep=clock.sleep)

        remote.update_from_headers({"x-ratelimit-remaining": "lots"})

        assert remote.remaining == 60

    async def test_waits_when_nearly_exhausted(self):
        """A nearly spent budget pauses until the reset plus a buffer."""
        clock = FakeClock()
        remote = RemoteRateLimit(clock=clock, sleep=clock.sleep)
        remote.update_from_headers(
            {"x-ratelimit-remaining": "2", "x-ratelimit-reset": "10"}
        )

        await remote.wait_if_needed()

        assert clock.sleeps == [10 + RESET_BUFFER_SECONDS]
        assert remote.remaining == 60

    async def test_no_wait_with_budget_left(self):
        """Plenty of remaining budget means no pause."""
        clock = FakeClock()
        remote = RemoteRateLimit(clock=clock, sleep=clock.sleep)
        remote.update_from_headers({"x-ratelimit-remaining": "50"})

        await remote.wait_if_needed()

        assert clock.sleeps == []

    async def test_expired_window_resets(self):
        """Once the reset time passes the state starts over."""
        clock = FakeClock()
        remote = RemoteRateLimit(clock=clock, sleep=clock.sleep)
        remote.update_from_headers(
            {"x-ratelimit-remaining": "1", "x-ratelimit-reset": "5"}
        )
        clock.now += 6

        await remote.wait_if_needed()

        assert clock.sleeps == []
        assert remote.remaining == 60
