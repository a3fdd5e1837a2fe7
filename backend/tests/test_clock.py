"""
Tests for the deadline clock
"""
import asyncio
from datetime import datetime, timedelta

import pytest
import pytz

from quizproctor.engine.clock import DeadlineClock, remaining_ms
from quizproctor.engine.guard import StopGuard

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=pytz.UTC)


class FakeNow:
    def __init__(self, value: datetime):
        self.value = value

    def __call__(self):
        return self.value

    def advance(self, **kwargs):
        self.value += timedelta(**kwargs)


class TestRemainingTime:
    """remaining = max(0, startedAt + duration - now)"""

    def test_counts_down_from_start(self):
        assert remaining_ms(T0, 3600, T0) == 3_600_000
        assert remaining_ms(T0, 3600, T0 + timedelta(minutes=15)) == 2_700_000

    def test_clamped_at_zero(self):
        assert remaining_ms(T0, 3600, T0 + timedelta(minutes=61)) == 0

    def test_naive_start_is_treated_as_utc(self):
        naive = T0.replace(tzinfo=None)
        assert remaining_ms(naive, 60, T0 + timedelta(seconds=30)) == 30_000

    def test_rejects_non_positive_duration(self):
        async def noop():
            return None

        with pytest.raises(ValueError):
            DeadlineClock(T0, 0, on_expire=noop)


class TestDeadlineClock:

    def make_clock(self, now, duration_seconds=3600, **kwargs):
        self.expired_calls = 0
        self.warnings = []

        async def on_expire():
            self.expired_calls += 1

        return DeadlineClock(
            T0,
            duration_seconds,
            on_expire=on_expire,
            on_warning=self.warnings.append,
            warning_threshold_seconds=300,
            now=now,
            **kwargs,
        )

    @pytest.mark.asyncio
    async def test_tick_recomputes_from_wall_clock(self):
        now = FakeNow(T0)
        clock = self.make_clock(now)

        assert await clock.tick() == 3_600_000
        # A suspended tab wakes up 40 minutes later: no drift
        now.advance(minutes=40)
        assert await clock.tick() == 1_200_000
        assert clock.remaining_seconds == 1200

    @pytest.mark.asyncio
    async def test_low_time_warning_fires_once(self):
        now = FakeNow(T0 + timedelta(minutes=54))
        clock = self.make_clock(now)

        await clock.tick()
        assert self.warnings == []

        now.advance(minutes=1, seconds=30)
        await clock.tick()
        now.advance(seconds=30)
        await clock.tick()
        assert len(self.warnings) == 1
        assert self.warnings[0] == 270_000

    @pytest.mark.asyncio
    async def test_sixty_minute_quiz_at_sixty_one_minutes(self):
        now = FakeNow(T0 + timedelta(minutes=61))
        clock = self.make_clock(now)

        assert clock.remaining_ms() == 0
        assert clock.expired
        for _ in range(3):
            await clock.tick()
        assert self.expired_calls == 1
        assert clock.triggered

    @pytest.mark.asyncio
    async def test_rearm_allows_retry(self):
        now = FakeNow(T0 + timedelta(hours=2))
        clock = self.make_clock(now)

        await clock.tick()
        clock.rearm()
        await clock.tick()
        await clock.tick()
        assert self.expired_calls == 2

    @pytest.mark.asyncio
    async def test_stopped_guard_silences_ticks(self):
        now = FakeNow(T0 + timedelta(hours=2))
        guard = StopGuard()
        clock = self.make_clock(now, guard=guard)
        guard.try_set()

        await clock.tick()
        assert self.expired_calls == 0

    @pytest.mark.asyncio
    async def test_started_clock_expires_immediately_past_deadline(self):
        now = FakeNow(T0 + timedelta(minutes=61))
        clock = self.make_clock(now, tick_seconds=0.01)
        clock.start()
        await asyncio.sleep(0.05)
        clock.stop()

        assert self.expired_calls == 1
        assert not clock.running
