"""
test_countdown.py — Unit tests for core/countdown.py.

All timers use a zero interval so the suite runs without real one-second
waits.  Callbacks only record what they observe.
"""
from __future__ import annotations

import asyncio

import pytest

from core.countdown import CountdownState, CountdownTimer


# ── Helpers ────────────────────────────────────────────────────────────────
class _Recorder:
    def __init__(self) -> None:
        self.ticks: list = []
        self.completed = 0
        self.cancelled = 0

    def tick(self, remaining: int) -> None:
        self.ticks.append(remaining)

    async def async_tick(self, remaining: int) -> None:
        await asyncio.sleep(0)
        self.ticks.append(remaining)

    def complete(self) -> None:
        self.completed += 1

    async def abort(self) -> None:
        self.cancelled += 1


def _timer(seconds: int) -> CountdownTimer:
    return CountdownTimer(seconds, interval=0)


# ── start ──────────────────────────────────────────────────────────────────
class TestStart:
    @pytest.mark.parametrize("seconds", [5, 12, 30])
    async def test_ticks_every_second_down_to_zero(self, seconds: int) -> None:
        rec = _Recorder()
        t = _timer(seconds)
        assert t.start(rec.async_tick, rec.complete)
        await asyncio.wait_for(t.wait(), timeout=2.0)
        assert rec.ticks == list(range(seconds, -1, -1))
        assert rec.completed == 1
        assert t.state is CountdownState.IDLE

    async def test_first_tick_reports_full_duration(self) -> None:
        rec = _Recorder()
        t = CountdownTimer(7, interval=30)
        t.start(rec.tick, rec.complete)
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert rec.ticks == [7]
        assert t.remaining_seconds == 7
        assert t.has_pending_wait
        t.dispose()

    async def test_rejects_double_start(self) -> None:
        rec = _Recorder()
        t = CountdownTimer(10, interval=30)
        assert t.start(rec.tick, rec.complete)
        await asyncio.sleep(0)
        assert t.start(rec.tick, rec.complete) is False
        await asyncio.sleep(0)
        assert rec.ticks == [10]
        assert t.remaining_seconds == 10
        t.dispose()

    async def test_zero_duration_completes_after_single_tick(self) -> None:
        rec = _Recorder()
        t = _timer(0)
        t.start(rec.tick, rec.complete)
        await asyncio.wait_for(t.wait(), timeout=1.0)
        assert rec.ticks == [0]
        assert rec.completed == 1

    async def test_state_is_idle_when_completion_runs(self) -> None:
        seen = []
        t = _timer(1)
        t.start(lambda remaining: None, lambda: seen.append(t.state))
        await asyncio.wait_for(t.wait(), timeout=1.0)
        assert seen == [CountdownState.IDLE]

    async def test_can_restart_after_completion(self) -> None:
        rec = _Recorder()
        t = _timer(1)
        t.start(rec.tick, rec.complete)
        await asyncio.wait_for(t.wait(), timeout=1.0)
        assert t.start(rec.tick, rec.complete)
        await asyncio.wait_for(t.wait(), timeout=1.0)
        assert rec.ticks == [1, 0, 1, 0]
        assert rec.completed == 2


# ── cancel ─────────────────────────────────────────────────────────────────
class TestCancel:
    async def test_cancel_when_idle_returns_false(self) -> None:
        rec = _Recorder()
        t = _timer(5)
        assert await t.cancel(rec.abort) is False
        assert rec.cancelled == 0

    async def test_cancel_while_waiting_stops_ticks(self) -> None:
        rec = _Recorder()
        t = CountdownTimer(10, interval=30)
        t.start(rec.tick, rec.complete)
        await asyncio.sleep(0)
        assert await t.cancel(rec.abort) is True
        assert rec.cancelled == 1
        assert not t.has_pending_wait
        assert t.state is CountdownState.IDLE
        assert t.remaining_seconds == 0
        assert rec.ticks == [10]
        assert rec.completed == 0

    async def test_cancel_mid_tick_stops_permanently(self) -> None:
        rec = _Recorder()
        t = _timer(10)

        async def on_tick(remaining: int) -> None:
            rec.ticks.append(remaining)
            if remaining == 6:
                await t.cancel(rec.abort)

        t.start(on_tick, rec.complete)
        await asyncio.wait_for(t.wait(), timeout=1.0)
        for _ in range(5):
            await asyncio.sleep(0)
        assert rec.ticks == [10, 9, 8, 7, 6]
        assert min(rec.ticks) == 6
        assert rec.cancelled == 1
        assert rec.completed == 0

    async def test_state_is_cancelled_while_callback_runs(self) -> None:
        seen = []
        t = CountdownTimer(5, interval=30)
        t.start(lambda remaining: None, lambda: None)
        await asyncio.sleep(0)
        await t.cancel(lambda: seen.append(t.state))
        assert seen == [CountdownState.CANCELLED]
        assert t.state is CountdownState.IDLE

    async def test_cancel_without_callback(self) -> None:
        t = CountdownTimer(5, interval=30)
        t.start(lambda remaining: None, lambda: None)
        assert await t.cancel() is True


# ── dispose ────────────────────────────────────────────────────────────────
class TestDispose:
    async def test_dispose_releases_wait_without_callbacks(self) -> None:
        rec = _Recorder()
        t = CountdownTimer(10, interval=30)
        t.start(rec.tick, rec.complete)
        await asyncio.sleep(0)
        t.dispose()
        assert not t.has_pending_wait
        assert t.state is CountdownState.IDLE
        assert t.remaining_seconds == 0
        assert rec.completed == 0
        await asyncio.wait_for(t.wait(), timeout=1.0)

    def test_dispose_is_safe_when_never_started(self) -> None:
        t = _timer(5)
        t.dispose()
        assert t.state is CountdownState.IDLE

    async def test_failing_tick_resets_to_idle(self) -> None:
        def boom(remaining: int) -> None:
            raise RuntimeError("render failed")

        t = _timer(5)
        t.start(boom, lambda: None)
        await asyncio.wait_for(t.wait(), timeout=1.0)
        assert t.state is CountdownState.IDLE
