"""
countdown.py — Second-granularity countdown driven by the asyncio loop.

The wait between ticks is a single ``asyncio.TimerHandle`` so cancellation
is instant and nothing is left pending after ``cancel()`` or ``dispose()``.
"""
from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

LOGGER = logging.getLogger(__name__)

TickCallback = Callable[[int], Union[Awaitable[None], None]]
DoneCallback = Callable[[], Union[Awaitable[None], None]]


class CountdownState(str, Enum):
    IDLE      = "idle"
    RUNNING   = "running"
    CANCELLED = "cancelled"


async def _call(result: Any) -> None:
    """Await *result* if the callback returned an awaitable."""
    if inspect.isawaitable(result):
        await result


class CountdownTimer:
    """Counts down from a fixed duration, one tick per interval.

    Usage::

        t = CountdownTimer(10)
        t.start(on_tick=render, on_complete=power_off)
        # … later …
        await t.cancel(on_cancel=abort)

    Every tick awaits ``on_tick(remaining)`` before the next wait is
    scheduled, so ticks never overlap.  A timer is meant for one countdown
    run; callers create a fresh one for each start from idle.
    """

    def __init__(self, duration_seconds: int, interval: float = 1.0) -> None:
        self._duration = duration_seconds
        self._interval = interval
        self._state = CountdownState.IDLE
        self._remaining = 0
        self._handle: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._finished: Optional[asyncio.Event] = None

    # ── State inspection ───────────────────────────────────────────────────
    @property
    def state(self) -> CountdownState:
        return self._state

    @property
    def duration_seconds(self) -> int:
        return self._duration

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def is_running(self) -> bool:
        return self._state is CountdownState.RUNNING

    @property
    def has_pending_wait(self) -> bool:
        """True while a scheduled tick is waiting on the loop.

        Inspection hook for tests; the plugin itself never reads it.
        """
        return self._handle is not None

    # ── Public API ─────────────────────────────────────────────────────────
    def start(self, on_tick: TickCallback, on_complete: DoneCallback) -> bool:
        """Begin counting down.  Returns False if a countdown is already running.

        Must be called from inside a running event loop.
        """
        if self._state is CountdownState.RUNNING:
            return False

        self._state = CountdownState.RUNNING
        self._remaining = self._duration
        self._finished = asyncio.Event()
        self._schedule_tick(on_tick, on_complete)
        return True

    async def cancel(self, on_cancel: Optional[DoneCallback] = None) -> bool:
        """Stop the countdown.  Returns False (and skips *on_cancel*) when idle."""
        if self._state is not CountdownState.RUNNING:
            return False

        self._release_wait()
        self._state = CountdownState.CANCELLED
        self._remaining = 0

        try:
            if on_cancel is not None:
                await _call(on_cancel())
        finally:
            self._state = CountdownState.IDLE
            self._mark_finished()
        return True

    def dispose(self) -> None:
        """Halt and reset without invoking any callback."""
        self._release_wait()
        self._remaining = 0
        self._state = CountdownState.IDLE
        self._mark_finished()

    async def wait(self) -> None:
        """Block until the current run completes, is cancelled or disposed.

        Lets tests drive a countdown to its end; the plugin does not await it.
        """
        if self._finished is not None:
            await self._finished.wait()

    # ── Internal ───────────────────────────────────────────────────────────
    def _schedule_tick(self, on_tick: TickCallback, on_complete: DoneCallback) -> None:
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._run_tick(on_tick, on_complete))
        self._task.add_done_callback(self._log_failure)

    async def _run_tick(self, on_tick: TickCallback, on_complete: DoneCallback) -> None:
        try:
            await _call(on_tick(self._remaining))
        except Exception:
            self.dispose()
            raise

        # cancelled while on_tick was suspended
        if self._state is not CountdownState.RUNNING:
            return

        if self._remaining == 0:
            self._handle = None
            self._state = CountdownState.IDLE
            try:
                await _call(on_complete())
            finally:
                self._mark_finished()
            return

        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval, self._on_interval, on_tick, on_complete)

    def _on_interval(self, on_tick: TickCallback, on_complete: DoneCallback) -> None:
        self._handle = None
        if self._state is not CountdownState.RUNNING:
            return
        self._remaining -= 1
        self._schedule_tick(on_tick, on_complete)

    def _release_wait(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _mark_finished(self) -> None:
        if self._finished is not None:
            self._finished.set()

    @staticmethod
    def _log_failure(task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            LOGGER.error("countdown callback failed", exc_info=error)
