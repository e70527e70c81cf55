"""
Timer harness for payment sessions.

A session never talks to the event loop directly. It asks a Scheduler to
"run T every N seconds" and cancels the returned timer when its phase ends.
Callbacks may be plain functions or return awaitables (network polls).

Two implementations:
- AsyncioScheduler: production, bound to the running event loop.
- ManualScheduler: virtual clock for tests and simulations, advanced
  explicitly with ``await scheduler.advance(seconds)``.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

logger = logging.getLogger(__name__)

Callback = Callable[[], Union[None, Awaitable[Any]]]


class Timer(Protocol):
    cancelled: bool

    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Interface every session timer goes through."""

    def now(self) -> float:
        ...

    def call_later(self, delay: float, callback: Callback) -> Timer:
        ...

    def call_every(self, interval: float, callback: Callback) -> Timer:
        ...

    def pending(self) -> int:
        """Armed timers plus callbacks still running."""
        ...

    def shutdown(self) -> None:
        ...


# ─────────────────────────────────────────────────────────────────
# Event loop scheduler
# ─────────────────────────────────────────────────────────────────


class _LoopTimer:
    def __init__(
        self,
        scheduler: "AsyncioScheduler",
        delay: float,
        callback: Callback,
        repeat: bool,
    ):
        self._scheduler = scheduler
        self._delay = delay
        self._callback = callback
        self._repeat = repeat
        self._handle: Optional[asyncio.TimerHandle] = None
        self.cancelled = False

    def _arm(self) -> None:
        if self.cancelled:
            return
        self._handle = self._scheduler.loop.call_later(self._delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        if self.cancelled:
            return
        try:
            result = self._callback()
        except Exception:
            logger.exception("⚠️ Timer callback failed")
            result = None

        if inspect.isawaitable(result):
            task = self._scheduler.track(result)
            if self._repeat:
                # Re-arm only after the poll finishes so requests never overlap
                task.add_done_callback(lambda _task: self._arm())
            else:
                self._scheduler.forget(self)
        elif self._repeat:
            self._arm()
        else:
            self._scheduler.forget(self)

    def cancel(self) -> None:
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._scheduler.forget(self)


class AsyncioScheduler:
    """Scheduler backed by ``loop.call_later``.

    Cancelling a timer stops future firings but lets a callback that is
    already awaiting I/O run to completion; ``shutdown()`` cancels those too.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self.loop = loop or asyncio.get_running_loop()
        self._timers: set[_LoopTimer] = set()
        self._tasks: set[asyncio.Task] = set()

    def now(self) -> float:
        return self.loop.time()

    def call_later(self, delay: float, callback: Callback) -> _LoopTimer:
        return self._start(_LoopTimer(self, delay, callback, repeat=False))

    def call_every(self, interval: float, callback: Callback) -> _LoopTimer:
        return self._start(_LoopTimer(self, interval, callback, repeat=True))

    def _start(self, timer: _LoopTimer) -> _LoopTimer:
        self._timers.add(timer)
        timer._arm()
        return timer

    def track(self, awaitable: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(awaitable, loop=self.loop)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def forget(self, timer: _LoopTimer) -> None:
        self._timers.discard(timer)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("⚠️ Scheduled task failed: %r", exc, exc_info=exc)

    def pending(self) -> int:
        return sum(1 for timer in self._timers if not timer.cancelled) + len(self._tasks)

    def shutdown(self) -> None:
        for timer in list(self._timers):
            timer.cancel()
        for task in list(self._tasks):
            task.cancel()
        # Cancelled tasks finish on a later loop turn; they no longer count
        self._tasks.clear()


# ─────────────────────────────────────────────────────────────────
# Virtual clock
# ─────────────────────────────────────────────────────────────────


class _ManualTimer:
    def __init__(self, due: float, interval: Optional[float], callback: Callback):
        self.due = due
        self.interval = interval
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """
    Deterministic scheduler driven by an explicit virtual clock.

    Usage:
        scheduler = ManualScheduler()
        scheduler.call_every(1, tick)
        await scheduler.advance(5)   # fires tick five times

    Timers due at the same instant fire in the order they were armed.
    Awaitables returned by callbacks are awaited inline before the next
    timer fires.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: list[tuple[float, int, _ManualTimer]] = []
        self._seq = itertools.count()
        self._running = 0

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callback) -> _ManualTimer:
        timer = _ManualTimer(self._now + delay, None, callback)
        self._push(timer)
        return timer

    def call_every(self, interval: float, callback: Callback) -> _ManualTimer:
        timer = _ManualTimer(self._now + interval, interval, callback)
        self._push(timer)
        return timer

    def _push(self, timer: _ManualTimer) -> None:
        heapq.heappush(self._queue, (timer.due, next(self._seq), timer))

    def pending(self) -> int:
        return sum(1 for _, _, timer in self._queue if not timer.cancelled) + self._running

    def shutdown(self) -> None:
        for _, _, timer in self._queue:
            timer.cancel()
        self._queue.clear()

    async def advance(self, seconds: float = 0.0) -> None:
        target = self._now + seconds
        while self._queue and self._queue[0][0] <= target:
            due, _, timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self._now = max(self._now, due)
            if timer.interval is not None:
                # Re-armed before running so the callback can cancel itself
                timer.due = due + timer.interval
                self._push(timer)
            result = timer.callback()
            if inspect.isawaitable(result):
                self._running += 1
                try:
                    await result
                finally:
                    self._running -= 1
        self._now = max(self._now, target)
