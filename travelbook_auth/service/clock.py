"""Clock and timer abstraction driving every time-based transition.

Services never touch the event loop or wall clock directly: they ask a
``Clock`` for ``now()`` and schedule work with ``call_later``. Production
code uses ``LoopClock``; tests use ``VirtualClock`` and move time forward
explicitly with ``await clock.advance(seconds)``.
"""

from __future__ import annotations

import asyncio
import heapq
import inspect
import itertools
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Protocol, Set, Tuple

from travelbook_auth.logging import get_logger

logger = get_logger(__name__)

TimerCallback = Callable[[], Any]


class TimerHandle(Protocol):
    def cancel(self) -> None: ...

    def cancelled(self) -> bool: ...


class Clock(Protocol):
    def now(self) -> datetime: ...

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle: ...


class _LoopTimer:
    """Loop handle that also reports cancelled once its callback has run."""

    def __init__(self) -> None:
        self.handle: Optional[asyncio.TimerHandle] = None
        self._done = False

    def cancel(self) -> None:
        self._done = True
        if self.handle is not None:
            self.handle.cancel()

    def cancelled(self) -> bool:
        return self._done


class LoopClock:
    """Wall clock backed by the running asyncio loop.

    Coroutine callbacks are wrapped in tasks; failures are logged rather than
    lost with the task.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        timer = _LoopTimer()
        timer.handle = loop.call_later(max(0.0, delay), self._invoke, timer, callback)
        return timer

    def _invoke(self, timer: _LoopTimer, callback: TimerCallback) -> None:
        if timer.cancelled():
            return
        timer._done = True
        try:
            result = callback()
        except Exception as exc:
            logger.error("timer_callback_failed", error=str(exc), error_type=type(exc).__name__)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("timer_callback_failed", error=str(exc), error_type=type(exc).__name__)

    async def aclose(self) -> None:
        """Cancel callbacks still running from fired timers."""
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()


class _VirtualTimer:
    def __init__(self, deadline: datetime, callback: TimerCallback) -> None:
        self.deadline = deadline
        self.callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class VirtualClock:
    """Deterministic clock for tests.

    Time only moves inside ``advance``. Due timers fire in deadline order (ties
    in scheduling order) and coroutine callbacks are awaited before the next
    timer fires. Callback exceptions propagate to the caller of ``advance``.
    """

    def __init__(self, start: Optional[datetime] = None) -> None:
        self._now = start or datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)
        self._timers: List[Tuple[datetime, int, _VirtualTimer]] = []
        self._seq = itertools.count()

    def now(self) -> datetime:
        return self._now

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        timer = _VirtualTimer(self._now + timedelta(seconds=max(0.0, delay)), callback)
        heapq.heappush(self._timers, (timer.deadline, next(self._seq), timer))
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for _, _, timer in self._timers if not timer.cancelled())

    async def advance(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=seconds)
        while self._timers and self._timers[0][0] <= target:
            deadline, _, timer = heapq.heappop(self._timers)
            if timer.cancelled():
                continue
            self._now = max(self._now, deadline)
            timer.cancel()
            result = timer.callback()
            if inspect.isawaitable(result):
                await result
        self._now = max(self._now, target)

    def set_time(self, when: datetime) -> None:
        """Jump the wall clock without firing timers (simulates a suspended tab)."""
        self._now = when


class TimerGroup:
    """Set of timers cancelled together on teardown."""

    def __init__(self, clock: Clock) -> None:
        self.clock = clock
        self._handles: List[TimerHandle] = []

    def call_later(self, delay: float, callback: TimerCallback) -> TimerHandle:
        self._handles = [h for h in self._handles if not h.cancelled()]
        handle = self.clock.call_later(delay, callback)
        self._handles.append(handle)
        return handle

    def cancel_all(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()

    def __len__(self) -> int:
        return sum(1 for h in self._handles if not h.cancelled())
