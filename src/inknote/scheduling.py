"""Keyed timers and coalescing throttles.

Everything here runs on one logical thread: callbacks fire from the event
loop (``AsyncioScheduler``) or from explicit clock advances
(``ManualScheduler``), never concurrently with a mutation.
"""
import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Hashable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class Scheduler(ABC):
    """Keyed one-shot timers.

    ``schedule(key, delay, fn)`` replaces any pending timer with the same
    key, so repeated calls reschedule rather than stack up.
    """

    @abstractmethod
    def now(self) -> float:
        """Current time in seconds on the scheduler's clock."""

    @abstractmethod
    def schedule(self, key: Hashable, delay: float, fn: Callback) -> None:
        """Run ``fn`` after ``delay`` seconds, replacing a pending ``key``."""

    @abstractmethod
    def cancel(self, key: Hashable) -> bool:
        """Drop a pending timer. Returns whether one was pending."""

    @abstractmethod
    def pending(self, key: Hashable) -> bool:
        """Whether a timer is pending for ``key``."""

    @abstractmethod
    def flush(self) -> int:
        """Run every pending timer now, in due order. Returns how many ran."""


class ManualScheduler(Scheduler):
    """Scheduler driven by an explicit clock.

    Time only moves through ``advance``; used by tests and by one-shot
    command line runs, which ``flush`` before exiting.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._seq = itertools.count()
        self._heap: List[Tuple[float, int, Hashable]] = []
        self._entries: Dict[Hashable, Tuple[int, Callback]] = {}

    def now(self) -> float:
        return self._now

    def schedule(self, key: Hashable, delay: float, fn: Callback) -> None:
        seq = next(self._seq)
        self._entries[key] = (seq, fn)
        heapq.heappush(self._heap, (self._now + max(delay, 0.0), seq, key))

    def cancel(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def pending(self, key: Hashable) -> bool:
        return key in self._entries

    def _pop_due(self, until: Optional[float]) -> Optional[Tuple[float, Callback]]:
        while self._heap:
            due, seq, key = self._heap[0]
            if until is not None and due > until:
                return None
            heapq.heappop(self._heap)
            entry = self._entries.get(key)
            if entry is None or entry[0] != seq:
                continue  # cancelled or rescheduled
            del self._entries[key]
            return due, entry[1]
        return None

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running timers as they come due."""
        target = self._now + seconds
        ran = 0
        while True:
            item = self._pop_due(target)
            if item is None:
                break
            due, fn = item
            self._now = max(self._now, due)
            fn()
            ran += 1
        self._now = target
        return ran

    def flush(self) -> int:
        ran = 0
        while True:
            item = self._pop_due(None)
            if item is None:
                if ran:
                    logger.debug(f"Flushed {ran} pending timer(s)")
                return ran
            item[1]()
            ran += 1


class AsyncioScheduler(Scheduler):
    """Scheduler on an asyncio event loop (``loop.call_later``)."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._handles: Dict[Hashable, Tuple[asyncio.TimerHandle, Callback]] = {}

    def now(self) -> float:
        return self._loop.time()

    def schedule(self, key: Hashable, delay: float, fn: Callback) -> None:
        self.cancel(key)

        def run() -> None:
            self._handles.pop(key, None)
            fn()

        handle = self._loop.call_later(max(delay, 0.0), run)
        self._handles[key] = (handle, fn)

    def cancel(self, key: Hashable) -> bool:
        entry = self._handles.pop(key, None)
        if entry is None:
            return False
        entry[0].cancel()
        return True

    def pending(self, key: Hashable) -> bool:
        return key in self._handles

    def flush(self) -> int:
        entries = sorted(self._handles.items(), key=lambda item: item[1][0].when())
        self._handles.clear()
        for _, (handle, fn) in entries:
            handle.cancel()
            fn()
        return len(entries)


class Throttle:
    """Coalesce calls per key into at most one run per ``interval``.

    The newest callback wins: calls arriving while a run is pending only
    replace the callback that will run. With ``leading=False`` the first
    call of a burst waits for the window to close; with ``leading=True`` it
    runs at once when the previous run is at least ``interval`` old.

    Two throttles never share pending state, even on one scheduler.
    """

    _names = itertools.count()

    def __init__(
        self,
        scheduler: Scheduler,
        interval: float,
        leading: bool = False,
        name: Optional[str] = None,
    ):
        self.scheduler = scheduler
        self.interval = interval
        self.leading = leading
        self.name = name or f"throttle-{next(self._names)}"
        self._latest: Dict[Hashable, Callback] = {}
        self._last_run: Dict[Hashable, float] = {}

    def _timer_key(self, key: Hashable) -> Tuple[str, Hashable]:
        return (self.name, key)

    def __call__(self, fn: Callback, key: Hashable = None) -> None:
        now = self.scheduler.now()
        timer_key = self._timer_key(key)
        last = self._last_run.get(key)
        idle = last is None or now - last >= self.interval
        self._forget_idle(now)

        if self.leading and idle and not self.scheduler.pending(timer_key):
            self._last_run[key] = now
            fn()
            return

        self._latest[key] = fn
        if self.scheduler.pending(timer_key):
            return
        if self.leading and last is not None:
            delay = max(0.0, self.interval - (now - last))
        else:
            delay = self.interval
        self.scheduler.schedule(timer_key, delay, lambda: self._fire(key))

    def _fire(self, key: Hashable) -> None:
        fn = self._latest.pop(key, None)
        if fn is None:
            return
        self._last_run[key] = self.scheduler.now()
        fn()

    def pending(self, key: Hashable = None) -> bool:
        return key in self._latest

    def tracked(self) -> int:
        """Number of keys with a pending call or a run inside the interval."""
        return len(set(self._latest) | set(self._last_run))

    def _forget_idle(self, now: float) -> None:
        stale = [
            key for key, last in self._last_run.items()
            if now - last >= self.interval and key not in self._latest
        ]
        for key in stale:
            del self._last_run[key]

    def flush(self) -> int:
        """Run every pending callback now."""
        keys = list(self._latest)
        for key in keys:
            self.scheduler.cancel(self._timer_key(key))
            self._fire(key)
        return len(keys)

    def cancel(self, key: Hashable = None) -> None:
        self._latest.pop(key, None)
        self._last_run.pop(key, None)
        self.scheduler.cancel(self._timer_key(key))
