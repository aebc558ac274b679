# Sync_Scheduler.py
# Description: Clocks, the debounce timer and the sync state object used by the sync engine.
#
# Imports
import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Callable, List, Optional, Tuple
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
#
########################################################################################################################
#
# Functions:


class Clock(ABC):
    """Source of time and delayed callbacks. Swapped for VirtualClock in tests."""

    @abstractmethod
    def now(self) -> float:
        ...

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]):
        """Schedules `callback` after `delay` seconds and returns a handle with `cancel()`."""
        ...


class LoopClock(Clock):
    """Clock backed by the running asyncio event loop."""

    def now(self) -> float:
        try:
            return asyncio.get_running_loop().time()
        except RuntimeError:
            return time.monotonic()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)


class _VirtualHandle:
    def __init__(self, when: float, callback: Callable[[], None]):
        self.when = when
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class VirtualClock(Clock):
    """
    Deterministic clock for tests. Time only moves through `advance()`, which runs
    every callback that falls due, in order of due time.
    """

    def __init__(self, start: float = 0.0):
        self._now = start
        self._queue: List[Tuple[float, int, _VirtualHandle]] = []
        self._counter = itertools.count()

    def now(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[[], None]) -> _VirtualHandle:
        handle = _VirtualHandle(self._now + max(delay, 0.0), callback)
        heapq.heappush(self._queue, (handle.when, next(self._counter), handle))
        return handle

    def advance(self, seconds: float) -> int:
        """Moves time forward and returns how many callbacks ran."""
        target = self._now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            self._now = when
            if not handle.cancelled:
                handle.callback()
                fired += 1
        self._now = target
        return fired

    @property
    def pending(self) -> int:
        return sum(1 for _, _, handle in self._queue if not handle.cancelled)


class DebounceTimer:
    """
    Cancellable single-shot timer. Re-arming replaces the pending shot, so a burst of
    `arm()` calls closer together than `delay` ends in exactly one `fire()`.
    """

    def __init__(self, clock: Clock, delay: float, callback: Callable[[], None]):
        self.clock = clock
        self.delay = delay
        self.callback = callback
        self._handle = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def arm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = self.clock.call_later(self.delay, self.fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def fire(self) -> None:
        self._handle = None
        self.callback()


class SyncPhase(str, Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    SYNCING = "syncing"


class SyncState:
    """
    The engine's only shared mutable sync state.

    `try_begin()` is a synchronous check-then-set: on a single event loop no other
    task can run between the check and the set, so at most one cycle holds the guard.
    A timer may be scheduled while a cycle is running; the phase then reports SYNCING.
    """

    def __init__(self):
        self.syncing = False
        self.scheduled = False
        self.active_kind: Optional[str] = None

    @property
    def phase(self) -> SyncPhase:
        if self.syncing:
            return SyncPhase.SYNCING
        if self.scheduled:
            return SyncPhase.SCHEDULED
        return SyncPhase.IDLE

    def mark_scheduled(self) -> None:
        self.scheduled = True

    def clear_scheduled(self) -> None:
        self.scheduled = False

    def try_begin(self, kind: str) -> bool:
        if self.syncing:
            logger.debug(f"Sync guard busy with '{self.active_kind}'; refusing '{kind}'.")
            return False
        self.syncing = True
        self.active_kind = kind
        logger.debug(f"Sync guard taken by '{kind}'.")
        return True

    def end(self) -> None:
        logger.debug(f"Sync guard released by '{self.active_kind}'.")
        self.syncing = False
        self.active_kind = None

#
# End of Sync_Scheduler.py
########################################################################################################################
