"""Sliding-window budget for outbound POS API calls."""
import asyncio
import bisect
import time
from typing import Awaitable, Callable, List


class SlidingWindowRateLimiter:
    """
    Enforces ``max_requests`` per ``window_ms`` across every caller sharing
    the instance.

    When the budget is spent, ``acquire`` suspends the calling task until its
    reserved dispatch slot arrives; it never raises. Slots are reserved under
    a lock and the wait happens outside it, so one waiting caller does not
    hold up callers that still fit in the window.

    ``clock`` returns seconds and ``sleep`` suspends for seconds; both can be
    swapped in tests.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_ms: int = 60_000,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")

        self.max_requests = max_requests
        self.window = window_ms / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._dispatches: List[float] = []

    def _prune(self, now: float) -> None:
        cutoff = now - self.window
        # Sorted ascending; drop everything that aged out
        index = bisect.bisect_right(self._dispatches, cutoff)
        if index:
            del self._dispatches[:index]

    async def _reserve(self) -> float:
        async with self._lock:
            now = self._clock()
            self._prune(now)

            if len(self._dispatches) < self.max_requests:
                dispatch_at = now
            else:
                # Wait until the oldest call still counted leaves the window
                dispatch_at = max(now, self._dispatches[-self.max_requests] + self.window)

            bisect.insort(self._dispatches, dispatch_at)
            return dispatch_at - now

    async def acquire(self) -> float:
        """Wait for budget. Returns the seconds spent waiting."""
        delay = await self._reserve()
        if delay > 0:
            await self._sleep(delay)
        return delay

    @property
    def in_window(self) -> int:
        """Dispatches (past or reserved) currently counted against the budget."""
        self._prune(self._clock())
        return len(self._dispatches)
