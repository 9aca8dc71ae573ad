"""Minimum-gap limiter for profile fetches.

One window is shared by every request in the process. ``acquire`` waits
until ``delay`` seconds have passed since the previous stamp, then stamps
the current time. The wait and the stamp happen under one lock, so
concurrent callers are released one at a time, each at least ``delay``
after the one before it.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from profileshot.core.metrics import rate_limit_wait_seconds

logger = logging.getLogger(__name__)


class RateLimitWindow:
    __slots__ = ("delay", "_clock", "_sleep", "_last", "_lock")

    def __init__(
        self,
        delay: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.delay = delay
        self._clock = clock
        self._sleep = sleep or asyncio.sleep
        self._last: Optional[float] = None
        self._lock = asyncio.Lock()

    @property
    def last_request_at(self) -> Optional[float]:
        return self._last

    def remaining(self) -> float:
        """Seconds until the next caller would be released (0 if now)."""
        if self._last is None:
            return 0.0
        return max(0.0, self.delay - (self._clock() - self._last))

    async def acquire(self) -> float:
        """Wait for the window to open and claim it. Returns seconds waited."""
        async with self._lock:
            wait = self.remaining()
            if wait > 0:
                logger.info(f"Rate limiting: waiting {wait:.1f}s before next request")
                await self._sleep(wait)
            rate_limit_wait_seconds.observe(wait)
            self._last = self._clock()
            return wait
