"""
Exact sliding-window rate limiter.

Keeps the timestamps of the calls made in the last ``window_seconds``. When
the window already holds ``max_requests`` stamps, ``acquire`` sleeps until
the oldest one leaves the window, so no window ever contains more than the
cap.
"""
import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Any

from server_scout.core import metrics
from server_scout.core.logging import get_logger

logger = get_logger(__name__)


class SlidingWindowRateLimiter:
    """
    Args:
        max_requests: Calls allowed per window
        window_seconds: Window length
        clock: Monotonic clock (tests pass a fake)
        sleep: Coroutine used to wait (tests pass a fake)
    """

    def __init__(
        self,
        max_requests: int = 200,
        window_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._stamps: Deque[float] = deque()
        self._lock = asyncio.Lock()
        self.total_waits = 0

    def _evict(self, now: float) -> None:
        while self._stamps and now - self._stamps[0] >= self.window_seconds:
            self._stamps.popleft()

    async def acquire(self) -> None:
        """Wait until a call is allowed, then record it."""
        async with self._lock:
            now = self._clock()
            self._evict(now)

            while len(self._stamps) >= self.max_requests:
                wait = self._stamps[0] + self.window_seconds - now
                if wait > 0:
                    self.total_waits += 1
                    metrics.rate_limit_waits_total.inc()
                    logger.info(f"⏳ Rate limit reached, waiting {wait:.1f}s")
                    await self._sleep(wait)
                now = self._clock()
                self._evict(now)

            self._stamps.append(now)

    def remaining(self) -> int:
        self._evict(self._clock())
        return self.max_requests - len(self._stamps)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "window_seconds": self.window_seconds,
            "max_requests": self.max_requests,
            "requests_in_window": self.max_requests - self.remaining(),
            "total_waits": self.total_waits,
        }
