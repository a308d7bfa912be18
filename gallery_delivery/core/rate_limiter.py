"""Sliding-window rate limiter for the provider token endpoint."""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger(__name__)

# Extra wait after the window frees a slot, absorbs clock jitter.
_SLACK = 0.1


class SlidingWindowRateLimiter:
    """
    Allows at most ``max_requests`` acquisitions per ``window`` seconds.

    Safe for a single event loop.
    """

    def __init__(
        self,
        max_requests: int,
        window: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            max_requests: Requests allowed per window.
            window: Window length in seconds.
            clock: Monotonic clock, injectable for tests.
            sleep: Sleep coroutine, injectable for tests.
        """
        if max_requests <= 0:
            msg = "max_requests must be positive"
            raise ValueError(msg)
        if window <= 0:
            msg = "window must be positive"
            raise ValueError(msg)
        self._max_requests = max_requests
        self._window = window
        self._clock = clock
        self._sleep = sleep
        self._history: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request may be made, then record it."""
        async with self._lock:
            self._evict()
            if len(self._history) >= self._max_requests:
                wait = self._window - (self._clock() - self._history[0]) + _SLACK
                if wait > 0:
                    logger.info("Token endpoint rate limit reached, waiting", wait=round(wait, 2))
                    await self._sleep(wait)
                self._evict()
            self._history.append(self._clock())

    @property
    def available(self) -> int:
        """Number of requests that can be made right now without waiting."""
        self._evict()
        return self._max_requests - len(self._history)

    def reset(self) -> None:
        self._history.clear()

    def _evict(self) -> None:
        cutoff = self._clock() - self._window
        while self._history and self._history[0] <= cutoff:
            self._history.popleft()
