"""Sliding-window request budget for a single upstream provider."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable

from price_relay.core.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)

# Extra slack after the oldest request leaves the window
_WAIT_BUFFER = 0.01
_MAX_WAITS = 50


class SlidingWindowRateLimiter:
    """Blocks callers until fewer than ``max_requests`` were issued in the window.

    Bursts are serialized rather than rejected: a caller at capacity sleeps
    until the oldest in-window request expires, then re-checks. The check
    loop is bounded; exhausting it raises RateLimitExceededError.

    Parameters
    ----------
    max_requests : int
        Requests allowed per window.
    window : float
        Window length in seconds. Default: 1.0.
    provider : str
        Provider id used in log lines and errors.
    clock, sleep
        Injectable time source and sleeper (for tests).
    """

    def __init__(
        self,
        max_requests: int,
        window: float = 1.0,
        *,
        provider: str = "unknown",
        max_waits: int = _MAX_WAITS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_requests < 1:
            raise ValueError(f"max_requests must be >= 1, got {max_requests}")
        if window <= 0:
            raise ValueError(f"window must be > 0, got {window}")
        self._max_requests = max_requests
        self._window = window
        self._provider = provider
        self._max_waits = max_waits
        self._clock = clock
        self._sleep = sleep
        self._request_times: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window(self) -> float:
        return self._window

    def in_flight(self) -> int:
        """Number of requests currently counted against the window."""
        self._evict(self._clock())
        return len(self._request_times)

    def _evict(self, now: float) -> None:
        while self._request_times and now - self._request_times[0] >= self._window:
            self._request_times.popleft()

    async def acquire(self) -> float:
        """Wait for budget and record one request. Returns seconds waited."""
        waited = 0.0
        async with self._lock:
            for _ in range(self._max_waits):
                now = self._clock()
                self._evict(now)
                if len(self._request_times) < self._max_requests:
                    self._request_times.append(now)
                    return waited

                wait = self._window - (now - self._request_times[0]) + _WAIT_BUFFER
                logger.debug(
                    "%s at capacity (%d/%.2fs), waiting %.3fs",
                    self._provider, self._max_requests, self._window, wait,
                )
                await self._sleep(wait)
                waited += wait

        raise RateLimitExceededError(
            self._provider,
            context={"waited": waited, "max_requests": self._max_requests},
        )
