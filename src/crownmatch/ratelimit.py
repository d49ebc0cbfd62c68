# src/crownmatch/ratelimit.py

"""Sliding-window request limiter.

One limiter is created per process at application startup and kept on
``app.state``. Each key (route + caller) owns a deque of hit timestamps;
hits older than the window are dropped before counting, and keys with
no hits left in the window are forgotten.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable

from crownmatch.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


class SlidingWindowRateLimiter:
    """Allow at most `limit` hits per `window_seconds` for each key."""

    def __init__(
        self,
        limit: int,
        window_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.limit = limit
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._last_sweep = clock()

    def __len__(self) -> int:
        """Number of keys with hits still inside the window."""
        return len(self._windows)

    def _evict(self, key: str, now: float) -> deque[float]:
        window = self._windows.get(key)
        if window is None:
            return deque()
        while window and now - window[0] >= self.window_seconds:
            window.popleft()
        if not window:
            del self._windows[key]
        return window

    def _sweep(self, now: float) -> None:
        # Full scan for idle keys, at most once per window
        if now - self._last_sweep < self.window_seconds:
            return
        self._last_sweep = now
        idle = [
            key
            for key, window in self._windows.items()
            if now - window[-1] >= self.window_seconds
        ]
        for key in idle:
            del self._windows[key]

    def hit(self, key: str) -> None:
        """Record one request for `key`.

        Raises:
            RateLimitExceededError: If the key already used its allowance.
        """
        now = self._clock()
        self._sweep(now)
        window = self._evict(key, now)
        if len(window) >= self.limit:
            retry_after = self.window_seconds - (now - window[0])
            logger.warning(
                "Rate limit exceeded", extra={"key": key, "retry_after": retry_after}
            )
            raise RateLimitExceededError(key, retry_after)
        window.append(now)
        self._windows[key] = window

    def remaining(self, key: str) -> int:
        """Hits still allowed for `key` in the current window."""
        return self.limit - len(self._evict(key, self._clock()))

    def reset(self) -> None:
        """Forget every recorded hit."""
        self._windows.clear()
