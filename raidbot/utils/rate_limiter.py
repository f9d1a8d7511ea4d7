"""Sliding-window rate limiter for participant reactions."""

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, Hashable

logger = logging.getLogger("raidbot.rate_limiter")


class RateLimiter:
    """
    Allows at most ``max_requests`` per ``window_seconds`` for each key.

    Checked before any raid lock is taken, so throttled users never
    contend for it.
    """

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._requests: Dict[Hashable, Deque[float]] = {}

    def _prune(self, key: Hashable, now: float) -> Deque[float]:
        timestamps = self._requests.setdefault(key, deque())
        cutoff = now - self.window_seconds
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()
        return timestamps

    def is_allowed(self, key: Hashable) -> bool:
        """Record a request for ``key`` and report whether it is within the limit."""
        now = self._clock()
        timestamps = self._prune(key, now)
        if len(timestamps) >= self.max_requests:
            logger.debug("Rate limit hit for %s", key)
            return False
        timestamps.append(now)
        return True

    def remaining(self, key: Hashable) -> int:
        timestamps = self._prune(key, self._clock())
        return max(0, self.max_requests - len(timestamps))

    def reset_in(self, key: Hashable) -> float:
        """Seconds until the oldest request for ``key`` leaves the window."""
        now = self._clock()
        timestamps = self._prune(key, now)
        if not timestamps:
            return 0.0
        return max(0.0, timestamps[0] + self.window_seconds - now)

    def reset(self, key: Hashable) -> None:
        self._requests.pop(key, None)

    def cleanup(self) -> int:
        """Drop keys with no requests left in the window. Returns how many were dropped."""
        now = self._clock()
        stale = [key for key in list(self._requests) if not self._prune(key, now)]
        for key in stale:
            del self._requests[key]
        return len(stale)
