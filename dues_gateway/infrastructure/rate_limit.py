"""In-process sliding window rate limiter for payment-mutating endpoints"""

import math
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict

from dues_gateway.domain.exceptions import RateLimitError


class SlidingWindowRateLimiter:
    """Allows max_requests per identifier within any window_seconds span"""

    def __init__(self, max_requests: int, window_seconds: int, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._last_purge = clock()

    def check(self, identifier: str) -> None:
        """
        Record a request for identifier.

        Raises:
            RateLimitError: Window is full; retry_after is seconds until the
                oldest request leaves the window
        """
        now = self.clock()
        cutoff = now - self.window_seconds
        with self._lock:
            if now - self._last_purge >= self.window_seconds:
                self._purge(cutoff)
                self._last_purge = now

            hits = self._hits.setdefault(identifier, deque())
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = max(1, math.ceil(hits[0] + self.window_seconds - now))
                raise RateLimitError(retry_after)

            hits.append(now)

    def _purge(self, cutoff: float) -> None:
        """Forget identifiers with no request inside the window"""
        stale = [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._hits[key]

    @property
    def tracked_identifiers(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
