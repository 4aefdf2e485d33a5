"""
In-memory sliding-window rate limiting, keyed by caller (client IP).
Guards POST /oauth/token against client-secret guessing and code brute force.
Per-process only: each worker keeps its own window.
"""
import math
import threading
import time
from collections import deque
from collections.abc import Callable


class SlidingWindowLimiter:
    def __init__(self, window_seconds: int = 60, clock: Callable[[], float] = time.monotonic):
        self.window_seconds = window_seconds
        self.clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = threading.Lock()
        self._next_sweep = clock() + window_seconds

    def _sweep(self, now: float) -> None:
        # Forget callers with nothing left in the window; caller holds the lock
        cutoff = now - self.window_seconds
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]
        self._next_sweep = now + self.window_seconds

    def hit(self, key: str, limit: int) -> int | None:
        """
        Record one request for key. Returns None when it is within limit, otherwise the
        Retry-After value in seconds (>= 1) and the request is not recorded.
        A limit of 0 or less disables limiting.
        """
        if limit <= 0:
            return None
        now = self.clock()
        with self._lock:
            if now >= self._next_sweep:
                self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self.window_seconds:
                hits.popleft()
            if len(hits) >= limit:
                return max(1, math.ceil(self.window_seconds - (now - hits[0])))
            hits.append(now)
            return None

    def tracked_keys(self) -> int:
        with self._lock:
            return len(self._hits)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()
            self._next_sweep = self.clock() + self.window_seconds


token_limiter = SlidingWindowLimiter()
