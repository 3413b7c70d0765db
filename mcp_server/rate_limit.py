"""
Rate limiting. In-memory sliding window per key (client IP).
Applied to /oauth and /mcp by RateLimitMiddleware.
"""
import math
import threading
import time

from mcp_server.config import RATE_LIMIT_REQUESTS, RATE_LIMIT_WINDOW_SECONDS


class SlidingWindowRateLimiter:
    def __init__(self, limit: int = RATE_LIMIT_REQUESTS, window_seconds: int = RATE_LIMIT_WINDOW_SECONDS):
        self.limit = limit
        self.window_seconds = window_seconds
        self._store: dict[str, list[float]] = {}
        self._lock = threading.Lock()

    def check_and_consume(self, key: str) -> tuple[bool, int | None]:
        """
        Check if the key is under the limit for the sliding window; if so, record this request.
        Returns (allowed, retry_after_seconds). retry_after_seconds is >= 1 when not allowed.
        """
        if self.limit <= 0:
            return True, None
        now = time.monotonic()
        with self._lock:
            timestamps = self._store.setdefault(key, [])
            cutoff = now - self.window_seconds
            timestamps[:] = [t for t in timestamps if t > cutoff]
            if len(timestamps) >= self.limit:
                retry_after = max(1, math.ceil(self.window_seconds - (now - timestamps[0])))
                return False, retry_after
            timestamps.append(now)
            return True, None

    def prune(self) -> int:
        """Forget keys with no requests inside the window. Returns how many were dropped."""
        cutoff = time.monotonic() - self.window_seconds
        with self._lock:
            stale = [k for k, ts in self._store.items() if not ts or ts[-1] <= cutoff]
            for key in stale:
                del self._store[key]
        return len(stale)
