import math
import time
from typing import Callable, Dict

from pydantic import BaseModel

MAX_TRACKED_KEYS = 10_000


class RateLimitResult(BaseModel):
    allowed: bool
    remaining: int
    retry_after: int = 0


class _Window(BaseModel):
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """
    `limit` requests per `window` seconds for each key.

    The first request of a key opens its window; once the window has passed the
    next request opens a fresh one. No locking: all calls happen on the event loop.
    """

    def __init__(self, limit: int, window: float, clock: Callable[[], float] = time.monotonic):
        if limit < 1:
            raise ValueError("limit must be at least 1")
        if window <= 0:
            raise ValueError("window must be positive")
        self.limit = limit
        self.window = window
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    def hit(self, key: str) -> RateLimitResult:
        now = self._clock()
        current = self._windows.get(key)

        if current is None or now >= current.reset_at:
            if len(self._windows) >= MAX_TRACKED_KEYS:
                self._drop_expired(now)
            self._windows[key] = _Window(count=1, reset_at=now + self.window)
            return RateLimitResult(allowed=True, remaining=self.limit - 1)

        if current.count >= self.limit:
            retry_after = max(1, math.ceil(current.reset_at - now))
            return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

        current.count += 1
        return RateLimitResult(allowed=True, remaining=self.limit - current.count)

    def reset(self) -> None:
        self._windows.clear()

    def _drop_expired(self, now: float) -> None:
        expired = [key for key, w in self._windows.items() if now >= w.reset_at]
        for key in expired:
            del self._windows[key]
