"""
Loopguard — Dual Sliding Window Rate Limiter

Admission control over two concurrent windows (last minute, last hour).
Waiters are admitted one at a time, in arrival order.

Usage:
    limiter = RateLimiter(requests_per_minute=50, requests_per_hour=1000)
    await limiter.admit()              # suspends until a slot is free
    allowed, info = limiter.try_admit()  # never suspends
"""
import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Optional

from config import RESILIENCE

logger = logging.getLogger("loopguard.resilience.rate_limiter")

MINUTE_SEC = 60.0
HOUR_SEC = 3600.0
_WAIT_BUFFER_SEC = 0.1


class RateLimiter:
    """
    Per-quota-domain sliding window limiter.

    Each window holds the timestamps of admitted requests, oldest first.
    Expired entries are evicted lazily on every check.
    """

    def __init__(
        self,
        requests_per_minute: Optional[int] = None,
        requests_per_hour: Optional[int] = None,
        verbose: Optional[bool] = None,
        name: str = "default",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.requests_per_minute = int(
            RESILIENCE["requests_per_minute"] if requests_per_minute is None else requests_per_minute
        )
        self.requests_per_hour = int(
            RESILIENCE["requests_per_hour"] if requests_per_hour is None else requests_per_hour
        )
        self.verbose = bool(RESILIENCE["verbose"] if verbose is None else verbose)
        if self.requests_per_minute < 1 or self.requests_per_hour < 1:
            raise ValueError("rate limits must be >= 1")

        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.minute_window: deque[float] = deque()
        self.hour_window: deque[float] = deque()

    # ──────────────────────────── Admission ────────────────────────────

    async def admit(self):
        """Suspend until both windows have room, then record the request."""
        async with self._lock:
            while True:
                now = self._clock()
                wait, window = self._wait_time(now)
                if wait <= 0:
                    self._record(now)
                    return

                level = logging.INFO if self.verbose else logging.DEBUG
                if window == "minute":
                    logger.log(level, f"Rate limit [{self.name}]: waiting {wait:.1f}s (minute limit)")
                else:
                    logger.log(level, f"Rate limit [{self.name}]: waiting {wait / 60:.1f}m (hour limit)")
                await self._sleep(wait)

    def try_admit(self) -> tuple[bool, dict]:
        """
        Admit without waiting.

        Returns:
            (allowed, info) where info contains remaining slots, or
            retry_after/window when the request was refused.
        """
        now = self._clock()
        wait, window = self._wait_time(now)
        if wait <= 0 and self._lock.locked():
            # Queued admit() callers go first
            wait, window = _WAIT_BUFFER_SEC, "queue"
        if wait > 0:
            logger.warning(
                f"Rate limited: {self.name} ({window} window full, retry in {wait:.1f}s)"
            )
            return False, {
                "retry_after": round(wait, 1),
                "window": window,
                "minute_limit": self.requests_per_minute,
                "hour_limit": self.requests_per_hour,
            }

        self._record(now)
        return True, {
            "remaining_minute": self.requests_per_minute - len(self.minute_window),
            "remaining_hour": self.requests_per_hour - len(self.hour_window),
            "minute_limit": self.requests_per_minute,
            "hour_limit": self.requests_per_hour,
        }

    def wrap(self, operation: Callable[[], Awaitable[Any]]) -> Callable[[], Awaitable[Any]]:
        """Return an operation that passes the admission gate before running."""
        async def gated():
            await self.admit()
            return await operation()

        return gated

    def _wait_time(self, now: float) -> tuple[float, str]:
        """Seconds to wait before admission (0 if admissible now) and the full window."""
        self._prune(now)
        if len(self.minute_window) >= self.requests_per_minute:
            return MINUTE_SEC - (now - self.minute_window[0]) + _WAIT_BUFFER_SEC, "minute"
        if len(self.hour_window) >= self.requests_per_hour:
            return HOUR_SEC - (now - self.hour_window[0]) + _WAIT_BUFFER_SEC, "hour"
        return 0.0, ""

    def _prune(self, now: float):
        while self.minute_window and now - self.minute_window[0] >= MINUTE_SEC:
            self.minute_window.popleft()
        while self.hour_window and now - self.hour_window[0] >= HOUR_SEC:
            self.hour_window.popleft()

    def _record(self, now: float):
        self.minute_window.append(now)
        self.hour_window.append(now)

    # ──────────────────────────── Introspection ────────────────────────────

    def get_usage(self) -> dict:
        self._prune(self._clock())
        return {
            "requests_last_minute": len(self.minute_window),
            "requests_last_hour": len(self.hour_window),
            "minute_limit": self.requests_per_minute,
            "hour_limit": self.requests_per_hour,
        }

    def reset(self):
        self.minute_window.clear()
        self.hour_window.clear()
