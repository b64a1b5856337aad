"""
Loopguard — Resilience Guard

Composes a RateLimiter and a RetryController for one protected resource.
Every attempt, retries included, passes the admission gate.

Usage:
    guard = ResilienceGuard.from_options("claude", {"max_retries": 3, "requests_per_minute": 50})
    reply = await guard.call(lambda: client.ask(prompt), "Claude API call (iteration 4)")
"""
import logging
from typing import Any, Awaitable, Callable, Optional

from resilience.rate_limiter import RateLimiter
from resilience.retry import RetryController

logger = logging.getLogger("loopguard.resilience.guard")

_RETRY_OPTIONS = {
    "max_retries",
    "base_delay_ms",
    "max_delay_ms",
    "circuit_breaker_threshold",
    "circuit_reset_delay_ms",
}
_LIMITER_OPTIONS = {"requests_per_minute", "requests_per_hour"}


class ResilienceGuard:
    """Rate limiting + retries + circuit breaker for a single resource."""

    def __init__(self, name: str, retry: Optional[RetryController] = None,
                 limiter: Optional[RateLimiter] = None):
        self.name = name
        self.retry = retry or RetryController(name)
        self.limiter = limiter or RateLimiter(name=name)

    @classmethod
    def from_options(cls, name: str, options: Optional[dict] = None) -> "ResilienceGuard":
        """
        Build a guard from a dict of recognized options.

        Missing options fall back to the "resilience" section of config.json.
        Unknown keys raise ValueError.
        """
        options = dict(options or {})
        unknown = set(options) - _RETRY_OPTIONS - _LIMITER_OPTIONS - {"verbose"}
        if unknown:
            raise ValueError(f"Unknown resilience options: {', '.join(sorted(unknown))}")

        verbose = options.get("verbose")
        retry = RetryController(
            name,
            verbose=verbose,
            **{k: v for k, v in options.items() if k in _RETRY_OPTIONS},
        )
        limiter = RateLimiter(
            name=name,
            verbose=verbose,
            **{k: v for k, v in options.items() if k in _LIMITER_OPTIONS},
        )
        logger.debug(f"Guard [{name}] configured: {retry.get_status()} {limiter.get_usage()}")
        return cls(name, retry=retry, limiter=limiter)

    async def call(self, operation: Callable[[], Awaitable[Any]], context: str = "operation"):
        return await self.retry.execute(self.limiter.wrap(operation), context)

    def get_status(self) -> dict:
        """Circuit and quota usage, e.g. for a status endpoint."""
        return {
            "name": self.name,
            "circuit": self.retry.get_status(),
            "usage": self.limiter.get_usage(),
        }

    def reset(self):
        self.retry.reset()
        self.limiter.reset()
