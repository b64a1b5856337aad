"""
Loopguard — Resilience Primitives

Error classification, retries with backoff, circuit breaker and dual-window
rate limiting for calls to unreliable remote operations.
"""
from resilience.errors import (
    CircuitOpenError,
    ErrorClassification,
    ErrorKind,
    OperationError,
    classify_error,
)
from resilience.guard import ResilienceGuard
from resilience.rate_limiter import RateLimiter
from resilience.retry import CircuitState, RetryController
from resilience.timeouts import with_timeout, get_timeout

__all__ = [
    "CircuitOpenError",
    "CircuitState",
    "ErrorClassification",
    "ErrorKind",
    "OperationError",
    "RateLimiter",
    "ResilienceGuard",
    "RetryController",
    "classify_error",
    "with_timeout",
    "get_timeout",
]
