"""
Loopguard — Error Model & Classification

Every failure of a protected operation is viewed as an OperationError
(message + optional status code + optional Retry-After hint) and classified
into a kind that decides whether retrying can help.

Usage:
    classification = classify_error(exc)
    if classification.retryable:
        ...
"""
import math
import time
from dataclasses import dataclass
from datetime import timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional

import httpx


class ErrorKind(str, Enum):
    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    SERVER_ERROR = "server_error"
    AUTH = "auth"
    VALIDATION = "validation"
    CLIENT_ERROR = "client_error"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ErrorClassification:
    """How a failure should be treated by the retry loop."""
    kind: ErrorKind
    retryable: bool
    backoff_multiplier: float = 2.0
    use_retry_after: bool = False


class OperationError(Exception):
    """Failure of a protected operation."""

    def __init__(self, message: str, status_code: Optional[int] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after  # seconds

    @classmethod
    def from_exception(cls, exc: BaseException) -> "OperationError":
        """View any exception raised by an operation as an OperationError."""
        if isinstance(exc, OperationError):
            return exc
        if isinstance(exc, httpx.HTTPError):
            return _from_httpx(exc)

        message = str(exc) or type(exc).__name__
        status = getattr(exc, "status_code", None)
        if not isinstance(status, int):
            status = getattr(exc, "status", None)
        if isinstance(status, bool) or not isinstance(status, int):
            status = None
        return cls(message, status_code=status)


class CircuitOpenError(Exception):
    """Raised when a call is attempted while the circuit is OPEN."""

    def __init__(self, retry_in: int):
        super().__init__(f"Circuit breaker open. Too many failures. Try again in {retry_in}s")
        self.retry_in = retry_in


# ──────────────────────────── httpx ────────────────────────────

def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        # "inf", "nan" and overflowing literals like "1e400" are not usable hints
        return max(0.0, seconds) if math.isfinite(seconds) else None
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when is None:
        return None
    if when.tzinfo is None:
        # "-0000" zones parse as naive datetimes; HTTP dates are always UTC
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, when.timestamp() - time.time())


def error_from_response(response: httpx.Response) -> OperationError:
    body = response.text[:200] if response.content else response.reason_phrase
    return OperationError(
        f"HTTP {response.status_code}: {body}",
        status_code=response.status_code,
        retry_after=parse_retry_after(response.headers.get("Retry-After")),
    )


def _from_httpx(exc: httpx.HTTPError) -> OperationError:
    if isinstance(exc, httpx.HTTPStatusError):
        return error_from_response(exc.response)
    if isinstance(exc, httpx.TimeoutException):
        return OperationError(f"timeout: {exc}")
    if isinstance(exc, httpx.TransportError):
        return OperationError(f"network error: {exc}")
    return OperationError(str(exc) or type(exc).__name__)


# ──────────────────────────── Classification ────────────────────────────

_NETWORK_PATTERNS = (
    "econnreset",
    "connection reset",
    "enotfound",
    "name or service not known",
    "etimedout",
    "timed out",
    "network",
    "timeout",
)
_RATE_LIMIT_PATTERNS = ("rate limit", "too many requests")
_AUTH_PATTERNS = ("unauthorized", "forbidden", "api key")
_VALIDATION_PATTERNS = ("invalid", "validation")


def _mentions(message: str, patterns: tuple) -> bool:
    return any(p in message for p in patterns)


def classify_error(error: BaseException) -> ErrorClassification:
    """
    Classify a failure. First match wins:

    network -> rate_limit -> server_error -> auth -> validation
    -> client_error -> unknown.
    """
    op_error = OperationError.from_exception(error)
    message = (op_error.message or "").lower()
    status = op_error.status_code

    if _mentions(message, _NETWORK_PATTERNS):
        return ErrorClassification(ErrorKind.NETWORK, retryable=True, backoff_multiplier=1.5)

    if status == 429 or _mentions(message, _RATE_LIMIT_PATTERNS):
        return ErrorClassification(
            ErrorKind.RATE_LIMIT, retryable=True, backoff_multiplier=3.0, use_retry_after=True
        )

    if status is not None and 500 <= status < 600:
        return ErrorClassification(ErrorKind.SERVER_ERROR, retryable=True, backoff_multiplier=2.0)

    if status in (401, 403) or _mentions(message, _AUTH_PATTERNS):
        return ErrorClassification(ErrorKind.AUTH, retryable=False)

    if status == 400 or _mentions(message, _VALIDATION_PATTERNS):
        return ErrorClassification(ErrorKind.VALIDATION, retryable=False)

    if status is not None and 400 <= status < 500:
        return ErrorClassification(ErrorKind.CLIENT_ERROR, retryable=False)

    # Assume transient unless proven permanent
    return ErrorClassification(ErrorKind.UNKNOWN, retryable=True, backoff_multiplier=2.0)


def retry_in_seconds(remaining: float) -> int:
    return max(0, math.ceil(remaining))
