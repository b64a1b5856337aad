"""
Loopguard — Retry Controller

Retries a protected async operation with exponential backoff and jitter,
and trips a circuit breaker after repeated retry exhaustion.

    CLOSED -> OPEN after `circuit_breaker_threshold` exhausted calls.
    OPEN -> CLOSED lazily, on the first call after `circuit_reset_delay_ms`.

Usage:
    controller = RetryController("claude", max_retries=3)
    result = await controller.execute(lambda: client.ask(prompt), "Claude API call")
"""
import asyncio
import logging
import math
import random
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from config import RESILIENCE
from resilience.errors import (
    CircuitOpenError,
    ErrorClassification,
    OperationError,
    classify_error,
    retry_in_seconds,
)

logger = logging.getLogger("loopguard.resilience.retry")

_JITTER_LOW = 0.75
_JITTER_HIGH = 1.25


class CircuitState(str, Enum):
    CLOSED = "CLOSED"   # Normal, operations are invoked
    OPEN = "OPEN"       # Tripped, fast-fail until circuit_reset_time


def _option(value, key: str):
    return RESILIENCE[key] if value is None else value


class RetryController:
    """
    Per-resource retry loop with circuit breaker.

    Mutable state (consecutive_failures, circuit_open, circuit_reset_time)
    belongs to this instance; create one controller per protected resource.
    """

    def __init__(
        self,
        name: str = "operation",
        max_retries: Optional[int] = None,
        base_delay_ms: Optional[float] = None,
        max_delay_ms: Optional[float] = None,
        circuit_breaker_threshold: Optional[int] = None,
        circuit_reset_delay_ms: Optional[float] = None,
        verbose: Optional[bool] = None,
        rng: Optional[random.Random] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.name = name
        self.max_retries = int(_option(max_retries, "max_retries"))
        self.base_delay_ms = float(_option(base_delay_ms, "base_delay_ms"))
        self.max_delay_ms = float(_option(max_delay_ms, "max_delay_ms"))
        self.circuit_breaker_threshold = int(_option(circuit_breaker_threshold, "circuit_breaker_threshold"))
        self.circuit_reset_delay_ms = float(_option(circuit_reset_delay_ms, "circuit_reset_delay_ms"))
        self.verbose = bool(_option(verbose, "verbose"))

        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms < 0 or self.max_delay_ms < 0 or self.circuit_reset_delay_ms < 0:
            raise ValueError("delays must be >= 0")
        if self.circuit_breaker_threshold < 1:
            raise ValueError(
                f"circuit_breaker_threshold must be >= 1, got {self.circuit_breaker_threshold}"
            )

        self._rng = rng or random.Random()
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()

        self.consecutive_failures = 0
        self.circuit_open = False
        self.circuit_reset_time: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        return CircuitState.OPEN if self.circuit_open else CircuitState.CLOSED

    # ──────────────────────────── Execution ────────────────────────────

    async def execute(self, operation: Callable[[], Awaitable[Any]], context: str = "operation"):
        """
        Run `operation` with retries.

        Returns the operation's result, or re-raises its last exception.
        Raises CircuitOpenError without invoking the operation while the
        circuit is open.
        """
        async with self._lock:
            self._check_circuit()

        attempt = 0
        while True:
            try:
                result = await operation()
            except Exception as exc:
                attempt += 1
                error = OperationError.from_exception(exc)
                classification = classify_error(error)

                if not classification.retryable:
                    self._log(
                        logging.WARNING,
                        f"{context} failed with non-retryable error ({classification.kind.value}): {error.message}",
                    )
                    raise

                if attempt <= self.max_retries:
                    delay_ms = self._retry_delay(attempt, classification, error)
                    self._log(
                        logging.INFO,
                        f"{context} failed (attempt {attempt}/{self.max_retries + 1}): {error.message}. "
                        f"Retrying in {delay_ms / 1000:.1f}s",
                    )
                    await self._sleep(delay_ms / 1000)
                    continue

                async with self._lock:
                    self._record_exhaustion(context)
                raise

            async with self._lock:
                self.consecutive_failures = 0
            return result

    def _check_circuit(self):
        """Fast-fail or lazily close the circuit. Called under lock."""
        if not self.circuit_open:
            return

        now = self._clock()
        if now < self.circuit_reset_time:
            raise CircuitOpenError(retry_in_seconds(self.circuit_reset_time - now))

        self.circuit_open = False
        self.circuit_reset_time = None
        self.consecutive_failures = 0
        self._log(logging.INFO, f"Circuit [{self.name}]: OPEN -> CLOSED (reset window elapsed)")

    def _record_exhaustion(self, context: str):
        """Retry budget spent on a retryable error. Called under lock."""
        self.consecutive_failures += 1
        if self.consecutive_failures >= self.circuit_breaker_threshold:
            self.circuit_open = True
            self.circuit_reset_time = self._clock() + self.circuit_reset_delay_ms / 1000
            logger.warning(
                f"Circuit [{self.name}]: CLOSED -> OPEN after {context} exhausted retries "
                f"({self.consecutive_failures} consecutive). "
                f"Will retry in {self.circuit_reset_delay_ms / 1000:.0f}s"
            )

    # ──────────────────────────── Backoff ────────────────────────────

    def calculate_backoff(self, attempt: int, classification: ErrorClassification) -> int:
        """
        Delay in ms before retry number `attempt` (1-indexed).

        base_delay * multiplier^(attempt-1) * jitter, jitter in [0.75, 1.25],
        capped at max_delay and floored.
        """
        multiplier = classification.backoff_multiplier or 2.0
        jitter = self._rng.uniform(_JITTER_LOW, _JITTER_HIGH)
        delay = self.base_delay_ms * math.pow(multiplier, attempt - 1) * jitter
        return int(math.floor(min(delay, self.max_delay_ms)))

    def _retry_delay(self, attempt: int, classification: ErrorClassification,
                     error: OperationError) -> int:
        if classification.use_retry_after and error.retry_after is not None:
            hint_ms = error.retry_after * 1000
            if not math.isfinite(hint_ms) or hint_ms >= self.max_delay_ms:
                return int(self.max_delay_ms)
            return int(math.ceil(max(0.0, hint_ms)))
        return self.calculate_backoff(attempt, classification)

    # ──────────────────────────── Introspection ────────────────────────────

    def get_status(self) -> dict:
        """
        Circuit state for status endpoints.

        circuit_reset_time is a reading of the controller's clock
        (time.monotonic by default), not wall-clock time; retry_in gives the
        seconds left until it and circuit_reset_at the same instant as a
        Unix timestamp. All three are None while the circuit is closed.
        """
        retry_in = reset_at = None
        if self.circuit_open and self.circuit_reset_time is not None:
            retry_in = max(0.0, self.circuit_reset_time - self._clock())
            reset_at = time.time() + retry_in
        return {
            "name": self.name,
            "state": self.state.value,
            "circuit_open": self.circuit_open,
            "consecutive_failures": self.consecutive_failures,
            "circuit_reset_time": self.circuit_reset_time,
            "retry_in": retry_in,
            "circuit_reset_at": reset_at,
        }

    def reset(self):
        """Manual reset: force back to CLOSED with no failures recorded."""
        self.consecutive_failures = 0
        self.circuit_open = False
        self.circuit_reset_time = None

    def _log(self, level: int, message: str):
        logger.log(level if self.verbose else logging.DEBUG, message)
