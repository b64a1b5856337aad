"""
Loopguard — Operation Timeouts

The retry controller never times an operation out by itself. Callers wrap
a single attempt (or a whole execute() call) with with_timeout(); an expired
attempt raises an OperationError that classifies as a retryable network error.

Usage:
    result = await controller.execute(
        lambda: with_timeout(client.ask(prompt), label="claude.ask"), "Claude API call"
    )
"""
import asyncio
import fnmatch
import logging

from config import DEFAULT_TIMEOUT_SEC, TIMEOUTS
from resilience.errors import OperationError

logger = logging.getLogger("loopguard.resilience.timeouts")


def get_timeout(label: str) -> float:
    """
    Get the timeout for a label.
    Checks exact config.json entries first, then glob patterns, then "default".
    """
    if label in TIMEOUTS:
        return float(TIMEOUTS[label])

    # Glob pattern match (e.g. "claude.*": 120)
    for pattern, timeout in TIMEOUTS.items():
        if pattern != "default" and fnmatch.fnmatch(label, pattern):
            return float(timeout)

    return float(TIMEOUTS.get("default", DEFAULT_TIMEOUT_SEC))


async def with_timeout(awaitable, timeout_sec: float = 0, label: str = "operation"):
    """
    Await with a deadline.

    If timeout_sec is 0, looks up the timeout from config by label.
    Raises OperationError("<label> timed out after Ns") on expiry.
    """
    if timeout_sec <= 0:
        timeout_sec = get_timeout(label)

    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_sec)
    except asyncio.TimeoutError as e:
        logger.error(f"'{label}' timed out after {timeout_sec}s")
        raise OperationError(f"{label} timed out after {timeout_sec}s") from e
