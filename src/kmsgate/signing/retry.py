"""Caller-level retry for custody calls.

Only transient failures (throttling, service unavailable, timeouts) are
retried, with bounded exponential backoff. Everything else is raised on the
first attempt.
"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, TypeVar

from kmsgate.errors import CustodyServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """Delay before retry number ``attempt`` (0-based): base * 2^attempt, capped."""
    delay = min(max_delay, base_delay * (2 ** attempt))
    if jitter:
        delay = random.uniform(delay / 2, delay)
    return delay


async def with_retry(
    call: Callable[[], Awaitable[T]],
    attempts: int = 3,
    base_delay: float = 0.2,
    max_delay: float = 2.0,
    operation: str = "custody call",
    jitter: bool = True,
) -> T:
    """Run ``call`` up to ``attempts`` times, retrying transient custody errors.

    Args:
        call: Zero-argument coroutine factory (a fresh coroutine per attempt)
        attempts: Total attempts, 1 disables retries
        base_delay: First backoff delay in seconds
        max_delay: Upper bound on a single delay
        operation: Description for logging

    Raises:
        CustodyServiceError: The last error once attempts are exhausted,
            or the first non-transient error
    """
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            return await call()
        except CustodyServiceError as e:
            if not e.transient or attempt == attempts - 1:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay, jitter)
            logger.warning(
                f"{operation} failed ({e.code or e.kind}), retry {attempt + 1}/{attempts - 1} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
