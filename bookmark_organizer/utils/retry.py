"""Bounded retry with linear backoff.

A call moves through four states:
  ATTEMPT -- the operation is running
  BACKOFF -- a retryable failure occurred, waiting before the next attempt
  SUCCESS -- the operation returned a value
  FAIL    -- a non-retryable failure, or attempts exhausted
"""

import asyncio
import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type

logger = logging.getLogger(__name__)


class RetryState(Enum):
    ATTEMPT = "attempt"
    BACKOFF = "backoff"
    SUCCESS = "success"
    FAIL = "fail"


class RetryPolicy:
    def __init__(
        self,
        max_attempts: int = 3,
        backoff_seconds: float = 0.8,
        retry_on: Tuple[Type[BaseException], ...] = (),
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.retry_on = retry_on

    def delay(self, attempt: int) -> float:
        """Delay after the given (1-based) failed attempt."""
        return self.backoff_seconds * attempt


async def run_with_retry(
    operation: Callable[[], Awaitable[Any]],
    policy: RetryPolicy,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    description: str = "operation",
) -> Any:
    state = RetryState.ATTEMPT
    attempt = 0
    result = None
    error: Optional[BaseException] = None

    while state not in (RetryState.SUCCESS, RetryState.FAIL):
        if state is RetryState.ATTEMPT:
            attempt += 1
            try:
                result = await operation()
                state = RetryState.SUCCESS
            except policy.retry_on as e:
                error = e
                state = RetryState.BACKOFF if attempt < policy.max_attempts else RetryState.FAIL
            except Exception as e:
                error = e
                state = RetryState.FAIL
        elif state is RetryState.BACKOFF:
            delay = policy.delay(attempt)
            logger.warning(
                f"{description} failed (attempt {attempt}/{policy.max_attempts}): {error}; "
                f"retrying in {delay:.1f}s"
            )
            await sleep(delay)
            state = RetryState.ATTEMPT

    if state is RetryState.FAIL:
        raise error
    return result
