"""Retry helpers using tenacity.

Retries are configured per call site from ``PerformanceConfig`` so that the
number of attempts and the backoff window can be tuned without code changes.
"""

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from user_import.client.exceptions import NetworkError, RateLimitError, ServerError
from user_import.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (NetworkError, ServerError, RateLimitError)


async def call_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
    retry_on_exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
    **kwargs: Any,
) -> T:
    """Await ``func`` with exponential backoff and jitter on transient errors.

    Args:
        func: Coroutine function to call
        max_attempts: Maximum number of attempts (1 disables retrying)
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds
        retry_on_exceptions: Exception types that trigger another attempt

    Returns:
        Result of the coroutine

    Raises:
        The last exception once attempts are exhausted
    """
    async for attempt_obj in AsyncRetrying(
        stop=stop_after_attempt(max(1, max_attempts)),
        wait=wait_random_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_on_exceptions),
        reraise=True,
    ):
        with attempt_obj:
            attempt = attempt_obj.retry_state.attempt_number
            if attempt > 1:
                logger.info(
                    "retry_attempt",
                    function=getattr(func, "__name__", repr(func)),
                    attempt=attempt,
                    max_attempts=max_attempts,
                )
            return await func(*args, **kwargs)

    raise RuntimeError("Unexpected retry loop exit")
