"""
Retry logic with exponential backoff.

Transient network and 5xx conditions are retried inside the component that
issued the call; everything else propagates to the caller unchanged.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, Optional

import aiohttp

from .config.constants import RETRY
from .errors import TwitchApiError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryStrategy:
    """Retry budget and backoff bounds."""
    max_retries: int
    base_delay: float
    max_delay: float


class RetryStrategies:
    """Predefined retry strategies."""
    STANDARD = RetryStrategy(RETRY.STANDARD_MAX_RETRIES, RETRY.STANDARD_BASE_DELAY, RETRY.STANDARD_MAX_DELAY)
    AGGRESSIVE = RetryStrategy(RETRY.AGGRESSIVE_MAX_RETRIES, RETRY.AGGRESSIVE_BASE_DELAY, RETRY.AGGRESSIVE_MAX_DELAY)
    CONSERVATIVE = RetryStrategy(RETRY.CONSERVATIVE_MAX_RETRIES, RETRY.CONSERVATIVE_BASE_DELAY, RETRY.CONSERVATIVE_MAX_DELAY)


def calculate_backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """
    Calculate the delay before the retry that follows ``attempt``.

    Args:
        attempt: Zero-based index of the attempt that just failed
        base_delay: Delay after the first failure (seconds)
        max_delay: Upper bound for any delay (seconds)

    Returns:
        float: Delay in seconds, non-decreasing in ``attempt``
    """
    return min(base_delay * (2 ** attempt), max_delay)


async def with_retry(
    func: Callable[[], Awaitable[Any]],
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    should_retry: Optional[Callable[[Exception, int], bool]] = None,
    on_retry: Optional[Callable[[Exception, int, float], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """
    Execute a coroutine function with retry logic and exponential backoff.

    Args:
        func: Zero-argument coroutine function to execute
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Base delay for exponential backoff (seconds)
        max_delay: Maximum delay between attempts (seconds)
        should_retry: Predicate deciding whether an error is retryable
        on_retry: Callback invoked with (error, attempt, delay) before sleeping
        sleep: Awaitable sleep function

    Returns:
        Result of ``func``

    Raises:
        The last error once retries are exhausted or a non-retryable error occurs
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except Exception as e:
            if attempt == max_retries:
                raise
            if should_retry is not None and not should_retry(e, attempt):
                raise

            delay = calculate_backoff_delay(attempt, base_delay, max_delay)
            logger.warning(f"Attempt {attempt + 1}/{max_retries + 1} failed: {e}")
            logger.debug(f"Retrying in {delay:.2f}s...")

            if on_retry is not None:
                result = on_retry(e, attempt, delay)
                if asyncio.iscoroutine(result):
                    await result

            await sleep(delay)


def is_retryable_http_error(error: Exception,
                            retryable_status_codes: Iterable[int] = RETRY.RETRYABLE_STATUS_CODES) -> bool:
    """
    Check whether an error warrants another HTTP attempt.

    Retryable: an API error carrying one of ``retryable_status_codes``, or a
    connection-level failure that never produced an HTTP status.
    """
    if isinstance(error, TwitchApiError):
        if error.status is None:
            return True
        return error.status in tuple(retryable_status_codes)
    return isinstance(error, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError))


async def with_http_retry(
    func: Callable[[], Awaitable[Any]],
    retryable_status_codes: Iterable[int] = RETRY.RETRYABLE_STATUS_CODES,
    strategy: RetryStrategy = RetryStrategies.STANDARD,
    on_retry: Optional[Callable[[Exception, int, float], Any]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> Any:
    """Retry only for specific HTTP status codes and connection errors."""
    codes = tuple(retryable_status_codes)
    return await with_retry(
        func,
        max_retries=strategy.max_retries,
        base_delay=strategy.base_delay,
        max_delay=strategy.max_delay,
        should_retry=lambda error, attempt: is_retryable_http_error(error, codes),
        on_retry=on_retry,
        sleep=sleep,
    )
