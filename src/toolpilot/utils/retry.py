"""Exponential-backoff retry for fallible async operations.

The retry manager wraps provider calls (and any other awaitable factory) and
reports the outcome as a :class:`RetryResult` instead of raising, so callers
decide how a final failure is surfaced.
"""

import asyncio
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, FrozenSet, Optional, Tuple, Type

import httpx

# Substrings matched against the lower-cased error message or error code
DEFAULT_RETRYABLE_ERRORS: Tuple[str, ...] = (
    "econnreset",
    "econnrefused",
    "etimedout",
    "enotfound",
    "eai_again",
    "epipe",
    "connection reset",
    "connection refused",
    "connection aborted",
    "timed out",
    "timeout",
    "name or service not known",
    "temporary failure in name resolution",
    "network request failed",
    "rate limit",
    "too many requests",
    "429",
    "502",
    "503",
    "504",
)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1)
        base_delay: Delay before the second attempt, in seconds
        max_delay: Upper bound for any single delay, in seconds
        backoff_multiplier: Growth factor between consecutive delays
        retryable_errors: Message/code substrings that mark an error as retryable
        retryable_status_codes: HTTP status codes that mark an error as retryable
        retryable_exceptions: Exception types that are always retryable
        jitter: Add 0-25% random jitter on top of the computed delay
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    retryable_errors: Tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS
    retryable_status_codes: FrozenSet[int] = frozenset({429, 502, 503, 504})
    retryable_exceptions: Tuple[Type[BaseException], ...] = (
        TimeoutError,
        asyncio.TimeoutError,
        ConnectionError,
        httpx.TimeoutException,
        httpx.NetworkError,
    )
    jitter: bool = False


NETWORK_RETRY = RetryConfig(max_retries=3, base_delay=1.0, max_delay=8.0, jitter=True)
QUICK_RETRY = RetryConfig(max_retries=1, base_delay=0.5, max_delay=1.0)


@dataclass
class RetryResult:
    """Outcome of :meth:`RetryManager.execute_with_retry`."""

    success: bool
    result: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    total_time: float = 0.0


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Delay to wait before ``attempt`` (1-based).

    The first attempt never waits; attempt k >= 2 waits
    ``min(base_delay * backoff_multiplier ** (k - 2), max_delay)``.
    """
    if attempt <= 1:
        return 0.0

    delay = config.base_delay * (config.backoff_multiplier ** (attempt - 2))
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay += delay * 0.25 * random.random()  # nosec B311 - jitter, not crypto

    return delay


def get_status_code(error: BaseException) -> Optional[int]:
    """Best-effort HTTP status code carried by an exception."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def is_retryable_error(error: BaseException, config: RetryConfig) -> bool:
    """Check whether ``error`` matches any retryable signature of ``config``."""
    if isinstance(error, config.retryable_exceptions):
        return True

    status = get_status_code(error)
    if status is not None and status in config.retryable_status_codes:
        return True

    code = getattr(error, "code", None)
    if isinstance(code, str) and code.lower() in config.retryable_errors:
        return True

    message = str(error).lower()
    return any(signature in message for signature in config.retryable_errors)


OnRetry = Callable[[int, BaseException, float], None]


class RetryManager:
    """Runs an async operation until it succeeds, hits a non-retryable error,
    or exhausts ``max_retries``.

    The manager does not log; observers hook in through ``on_retry``.
    """

    def __init__(
        self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._sleep = sleep
        self._clock = clock

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[Any]],
        config: Optional[RetryConfig] = None,
        on_retry: Optional[OnRetry] = None,
    ) -> RetryResult:
        """
        Execute ``operation`` with exponential backoff.

        Args:
            operation: Zero-argument callable returning a fresh awaitable per attempt
            config: Retry configuration (defaults to ``RetryConfig()``)
            on_retry: Called as ``on_retry(attempt, error, delay)`` before each wait

        Returns:
            RetryResult describing success, the result or last error, and the
            number of attempts actually made
        """
        config = config or RetryConfig()
        start = self._clock()
        last_error: Optional[BaseException] = None
        attempts = 0

        for attempt in range(1, config.max_retries + 2):
            if attempt > 1:
                delay = calculate_delay(attempt, config)
                suggested = getattr(last_error, "suggested_delay", None)
                if isinstance(suggested, (int, float)) and suggested > delay:
                    delay = min(float(suggested), config.max_delay)
                if on_retry is not None:
                    on_retry(attempt, last_error, delay)
                if delay > 0:
                    await self._sleep(delay)

            attempts = attempt
            try:
                result = await operation()
                return RetryResult(
                    success=True,
                    result=result,
                    attempts=attempts,
                    total_time=self._clock() - start,
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                if not is_retryable_error(e, config):
                    break

        return RetryResult(
            success=False,
            error=last_error,
            attempts=attempts,
            total_time=self._clock() - start,
        )
