"""
Retry utilities with exponential backoff.

Used for calls that are safe to repeat, such as the idempotent settlement
report. Chain submissions are never retried through this module.

Usage:
    from splitpay.retry import retry_async, RetryConfig

    config = RetryConfig(max_retries=3, base_delay=0.5)
    ack = await retry_async(post_report, payload, config=config)
"""
from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, ParamSpec, Type, TypeVar

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior.

    Attributes:
        max_retries: Maximum number of retry attempts (0 means no retries)
        base_delay: Initial delay between retries in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential backoff calculation
        jitter: Maximum jitter factor (0.0-1.0) added to delays
        retryable_exceptions: Exception types that trigger retries
        non_retryable_exceptions: Exception types that are never retried
        retry_condition: Optional predicate deciding if an exception is retried
    """

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: float = 0.1
    retryable_exceptions: tuple[Type[BaseException], ...] = (Exception,)
    non_retryable_exceptions: tuple[Type[BaseException], ...] = ()
    retry_condition: Optional[Callable[[BaseException], bool]] = None

    def calculate_delay(self, attempt: int) -> float:
        """Delay for the given attempt number (0-based)."""
        delay = self.base_delay * (self.exponential_base ** attempt)
        delay = min(delay, self.max_delay)
        if self.jitter > 0:
            jitter_range = delay * self.jitter
            delay = delay + random.uniform(-jitter_range, jitter_range)
        return max(0.0, delay)

    def should_retry(self, exception: BaseException) -> bool:
        # Non-retryable takes precedence
        if isinstance(exception, self.non_retryable_exceptions):
            return False
        if self.retry_condition is not None:
            return self.retry_condition(exception)
        return isinstance(exception, self.retryable_exceptions)


@dataclass
class RetryStats:
    """Statistics about retry execution."""

    attempts: int = 0
    total_delay: float = 0.0
    success: bool = False
    last_exception: Optional[BaseException] = None


class RetryExhausted(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(
        self,
        message: str,
        stats: RetryStats,
        original_exception: BaseException,
    ) -> None:
        super().__init__(message)
        self.stats = stats
        self.original_exception = original_exception


async def retry_async(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    config: Optional[RetryConfig] = None,
    **kwargs: P.kwargs,
) -> T:
    """Execute an async function with retry logic.

    Raises:
        RetryExhausted: If all retries fail with retryable exceptions
        Exception: The first non-retryable exception, unchanged
    """
    config = config or RetryConfig()
    stats = RetryStats()

    for attempt in range(config.max_retries + 1):
        stats.attempts = attempt + 1
        try:
            result = await func(*args, **kwargs)
            stats.success = True
            return result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            stats.last_exception = exc
            if not config.should_retry(exc):
                raise
            if attempt >= config.max_retries:
                break
            delay = config.calculate_delay(attempt)
            stats.total_delay += delay
            logger.warning(
                "Retry %d/%d for %s after %.2fs: %s",
                attempt + 1,
                config.max_retries,
                getattr(func, "__name__", repr(func)),
                delay,
                exc,
            )
            await asyncio.sleep(delay)

    assert stats.last_exception is not None
    raise RetryExhausted(
        f"All {stats.attempts} attempts failed: {stats.last_exception}",
        stats=stats,
        original_exception=stats.last_exception,
    )
