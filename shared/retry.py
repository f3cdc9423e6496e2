"""
Retry logic with exponential backoff.

Decorator and call helper for automatic retry with exponential backoff on
retryable errors.
"""

import asyncio
import functools
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, TypeVar

from shared.errors import RetryableError, RateLimitError
from shared.logging import get_logger

T = TypeVar("T")
logger = get_logger("retry")


def _backoff_delay(error: Exception, attempt: int, base_delay: float) -> float:
    """Exponential delay, stretched to a provider's Retry-After when given."""
    delay = base_delay * (2 ** attempt)
    if isinstance(error, RateLimitError) and error.retry_after:
        delay = max(delay, error.retry_after)
    return delay


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 2,
    retryable_exceptions: Tuple[Type[Exception], ...] = (RetryableError, RateLimitError),
    label: Optional[str] = None,
    **kwargs: Any
) -> T:
    """
    Await `func(*args, **kwargs)`, retrying retryable errors with backoff.

    Non-retryable exceptions (and cancellation) propagate immediately. When
    all attempts fail, the last retryable exception is raised.

    Args:
        func: Coroutine function to call
        max_attempts: Maximum number of attempts (default: 3)
        base_delay: Base delay in seconds (delays: base, 2*base, 4*base...)
        retryable_exceptions: Exception types that trigger a retry
        label: Name used in log messages (defaults to func.__name__)
    """
    name = label or getattr(func, "__name__", repr(func))
    last_exception: Optional[Exception] = None

    for attempt in range(max_attempts):
        try:
            return await func(*args, **kwargs)
        except retryable_exceptions as e:
            last_exception = e
            if attempt < max_attempts - 1:
                delay = _backoff_delay(e, attempt, base_delay)
                logger.warning(
                    f"Retry attempt {attempt + 1}/{max_attempts} for {name} after {delay}s delay",
                    extra={"error": str(e), "attempt": attempt + 1}
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    f"All {max_attempts} retry attempts failed for {name}",
                    extra={"error": str(e)}
                )

    if last_exception:
        raise last_exception
    raise RuntimeError(f"Function {name} failed after {max_attempts} attempts")


def retry_with_backoff(
    max_attempts: int = 3,
    base_delay: float = 2,
    retryable_exceptions: Tuple[Type[Exception], ...] = (RetryableError, RateLimitError)
):
    """
    Decorator for retrying coroutine functions with exponential backoff.

    Args:
        max_attempts: Maximum number of retry attempts (default: 3)
        base_delay: Base delay in seconds for exponential backoff (default: 2)
        retryable_exceptions: Tuple of exception types to retry on

    Example:
        @retry_with_backoff(max_attempts=3, base_delay=2)
        async def call_api():
            response = await api_client.call(...)
            return response
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        if not asyncio.iscoroutinefunction(func):
            raise TypeError(f"retry_with_backoff requires a coroutine function, got {func!r}")

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_async(
                func,
                *args,
                max_attempts=max_attempts,
                base_delay=base_delay,
                retryable_exceptions=retryable_exceptions,
                label=func.__name__,
                **kwargs
            )

        return async_wrapper

    return decorator
