"""
Submit-then-poll adapter and provider error mapping.

Asynchronous providers are driven through `submit_and_poll`, so a caller
sees one awaitable per generation regardless of how the provider works.
Errors are mapped onto the pipeline taxonomy: retryable problems become
TransientBackendError / RateLimitError, exhausted credit becomes
QuotaExceededError, everything else is a permanent GenerationError.
"""

import asyncio
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterator, Mapping, Optional, TypeVar

import httpx

from shared.errors import (
    GenerationError,
    PipelineError,
    QuotaExceededError,
    RateLimitError,
    TransientBackendError,
)
from shared.logging import get_logger

logger = get_logger("generators.polling")

T = TypeVar("T")

SUCCEEDED = "succeeded"
FAILED = "failed"
CANCELED = "canceled"
RUNNING = "running"

_STATUS_ALIASES = {
    "succeeded": SUCCEEDED,
    "success": SUCCEEDED,
    "completed": SUCCEEDED,
    "complete": SUCCEEDED,
    "failed": FAILED,
    "failure": FAILED,
    "error": FAILED,
    "canceled": CANCELED,
    "cancelled": CANCELED,
}


def normalize_status(raw: Optional[str]) -> str:
    """Map a provider status string onto succeeded/failed/canceled/running."""
    if not raw:
        return RUNNING
    return _STATUS_ALIASES.get(str(raw).strip().lower(), RUNNING)


@dataclass
class PollResult:
    status: str
    output: Any = None
    error: Optional[str] = None


async def submit_and_poll(
    submit: Callable[[], Awaitable[T]],
    poll: Callable[[T], Awaitable[PollResult]],
    *,
    label: str,
    interval: float,
    timeout: float,
    max_polls: int,
) -> Any:
    """
    Submit a task, then poll it until it reaches a terminal state.

    Args:
        submit: Creates the remote task and returns its handle
        poll: Fetches the current state of a handle
        label: Provider/operation name for logs and errors
        interval: Seconds between polls
        timeout: Overall seconds allowed after submission
        max_polls: Poll ceiling, independent of the timeout

    Returns:
        The task output on success

    Raises:
        TransientBackendError: Timeout or poll ceiling reached
        GenerationError: Provider reported failure or cancellation
    """
    handle = await submit()
    loop = asyncio.get_running_loop()
    started = loop.time()

    for attempt in range(1, max_polls + 1):
        await asyncio.sleep(interval)
        result = await poll(handle)
        status = normalize_status(result.status)

        if status == SUCCEEDED:
            if result.output is None:
                raise GenerationError(f"{label} succeeded without output")
            logger.debug(f"{label} finished after {attempt} polls", extra={"polls": attempt})
            return result.output
        if status == FAILED:
            raise classify_error_message(f"{label} failed: {result.error or 'unknown error'}")
        if status == CANCELED:
            raise GenerationError(f"{label} was cancelled by the provider")

        elapsed = loop.time() - started
        if elapsed > timeout:
            raise TransientBackendError(f"{label} timeout after {elapsed:.1f}s")

    raise TransientBackendError(f"{label} not finished after {max_polls} polls")


def classify_error_message(message: str) -> PipelineError:
    """Best-effort classification of a provider error string."""
    lowered = message.lower()
    if "insufficient credit" in lowered or "quota" in lowered or "payment required" in lowered:
        return QuotaExceededError(message)
    if "rate limit" in lowered or "429" in lowered:
        return RateLimitError(message)
    if "timeout" in lowered or "timed out" in lowered or "network" in lowered or "connection" in lowered:
        return TransientBackendError(message)
    return GenerationError(message)


def parse_retry_after(headers: Mapping[str, str]) -> Optional[float]:
    """Seconds from a Retry-After header, if numeric."""
    value = headers.get("retry-after") or headers.get("Retry-After")
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """
    Raise the pipeline error matching an HTTP error response.

    402 -> QuotaExceededError, 429 -> RateLimitError, 408/5xx ->
    TransientBackendError, other 4xx -> GenerationError.
    """
    if response.is_success:
        return
    status = response.status_code
    detail = response.text[:500]
    message = f"{provider} API error: {status} - {detail}"
    if status == 402:
        raise QuotaExceededError(message, code="PROVIDER_QUOTA")
    if status == 429:
        raise RateLimitError(message, retry_after=parse_retry_after(response.headers))
    if status == 408 or status >= 500:
        raise TransientBackendError(message)
    raise GenerationError(message)


@contextmanager
def translate_transport_errors(provider: str) -> Iterator[None]:
    """Turn httpx transport failures into TransientBackendError."""
    try:
        yield
    except httpx.TimeoutException as e:
        raise TransientBackendError(f"{provider} request timed out: {e}") from e
    except httpx.TransportError as e:
        raise TransientBackendError(f"{provider} network error: {e}") from e
