"""Bounded, classified retries for units of work.

Callers decide which errors are worth another attempt; everything else
propagates on first occurrence.  Retry state is local to one call, so
work for one connection never holds back work for another.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transport failures that are safe to re-run
RETRYABLE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    ConnectionError,
    TimeoutError,
)


def backoff_delay(
    retry_number: int,
    base_delay: float,
    backoff_factor: float = 1.0,
    max_delay: float | None = None,
) -> float:
    """Full-jitter pause before re-run ``retry_number`` (1-based).

    The ceiling grows as ``base_delay * backoff_factor ** (retry_number - 1)``
    and is capped at ``max_delay``; the pause is drawn uniformly below it.
    """
    ceiling = base_delay * backoff_factor ** (retry_number - 1)
    if max_delay is not None:
        ceiling = min(ceiling, max_delay)
    if ceiling <= 0:
        return 0.0
    return random.uniform(0, ceiling)  # noqa: S311


def retry_on(*exc_types: type[BaseException]) -> Callable[[BaseException], bool]:
    """Build an ``is_retryable`` classifier from exception types."""
    return lambda exc: isinstance(exc, exc_types)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    is_retryable: Callable[[BaseException], bool],
    max_retries: int = 1,
    delay: float = 0.0,
    backoff_factor: float = 1.0,
    max_delay: float | None = None,
    operation_name: str = "operation",
) -> T:
    """Run *operation*, re-running it only for errors classified as retryable.

    The whole unit is re-executed from scratch on each attempt, so it must
    re-read any state it depends on.  Terminal errors propagate on first
    occurrence; a retryable error that survives ``max_retries`` re-runs
    propagates unchanged.

    Args:
        operation: Zero-argument coroutine factory for one attempt.
        is_retryable: Classifier deciding whether an error warrants a re-run.
        max_retries: Re-runs allowed after the first attempt.
        delay: Jitter ceiling in seconds before the first re-run; 0 re-runs
            immediately.
        backoff_factor: Growth of the ceiling for each further re-run.
        max_delay: Cap on the ceiling.
        operation_name: Label used in log messages.

    Returns:
        The result of the first successful attempt.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt >= max_retries:
                logger.warning(
                    "%s failed after %d attempt(s): %s",
                    operation_name,
                    attempt + 1,
                    exc,
                )
                raise
            attempt += 1
            pause = backoff_delay(attempt, delay, backoff_factor, max_delay)
            logger.info(
                "Retrying %s (%d/%d) after %s (waiting %.2fs)",
                operation_name,
                attempt,
                max_retries,
                type(exc).__name__,
                pause,
            )
            if pause:
                await asyncio.sleep(pause)
