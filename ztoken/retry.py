"""Backoff helpers for retrying role token exchanges."""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter)


def _should_retry(error: Exception, attempt: int, attempts: int) -> bool:
    return getattr(error, "retryable", False) and attempt + 1 < attempts


def call_with_retry(fn: Callable[[], T], attempts: int = 3, base: float = 1.5, jitter: float = 0.5) -> T:
    """
    Call fn, retrying errors marked retryable.

    Denials and signing failures are raised on the first occurrence.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        try:
            return fn()
        except Exception as e:
            if not _should_retry(e, attempt, attempts):
                raise
            delay = compute_backoff(attempt, base, jitter)
            logger.warning(f"Attempt {attempt + 1}/{attempts} failed ({e}); retrying in {delay:.1f}s")
            time.sleep(delay)

    raise AssertionError("unreachable")


async def async_call_with_retry(
    fn: Callable[[], Awaitable[T]], attempts: int = 3, base: float = 1.5, jitter: float = 0.5
) -> T:
    """Async counterpart of call_with_retry()."""
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(attempts):
        try:
            return await fn()
        except Exception as e:
            if not _should_retry(e, attempt, attempts):
                raise
            delay = compute_backoff(attempt, base, jitter)
            logger.warning(f"Attempt {attempt + 1}/{attempts} failed ({e}); retrying in {delay:.1f}s")
            await asyncio.sleep(delay)

    raise AssertionError("unreachable")
