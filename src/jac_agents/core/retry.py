# src/jac_agents/core/retry.py

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RetryCallback = Callable[[int, int], None]


def backoff_delay(attempt: int, base_delay: float) -> float:
    """Delay after the given (1-based) failed attempt: base, 2*base, 4*base, ..."""
    return float(base_delay) * (2 ** (max(1, int(attempt)) - 1))


def _check_args(max_retries: int, base_delay: float) -> None:
    if max_retries < 1:
        raise ValueError("max_retries must be >= 1")
    if base_delay < 0:
        raise ValueError("base_delay must be >= 0")


def retry_with_backoff(
    fn: Callable[[], T],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    on_retry: RetryCallback | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn() up to max_retries times.

    Between attempts waits base_delay * 2**(attempt-1) seconds and calls
    on_retry(attempt, max_retries). The last error is re-raised.
    """
    _check_args(max_retries, base_delay)

    last_error: BaseException | None = None
    for attempt in range(1, max_retries + 1):
        try:
            return fn()
        except retry_on as e:
            last_error = e
            if attempt >= max_retries:
                break
            delay = backoff_delay(attempt, base_delay)
            logger.info("Attempt %d/%d failed (%s); retrying in %.2fs", attempt, max_retries, e, delay)
            if on_retry is not None:
                on_retry(attempt, max_retries)
            sleep(delay)

    assert last_error is not None
    raise last_error


async def aretry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int = 3,
    base_delay: float = 1.0,
    on_retry: RetryCallback | None = None,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Async twin of retry_with_backoff (fn returns an awaitable)."""
    _check_args(max_retries, base_delay)

    last_error: BaseException | None = None
    for attempt in range(1, max_retries + 1):
        try:
            return await fn()
        except retry_on as e:
            last_error = e
            if attempt >= max_retries:
                break
            delay = backoff_delay(attempt, base_delay)
            logger.info("Attempt %d/%d failed (%s); retrying in %.2fs", attempt, max_retries, e, delay)
            if on_retry is not None:
                on_retry(attempt, max_retries)
            await sleep(delay)

    assert last_error is not None
    raise last_error
