# backend/bharatcrm/utils/retry_logic.py
"""
Retry with exponential backoff for Graph API and Drive calls.

Two kinds of failure are retried:
- transport errors (connection reset, timeout), raised as exceptions
- throttling / upstream errors, returned as an httpx.Response whose status is
  in `retry_statuses`; the last such response is handed back unchanged so the
  caller can surface Meta's or Google's error body
"""

import asyncio
import functools
import random
from typing import Callable, Iterable, Tuple, Type

import httpx

from bharatcrm.utils.logger import logger

# Graph API throttling and Google 5xx
RETRYABLE_STATUSES = (429, 500, 502, 503, 504)


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    jitter: bool = True,
) -> float:
    """base_delay * 2**attempt, capped at max_delay, scaled by 0.5-1.5 when jitter is on."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random()
    return delay


def retry_async(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (httpx.TransportError,),
    retry_statuses: Iterable[int] = (),
):
    """
    Decorator for async functions.

    Example:
        @retry_async(max_retries=2, base_delay=0.5, retry_statuses=RETRYABLE_STATUSES)
        async def _get(self, url, params=None) -> httpx.Response:
            ...
    """
    statuses = frozenset(retry_statuses)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                last_attempt = attempt == max_retries
                try:
                    result = await func(*args, **kwargs)
                except exceptions as e:
                    if last_attempt:
                        logger.error(f"[Retry] {func.__name__} gave up after {attempt + 1} attempts: {e}")
                        raise
                    reason = str(e) or type(e).__name__
                else:
                    status = getattr(result, "status_code", None)
                    if status not in statuses or last_attempt:
                        return result
                    reason = f"HTTP {status}"

                delay = calculate_backoff(attempt, base_delay, max_delay)
                logger.warning(
                    f"[Retry] {func.__name__} attempt {attempt + 1}/{max_retries + 1} failed ({reason}), "
                    f"retrying in {delay:.2f}s"
                )
                await asyncio.sleep(delay)

        return wrapper
    return decorator
