"""
Retry decorator with exponential backoff.

Provides automatic retry for transient HTTP transport errors:
- Connection errors (refused, reset, DNS)
- Timeouts (connect, read, write, pool)
- Protocol errors raised while reading the response

HTTP status codes are never retried here: every response, including 4xx
and 5xx, is a result the caller gets to see.
"""

from __future__ import annotations

import asyncio
import logging
import random
from functools import wraps
from typing import Tuple, Type

import httpx

logger = logging.getLogger(__name__)

RETRYABLE_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    httpx.TransportError,
)


def with_retry(max_attempts: int = 3, base_delay: float = 0.5, max_delay: float = 10.0):
    """
    Decorator for exponential backoff retry of async callables.

    Args:
        max_attempts: Maximum number of attempts (including initial).
        base_delay: Base delay in seconds for exponential backoff.
        max_delay: Maximum delay cap in seconds.

    Returns:
        Decorated coroutine function with retry behavior.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_exception = None

            for attempt in range(max(1, max_attempts)):
                try:
                    return await func(*args, **kwargs)
                except RETRYABLE_EXCEPTIONS as e:
                    last_exception = e

                if attempt < max_attempts - 1:
                    delay = min(
                        base_delay * (2**attempt) + random.uniform(0, base_delay), max_delay
                    )
                    logger.warning(
                        "%s failed with %s, retrying in %.2fs (attempt %d/%d)",
                        func.__name__,
                        type(last_exception).__name__,
                        delay,
                        attempt + 1,
                        max_attempts,
                    )
                    await asyncio.sleep(delay)

            assert last_exception is not None
            raise last_exception

        return wrapper

    return decorator
