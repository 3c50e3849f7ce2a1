"""Retry logic for connection-establishment failures."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import TypeVar

import aiohttp

__all__ = ["retry", "RETRYABLE_ERRORS"]

logger = logging.getLogger(__name__)

# Raised before the request left the process, so a retry cannot
# execute the scheduled call twice.
RETRYABLE_ERRORS = (
    aiohttp.ClientConnectorError,  # Connection refused, DNS failed
)

T = TypeVar("T")


def retry(
    times: int = 3,
    delay_sec: tuple[float, ...] = (0.2, 0.5, 1.0),
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorate an async call with backoff retry on connection failures.

    Anything raised once the connection is up (timeouts, disconnects,
    payload errors) is re-raised immediately: the upstream may already
    have acted on the request.

    Args:
        times: Number of attempts (1 = no retry).
        delay_sec: Delays between attempts in seconds.

    Returns:
        Decorator function.

    Example:
        @retry(times=3, delay_sec=(0.2, 0.5, 1.0))
        async def send():
            ...
    """
    if times < 1:
        raise ValueError(f"times must be at least 1 (got: {times})")

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: object, **kwargs: object) -> T:
            for attempt in range(times):
                try:
                    return await func(*args, **kwargs)
                except RETRYABLE_ERRORS as e:
                    if attempt == times - 1:
                        logger.debug(f"Retry exhausted after {times} attempts: {e}")
                        raise
                    logger.debug(f"Connection attempt {attempt + 1}/{times} failed: {e}")
                    delay_idx = min(attempt, len(delay_sec) - 1)
                    await asyncio.sleep(delay_sec[delay_idx])

            raise RuntimeError("Retry wrapper exhausted")

        return wrapper

    return decorator
