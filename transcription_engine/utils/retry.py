"""Retry utility with exponential backoff for backend HTTP calls.

Only transient failures are retried: rate limiting and busy-service
responses surface as RecoverableRecognitionError, dropped connections as
httpx.TransportError. Everything else propagates on the first attempt.
"""

import asyncio
import logging
from collections.abc import Callable
from functools import wraps
from typing import Any

import httpx

from transcription_engine.utils.errors import RecoverableRecognitionError

logger = logging.getLogger(__name__)

TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    RecoverableRecognitionError,
    httpx.TransportError,
)


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
) -> Callable:
    """Decorator for retrying async backend calls with exponential backoff.

    Delay follows the formula: base_delay * 2^attempt

    Args:
        max_retries: Maximum number of retry attempts (default 3).
        base_delay: Base delay in seconds before first retry (default 1.0).
        retryable_exceptions: Exception types eligible for retry. Others
            are re-raised immediately with ``retry_count`` attached.

    Returns:
        Decorator that wraps an async function with retry logic.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    if attempt >= max_retries:
                        exc.retry_count = attempt  # type: ignore[attr-defined]
                        raise
                    delay = base_delay * (2**attempt)
                    logger.warning(
                        "Retry %d/%d for %s after %.1fs: %s",
                        attempt + 1,
                        max_retries,
                        func.__name__,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)
                except Exception as exc:
                    exc.retry_count = attempt  # type: ignore[attr-defined]
                    raise
            raise AssertionError("unreachable")

        return wrapper

    return decorator
