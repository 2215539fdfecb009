"""
Bounded retry for content generator calls.

Key concepts:
- is_retryable_error: transient network/API failures are retried, auth and
  request errors are not
- bounded_retry: decorator for async callables, parametrized by attempt count,
  extra exception types to retry and a fallback used after exhaustion
"""

import asyncio
import logging
import random
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

logger = logging.getLogger("casegen")

_NO_FALLBACK = object()

RETRYABLE_PATTERNS = [
    "429", "rate limit", "rate_limit", "ratelimit",
    "500", "502", "503", "504",
    "timeout", "timed out", "connection",
    "overloaded", "overload", "capacity",
    "temporarily unavailable", "service unavailable",
    "internal server error", "bad gateway", "gateway timeout",
    "empty response",
]

NON_RETRYABLE_PATTERNS = [
    "401", "403", "400",
    "invalid api key", "invalid_api_key", "authentication",
    "unauthorized", "forbidden", "invalid model",
    "model not found", "does not exist",
]


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is retryable (transient network/API errors).

    Retryable errors include:
    - Network timeouts and connection errors
    - HTTP 429 (rate limit), 500, 502, 503, 504 (server errors)
    - Provider-specific overload/rate limit exceptions

    Non-retryable errors include:
    - HTTP 400 (bad request), 401 (auth), 403 (forbidden)
    - Invalid API key or model errors
    """
    if isinstance(error, (asyncio.TimeoutError, ConnectionError)):
        return True

    error_str = str(error).lower()
    error_type = type(error).__name__.lower()

    for pattern in NON_RETRYABLE_PATTERNS:
        if pattern in error_str:
            return False

    for pattern in RETRYABLE_PATTERNS:
        if pattern in error_str:
            return True

    for rtype in ("timeout", "connection", "network", "http"):
        if rtype in error_type:
            return True

    return False


def backoff_delay(attempt: int, base: float = 1.0) -> float:
    """Exponential backoff with jitter: ~1s, 3s, 9s for attempts 1, 2, 3."""
    return base * (3 ** (attempt - 1)) + random.uniform(0, base)


def bounded_retry(
    attempts: int = 3,
    retry_on: Tuple[Type[BaseException], ...] = (),
    fallback: Any = _NO_FALLBACK,
    backoff_base: float = 1.0,
    label: Optional[str] = None,
    retry_transient: bool = True,
) -> Callable:
    """
    Wrap an async callable with a bounded retry loop.

    Args:
        attempts: Total number of attempts (>= 1)
        retry_on: Exception types that are always retried (e.g. validation errors)
        fallback: Value, or callable receiving the last exception, returned
            instead of raising once attempts are exhausted or the error is
            not retryable
        backoff_base: Base delay in seconds for exponential backoff
        label: Name used in log lines (defaults to the function name)
        retry_transient: Also retry transient network/API errors; turn off
            when the wrapped call already retries them itself

    Returns:
        Decorator for async functions
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    def decorator(func: Callable) -> Callable:
        name = label or func.__name__

        @wraps(func)
        async def wrapper(*args, **kwargs):
            last_error: Optional[BaseException] = None
            for attempt in range(attempts):
                if attempt > 0:
                    delay = backoff_delay(attempt, backoff_base)
                    logger.info(f"[{name}] Retry attempt {attempt + 1}/{attempts} after {delay:.1f}s delay")
                    await asyncio.sleep(delay)
                try:
                    return await func(*args, **kwargs)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    last_error = e
                    logger.warning(f"[{name}] attempt {attempt + 1}/{attempts} failed: {e}")

                    retryable = isinstance(e, retry_on) or (retry_transient and is_retryable_error(e))
                    if not retryable:
                        logger.error(f"[{name}] Non-retryable error: {e}")
                        break
                    if attempt == attempts - 1:
                        logger.error(f"[{name}] All {attempts} attempts exhausted")

            if fallback is _NO_FALLBACK:
                raise last_error
            logger.warning(f"[{name}] Using fallback after failure: {last_error}")
            return fallback(last_error) if callable(fallback) else fallback

        return wrapper

    return decorator
