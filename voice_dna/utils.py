"""
Shared utility functions used throughout the Voice DNA codebase.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for TIMESTAMPTZ columns)
    - generate_id(): UUID4 string generator (for document keys)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_timestamp(value): Epoch seconds / millis / ISO string -> UTC datetime
    - @with_retry: Decorator with exponential backoff for transient failures
"""

from datetime import datetime, timezone
import uuid
import asyncio
import logging
import time as time_module
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type, TypeVar, Union

from voice_dna.exceptions import RetryExhaustedError, UpstreamUnavailableError

T = TypeVar("T")

# Epoch values above this are treated as milliseconds (year ~2286 in seconds)
_MILLIS_THRESHOLD = 10_000_000_000


# ===========================================================================
# TIMEZONE UTILITIES
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``.

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """
    Generate a unique ID for stored documents.

    Returns:
        A UUID4 string.
    """
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[int, float, str, datetime, None]) -> Optional[datetime]:
    """
    Parse a scraped timestamp into a UTC datetime.

    Accepts epoch seconds, epoch milliseconds, ISO-8601 strings (with or
    without a trailing ``Z``) and datetimes.  Returns ``None`` for empty or
    unparseable input so callers can apply their own default.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if value <= 0:
            return None
        seconds = value / 1000 if value > _MILLIS_THRESHOLD else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        try:
            return ensure_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
        except ValueError:
            return None
    return None


# ===========================================================================
# RETRY DECORATOR WITH EXPONENTIAL BACKOFF
# Retries are for transient failures only. Eventually raises if all fail.
# ===========================================================================


def is_transient(exc: BaseException) -> bool:
    """Return ``True`` unless *exc* is an upstream error flagged permanent."""
    if isinstance(exc, UpstreamUnavailableError):
        return exc.transient
    return True


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable:
    """
    Decorator for retry logic with exponential backoff.

    - Retries are for transient failures (rate limits, timeouts).
    - An ``UpstreamUnavailableError`` with ``transient=False`` propagates
      immediately without retrying.
    - Eventually raises ``RetryExhaustedError`` if all attempts fail.

    Works with both synchronous and asynchronous functions.

    Args:
        max_attempts: Maximum number of attempts (default ``3``).
        base_delay: Initial delay in seconds before the first retry.
            Subsequent delays grow as ``base_delay * (2 ** attempt)``.
        retryable_exceptions: Exception types that trigger a retry.
        operation_name: Name used in log messages; defaults to the
            wrapped function's ``__name__``.

    Raises:
        RetryExhaustedError: When all retry attempts have been exhausted.

    Usage::

        @with_retry(max_attempts=3, base_delay=1.0,
                    retryable_exceptions=(BackendError,))
        async def complete(instruction: str) -> str:
            ...
    """

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if not is_transient(e):
                        raise
                    last_error = e
                    if attempt < max_attempts:
                        delay = base_delay * (2 ** (attempt - 1))
                        logging.warning(
                            "[RETRY] %s attempt %d/%d failed: %s. "
                            "Retrying in %.1fs...",
                            op_name,
                            attempt,
                            max_attempts,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logging.error(
                            "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                            op_name,
                            max_attempts,
                            e,
                        )
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            )

        @wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except retryable_exceptions as e:
                    if not is_transient(e):
                        raise
                    last_error = e
                    if attempt < max_attempts:
                        delay = base_delay * (2 ** (attempt - 1))
                        logging.warning(
                            "[RETRY] %s attempt %d/%d failed: %s. "
                            "Retrying in %.1fs...",
                            op_name,
                            attempt,
                            max_attempts,
                            e,
                            delay,
                        )
                        time_module.sleep(delay)
                    else:
                        logging.error(
                            "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                            op_name,
                            max_attempts,
                            e,
                        )
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            )

        if asyncio.iscoroutinefunction(func):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator
