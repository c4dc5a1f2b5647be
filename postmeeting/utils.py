"""
Utility functions for the PostMeeting service.
"""
import asyncio
import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Callable, Optional, TypeVar

from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from postmeeting.config import settings
from postmeeting.exceptions import TransientAPIError

# tenacity's log helpers want a stdlib logger
retry_logger = logging.getLogger("postmeeting.retry")

T = TypeVar('T')


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 string (or date) into an aware UTC datetime.

    Naive values are assumed to be UTC. Returns None for empty or invalid input.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_duration(seconds: float) -> str:
    """
    Format duration in seconds to human-readable string.

    Args:
        seconds: Duration in seconds

    Returns:
        Formatted string like "2m 30s"
    """
    if seconds < 60:
        return f"{seconds:.1f}s"
    elif seconds < 3600:
        minutes = int(seconds // 60)
        secs = int(seconds % 60)
        return f"{minutes}m {secs}s"
    else:
        hours = int(seconds // 3600)
        minutes = int((seconds % 3600) // 60)
        return f"{hours}h {minutes}m"


def async_retry(
    max_attempts: int = None,
    backoff_base: float = None,
    max_wait: int = None,
    retry_on: tuple = None
):
    """
    Decorator for retrying async functions with exponential backoff.

    A call that times out is treated like any other transient failure. Once the
    attempt budget is spent the last exception is re-raised to the caller.

    Args:
        max_attempts: Maximum attempts (default from config)
        backoff_base: Base for exponential backoff (default from config)
        max_wait: Maximum wait time in seconds (default from config)
        retry_on: Tuple of exception types to retry on

    Returns:
        Decorated function with retry logic
    """
    max_attempts = max_attempts or settings.max_retries
    backoff_base = backoff_base or settings.retry_backoff_base
    max_wait = max_wait or settings.retry_max_wait

    if retry_on is None:
        retry_on = (TransientAPIError, asyncio.TimeoutError)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(
                multiplier=settings.retry_multiplier,
                min=0,
                max=max_wait,
                exp_base=backoff_base,
            ),
            retry=retry_if_exception_type(retry_on),
            before_sleep=before_sleep_log(retry_logger, logging.WARNING),
            reraise=True,
        )
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await func(*args, **kwargs)

        return wrapper

    return decorator


def safe_dict_get(d: dict, *keys: Any, default: Any = None) -> Any:
    """
    Safely get nested dictionary values.

    Integer keys index into lists, so ``safe_dict_get(r, "alternatives", 0)`` works.

    Args:
        d: Dictionary to search
        *keys: Keys to traverse
        default: Default value if key not found

    Returns:
        Value or default
    """
    for key in keys:
        try:
            d = d[key]
        except (KeyError, IndexError, TypeError, AttributeError):
            return default
    return d


def as_list(value: Any) -> list:
    """Return value if it is a list, else an empty list."""
    return value if isinstance(value, list) else []
