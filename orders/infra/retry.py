"""
Retry utilities with exponential backoff and jitter.
"""
import logging
import random
import time
from functools import wraps
from typing import Any, Callable, TypeVar

from django.conf import settings

from orders.domain.errors import ConflictError

T = TypeVar('T')

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int | None = None,
    initial_delay: float | None = None,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    exceptions: tuple = (ConflictError,),
):
    """
    Decorator for retrying functions with exponential backoff and jitter.

    Args:
        max_retries: Maximum number of retry attempts
            (default: ``settings.ORDERS_CONFLICT_RETRIES``)
        initial_delay: Initial delay in seconds
            (default: ``settings.ORDERS_RETRY_INITIAL_DELAY``)
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Whether to add random jitter to delay
        exceptions: Tuple of exceptions to catch and retry

    The wrapped function must open its own transaction, so that each attempt
    starts from fresh database state.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = max_retries if max_retries is not None else settings.ORDERS_CONFLICT_RETRIES
            delay = initial_delay if initial_delay is not None else settings.ORDERS_RETRY_INITIAL_DELAY

            for attempt in range(retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == retries:
                        logger.warning(
                            "retry_exhausted",
                            extra={"operation": func.__name__, "attempts": attempt + 1, "error": str(e)},
                        )
                        raise

                    # Add random jitter (0 to 25% of delay)
                    actual_delay = delay + delay * 0.25 * random.random() if jitter else delay
                    actual_delay = min(actual_delay, max_delay)

                    logger.info(
                        "retrying_after_conflict",
                        extra={"operation": func.__name__, "attempt": attempt + 1, "delay": actual_delay},
                    )
                    time.sleep(actual_delay)
                    delay *= exponential_base

        return wrapper
    return decorator
