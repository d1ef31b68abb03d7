"""
Utility functions and decorators for the zkcensus system.

This module provides the timing and retry decorators used by the proving and
submission layers, plus small identifier and formatting helpers.
"""

import functools
import time
import uuid
from typing import Any, Callable, Optional, TypeVar

import structlog

# Initialize structured logger
logger = structlog.get_logger(__name__)

# Type variable for generic decorators
F = TypeVar("F", bound=Callable[..., Any])


def timer(func: F) -> F:
    """
    Decorator to measure and log function execution time.

    Parameters
    ----------
    func : Callable
        Function to be timed.

    Returns
    -------
    Callable
        Wrapped function with timing capability.

    Examples
    --------
    >>> @timer
    ... def slow_function():
    ...     time.sleep(1)
    ...     return "done"
    >>> result = slow_function()  # Logs execution time
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()

        try:
            result = func(*args, **kwargs)
            execution_time = (time.perf_counter() - start_time) * 1000

            logger.debug(
                "Function execution completed",
                function_name=func.__name__,
                module=func.__module__,
                execution_time_ms=execution_time,
                success=True,
            )

            return result

        except Exception as e:
            execution_time = (time.perf_counter() - start_time) * 1000

            logger.debug(
                "Function execution failed",
                function_name=func.__name__,
                module=func.__module__,
                execution_time_ms=execution_time,
                error_type=type(e).__name__,
                success=False,
            )

            raise

    return wrapper


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    max_delay: Optional[float] = None,
    exceptions: tuple = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
) -> Callable[[F], F]:
    """
    Decorator to retry function execution on failure.

    Only the listed exception types are retried; anything else propagates
    on the first occurrence. When every attempt fails, the last exception is
    re-raised unchanged.

    Parameters
    ----------
    max_attempts : int, default=3
        Maximum number of attempts, first one included.
    delay : float, default=1.0
        Initial delay between retries in seconds.
    backoff : float, default=2.0
        Backoff multiplier for delay.
    max_delay : float, optional
        Ceiling on the delay between two attempts.
    exceptions : tuple, default=(Exception,)
        Tuple of exception types to catch and retry.
    sleep : Callable[[float], None], default=time.sleep
        Sleep function, injectable for tests.

    Returns
    -------
    Callable
        Decorator function.

    Examples
    --------
    >>> @retry(max_attempts=3, delay=0.5, exceptions=(ConnectionError,))
    ... def send():
    ...     pass
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay
            last_exception = None

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)

                except exceptions as e:
                    last_exception = e

                    if attempt < max_attempts - 1:  # Don't sleep on last attempt
                        wait = (
                            min(current_delay, max_delay)
                            if max_delay is not None
                            else current_delay
                        )
                        logger.warning(
                            f"Function {func.__name__} failed, retrying",
                            attempt=attempt + 1,
                            max_attempts=max_attempts,
                            delay_seconds=wait,
                            error=str(e),
                        )

                        sleep(wait)
                        current_delay *= backoff
                    else:
                        logger.error(
                            f"Function {func.__name__} failed after all retries",
                            total_attempts=max_attempts,
                            final_error=str(e),
                        )

            raise last_exception

        return wrapper

    return decorator


def generate_registration_id() -> str:
    """
    Generate a unique registration identifier.

    Returns
    -------
    str
        32-character hexadecimal identifier.
    """
    return uuid.uuid4().hex


def generate_census_id(prefix: str = "census") -> str:
    """
    Generate a unique census identifier with a timestamp component.

    Examples
    --------
    >>> generate_census_id()  # e.g. "census_20240101_123456_abc12345"
    """
    timestamp = time.strftime("%Y%m%d_%H%M%S")
    unique_suffix = uuid.uuid4().hex[:8]
    return f"{prefix}_{timestamp}_{unique_suffix}"


def truncate_hex(value: bytes, length: int = 16) -> str:
    """Render the first ``length`` hex characters of ``value`` for logging."""
    return value.hex()[:length] + "..."
