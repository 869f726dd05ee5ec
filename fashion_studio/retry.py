"""Retry logic for image providers using tenacity."""

from collections.abc import Callable
from functools import wraps
from typing import Any, TypeVar

from loguru import logger
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .exceptions import ImageProviderError

F = TypeVar("F", bound=Callable[..., Any])


def with_provider_retry(
    provider_name: str,
    max_retries: int = 3,
    min_wait: float = 1,
    max_wait: float = 10,
) -> Callable[[F], F]:
    """Decorator to add retry logic to image provider methods.

    Timeouts and connection failures are retried with exponential backoff.
    Provider errors raised by the wrapped call pass through untouched; any
    other exception is wrapped in ImageProviderError.

    Args:
        provider_name: Name of the provider for error messages
        max_retries: Maximum number of attempts
        min_wait: Minimum wait time between retries in seconds
        max_wait: Maximum wait time between retries in seconds

    Returns:
        Decorated function with retry logic

    """

    def decorator(func: F) -> F:
        @retry(
            retry=retry_if_exception_type((TimeoutError, ConnectionError)),
            stop=stop_after_attempt(max_retries),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"{provider_name} attempt {retry_state.attempt_number}: {retry_state.outcome.exception() if retry_state.outcome else 'Unknown error'}",
            ),
        )
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except (TimeoutError, ConnectionError, ImageProviderError):
                raise
            except Exception as e:
                logger.error(f"{provider_name} API error: {e}")
                raise ImageProviderError(f"{provider_name} API error: {e}") from e

        return wrapper  # type: ignore[return-value,no-any-return]

    return decorator
