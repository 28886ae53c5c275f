"""Retry with exponential backoff for transient backend failures."""

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

from ..storage.cloud_storage import BackendTransientError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    backoff_factor: float = 0.5,
    backoff_max: float = 10.0,
    retry_on: tuple = (BackendTransientError,),
    operation: str = "",
) -> T:
    """
    Await ``func()`` and retry it on transient errors.

    Args:
        func: Zero-argument coroutine factory
        max_retries: Retry attempts after the first call
        backoff_factor: Exponential backoff factor in seconds
        backoff_max: Maximum backoff time in seconds
        retry_on: Exception types that trigger a retry
        operation: Label used in log events

    Raises:
        The last error once the retry budget is spent; any other exception
        propagates immediately.
    """
    for attempt in range(max_retries + 1):
        try:
            return await func()
        except retry_on as e:
            if attempt == max_retries:
                logger.error(
                    "Max retries exceeded",
                    attempt=attempt,
                    max_retries=max_retries,
                    error=str(e),
                    operation=operation,
                )
                raise

            backoff_time = min(backoff_factor * (2 ** attempt), backoff_max)
            logger.warning(
                "Retrying after transient error",
                attempt=attempt + 1,
                max_retries=max_retries,
                backoff_time=backoff_time,
                error=str(e),
                operation=operation,
            )
            await asyncio.sleep(backoff_time)

    raise RuntimeError("Unexpected exit from retry loop")
