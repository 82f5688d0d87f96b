"""Retry logic with exponential backoff"""

import asyncio
from typing import Awaitable, Callable, TypeVar
from src.utils.logging import get_logger
from src.utils.errors import RecordStoreError

logger = get_logger(__name__)

T = TypeVar("T")


async def retry_with_exponential_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    max_retries: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    **kwargs
) -> T:
    """
    Await a coroutine function, retrying with exponential backoff

    Args:
        func: Coroutine function to retry
        *args, **kwargs: Arguments to pass to func
        max_retries: Maximum attempts
        base_delay: Delay before the first retry, in seconds
        max_delay: Delay cap, in seconds

    Returns:
        Function result

    Raises:
        RecordStoreError: If all retries exhausted
    """
    for attempt in range(max_retries):
        try:
            return await func(*args, **kwargs)

        except Exception as e:
            if attempt == max_retries - 1:
                logger.error(f"All {max_retries} retry attempts exhausted", error=str(e))
                raise RecordStoreError(f"Failed after {max_retries} attempts: {e}") from e

            delay = min(base_delay * (2 ** attempt), max_delay)
            logger.warning(f"Attempt {attempt + 1} failed, retrying in {delay}s: {e}")
            await asyncio.sleep(delay)

    raise RecordStoreError("max_retries must be at least 1")
