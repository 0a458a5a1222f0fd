"""
Async retry with exponential backoff for connection-level operations.

Only pool creation uses it. Engine operations never retry inside a tick;
a failed tick leaves state untouched and the next tick tries again.
"""
import asyncio
import random
from typing import Any, Awaitable, Callable, Tuple, Type

import asyncpg
from aiogram.exceptions import TelegramNetworkError

DEFAULT_RETRIES = 2
DEFAULT_BASE_DELAY = 1.0
DEFAULT_MAX_DELAY = 10.0
JITTER_RATIO = 0.2

TRANSIENT_EXCEPTIONS: Tuple[Type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncio.TimeoutError,
    TelegramNetworkError,
    OSError,
)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (0-based), jittered by ±20%."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    return max(0.0, delay * (1 + JITTER_RATIO * (random.random() * 2 - 1)))


async def retry_async(
    fn: Callable[[], Awaitable[Any]],
    *,
    retries: int = DEFAULT_RETRIES,
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_EXCEPTIONS,
) -> Any:
    """
    Await fn() up to retries + 1 times.

    Exceptions outside `retry_on` propagate at once; the last transient
    failure propagates unchanged. The caller does the logging.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on:
            if attempt >= retries:
                raise
        await asyncio.sleep(backoff_delay(attempt, base_delay, max_delay))
        attempt += 1
