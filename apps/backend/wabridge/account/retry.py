from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from wabridge.config.defaults import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY_SECONDS
from wabridge.util.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def retry(
    fn: Callable[[], Awaitable[T]],
    retries: int = DEFAULT_MAX_RETRIES,
    delay: float = DEFAULT_RETRY_DELAY_SECONDS,
) -> T:
    """Await `fn()`, retrying up to `retries` more times with a fixed delay.

    The last failure propagates once retries are exhausted.
    """
    try:
        return await fn()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        if retries <= 0:
            raise
        logger.warning("Retrying after failure (%s); %s attempt(s) left", exc, retries)
        await asyncio.sleep(delay)
        return await retry(fn, retries - 1, delay)
