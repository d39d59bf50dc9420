"""Provider-call retry with exponential backoff."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from storyboard.errors import is_transient

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MAX_RETRIES = 3
_INITIAL_DELAY = 1.0


async def with_retry(
    call: Callable[[], Awaitable[T]],
    max_retries: int = _MAX_RETRIES,
    initial_delay: float = _INITIAL_DELAY,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Await ``call()``, retrying service-unavailable failures.

    The delay starts at ``initial_delay`` seconds and doubles after each
    attempt. Any other error propagates immediately.
    """
    attempt = 0
    delay = initial_delay
    while True:
        try:
            return await call()
        except Exception as exc:
            if not is_transient(exc) or attempt >= max_retries:
                raise
            attempt += 1
            logger.warning(
                "Transient provider error (attempt %d/%d), retrying in %.1fs: %s",
                attempt, max_retries, delay, exc,
            )
            await sleep(delay)
            delay *= 2
