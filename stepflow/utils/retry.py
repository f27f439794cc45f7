from __future__ import annotations

import asyncio
import random


def compute_backoff(
    attempt: int,
    initial_delay: float = 1000.0,
    multiplier: float = 2.0,
    max_delay: float = 30_000.0,
    jitter: float = 0.0,
) -> float:
    """Compute an exponential backoff delay in milliseconds.

    ``attempt`` is 1-based: the first retry waits ``initial_delay``, each later
    one ``multiplier`` times longer, capped at ``max_delay``.
    """
    delay = initial_delay * multiplier ** max(attempt - 1, 0)
    delay = min(delay, max_delay)
    if jitter:
        delay += random.uniform(0, jitter)
    return delay


async def schedule_retry(delay_ms: float) -> None:
    """Sleep for ``delay_ms`` milliseconds before retrying."""
    await asyncio.sleep(delay_ms / 1000)
