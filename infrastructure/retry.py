"""
Bounded retry with capped exponential backoff for outbound delivery.

Delivery attempts report success as a boolean. A raised exception counts as a
failed attempt; it is logged and never escapes, so a provider built on this
helper can honour the "return False, never raise" delivery contract.

Delay before attempt n+1 is ``min(base_delay * 2 ** (n - 1), max_delay)``.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

from shared.logging import get_logger

log = get_logger(__name__)

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay to wait after failed attempt number *attempt* (1-based)."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


async def retry_with_backoff(
    attempt_fn: Callable[[int], Awaitable[bool]],
    *,
    max_attempts: int,
    base_delay: float,
    max_delay: float,
    operation: str,
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """Call *attempt_fn* until it returns True or attempts run out.

    Args:
        attempt_fn: coroutine function receiving the 1-based attempt number.
        max_attempts: total attempts, including the first one.
        base_delay: delay after the first failure, seconds.
        max_delay: cap for any single delay, seconds.
        operation: name used in log events (e.g. "sms_send").
        sleep: injectable for tests.

    Returns:
        True on the first successful attempt, False once all attempts failed.
    """
    for attempt in range(1, max_attempts + 1):
        try:
            if await attempt_fn(attempt):
                if attempt > 1:
                    log.info(f"{operation}_succeeded_after_retry", attempt=attempt)
                return True
        except Exception as e:
            log.warning(
                f"{operation}_attempt_error",
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(e),
                error_type=type(e).__name__,
            )

        if attempt < max_attempts:
            delay = backoff_delay(attempt, base_delay, max_delay)
            log.info(f"{operation}_retrying", attempt=attempt, delay_seconds=delay)
            await sleep(delay)

    log.error(f"{operation}_exhausted", attempts=max_attempts)
    return False
