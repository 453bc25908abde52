"""Bounded async retry with exponential backoff and jitter"""

import asyncio
import logging
import random
from typing import Awaitable, Callable, Tuple, Type, TypeVar

T = TypeVar("T")

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, jitter: float = 0.0, cap: float | None = None) -> float:
    """
    Delay before retry number `attempt` (1-based).

    base * 2^(attempt-1), plus uniform jitter in [0, jitter), optionally capped.
    """
    delay = base * (2 ** (attempt - 1))
    if jitter > 0:
        delay += random.uniform(0, jitter)
    if cap is not None:
        delay = min(delay, cap)
    return delay


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    retry_on: Tuple[Type[BaseException], ...],
    base_delay: float,
    jitter: float = 0.0,
    max_delay: float | None = None,
    should_retry: Callable[[BaseException], bool] | None = None,
    label: str = "operation",
) -> T:
    """
    Run `operation` up to `max_attempts` times.

    Only exceptions in `retry_on` (and accepted by `should_retry`, when given)
    are retried; anything else propagates on the spot. The last error is
    re-raised once attempts are exhausted.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await operation()
        except retry_on as e:
            if should_retry is not None and not should_retry(e):
                raise
            if attempt >= max_attempts:
                logger.warning(
                    f"{label} failed after {attempt} attempts: {e}",
                    extra={"step": label, "attempt": attempt},
                )
                raise

            delay = backoff_delay(attempt, base_delay, jitter, max_delay)
            logger.info(
                f"{label} attempt {attempt}/{max_attempts} failed, retrying in {delay:.2f}s: {e}",
                extra={"step": label, "attempt": attempt},
            )
            await asyncio.sleep(delay)
