"""Fixed-count, fixed-delay retry combinator.

Used where a result becomes available some time after an action completed
(e.g. a conference link attached to a freshly created calendar event).  There
is no backoff and no jitter: the caller is a synchronous request handler and
the worst-case wait is ``attempts * delay``.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, TypeVar

log = logging.getLogger("meetings.retry")

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    value: Optional[T]
    attempts: int
    succeeded: bool


async def retry_with_fixed_delay(
    action: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay: float,
    predicate: Callable[[T], bool],
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> RetryOutcome[T]:
    """Run ``action`` up to ``attempts`` times until ``predicate`` accepts its result.

    Each attempt is preceded by ``delay`` seconds of sleep and attempts run
    strictly one after another.  An exception raised by ``action`` counts as a
    failed attempt.  Returns the last value obtained (None if every attempt
    raised) together with the number of attempts made.
    """
    value: Optional[T] = None
    for attempt in range(1, attempts + 1):
        await sleep(delay)
        try:
            value = await action()
        except Exception as e:
            log.warning("Attempt %d/%d failed: %s", attempt, attempts, e)
            continue
        if predicate(value):
            return RetryOutcome(value=value, attempts=attempt, succeeded=True)
        log.debug("Attempt %d/%d not ready yet", attempt, attempts)
    return RetryOutcome(value=value, attempts=attempts, succeeded=False)
