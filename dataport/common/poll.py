"""Polling policy for login detection, identity resolution and settling.

Every place that used to hand-roll "try, sleep, try again" takes a
PollPolicy instead, so the number of attempts, the spacing and the overall
deadline are injected rather than hard-coded per call site.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class PollPolicy:
    """How often and for how long to poll a predicate.

    Polling stops at whichever limit is reached first. At least one limit
    must be set.

    Attributes:
        max_attempts: Maximum number of predicate calls. None = unbounded.
        interval: Seconds to wait between attempts.
        timeout: Overall deadline in seconds, measured from the first
            attempt. None = no deadline.
    """

    max_attempts: int | None = 3
    interval: float = 1.0
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.max_attempts is None and self.timeout is None:
            raise ValueError("PollPolicy needs max_attempts or timeout")
        if self.max_attempts is not None and self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.interval < 0:
            raise ValueError("interval must not be negative")


async def poll(
    predicate: Callable[[], Awaitable[T]],
    policy: PollPolicy,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> T | None:
    """Call ``predicate`` until it returns a truthy value.

    A predicate that raises is treated as a falsy attempt; the error is
    logged at debug level and polling continues.

    Args:
        predicate: Async callable returning the value to test.
        policy: Attempt, interval and deadline limits.
        sleep: Awaitable sleep, injectable for tests.
        clock: Monotonic clock, injectable for tests.

    Returns:
        The first truthy value returned, or None when the policy ran out.
    """
    started = clock()
    attempt = 0

    while True:
        attempt += 1
        try:
            value = await predicate()
        except Exception as e:
            logger.debug(f"Poll attempt {attempt} raised: {e}")
            value = None

        if value:
            return value

        if policy.max_attempts is not None and attempt >= policy.max_attempts:
            return None

        if policy.timeout is not None:
            remaining = policy.timeout - (clock() - started)
            if remaining <= 0:
                return None
            await sleep(min(policy.interval, remaining))
        else:
            await sleep(policy.interval)
