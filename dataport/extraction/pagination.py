"""Pagination and deduplication engine.

One loop serves every paginated source: numbered pages, cursor or offset
APIs, and infinite-scroll pages that re-render overlapping content. The
caller supplies how to fetch the next batch and how to key an item; the
engine handles dedup, the stop conditions and progress.

Stop conditions, any one of which ends the loop:

- end of data: the source said ``has_next=False``, returned a short page,
  or returned an empty page
- stagnation: no new items for ``stagnant_limit`` consecutive iterations
- item ceiling: ``max_items`` reached (the result is truncated to it)
- iteration ceiling: ``max_iterations`` reached; this bound is the loop
  range itself, so it holds however the other checks behave
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dataport.common.exceptions import StrategyExhausted
from dataport.data_types import Item

logger = logging.getLogger(__name__)


class StopReason(Enum):
    """Why a collect() loop ended."""

    END_OF_DATA = "end_of_data"
    STAGNANT = "stagnant"
    ITEM_CEILING = "item_ceiling"
    ITERATION_CEILING = "iteration_ceiling"
    FETCH_FAILED = "fetch_failed"


@dataclass(frozen=True)
class StopPolicy:
    """Thresholds for ending a pagination loop.

    Attributes:
        stagnant_limit: Consecutive iterations with no new items before
            stopping. None disables the check.
        max_items: Absolute item ceiling. None = unbounded.
        page_size: Expected full page size; a shorter page means the
            source is exhausted. None disables the check.
        stop_on_empty: Stop on any empty page. Infinite-scroll sources set
            this to False and rely on ``stagnant_limit`` instead. An empty
            first page always stops.
        delay: Seconds to wait between iterations (never after the last).
    """

    stagnant_limit: int | None = 3
    max_items: int | None = None
    page_size: int | None = None
    stop_on_empty: bool = True
    delay: float = 0.0

    def __post_init__(self) -> None:
        if self.stagnant_limit is not None and self.stagnant_limit < 1:
            raise ValueError("stagnant_limit must be at least 1")
        if self.max_items is not None and self.max_items < 0:
            raise ValueError("max_items must not be negative")
        if self.delay < 0:
            raise ValueError("delay must not be negative")


@dataclass
class PageBatch:
    """One batch returned by a page fetcher.

    Attributes:
        items: Raw items of this page.
        has_next: Source's own "more pages" signal, None when unknown.
        cursor: Opaque value handed to the next fetch (offset, token...).
    """

    items: list[Item] = field(default_factory=list)
    has_next: bool | None = None
    cursor: Any = None


@dataclass
class CollectOutcome:
    """Result of a collect() loop.

    Attributes:
        items: Admitted items in first-seen order, without duplicates.
        iterations: Number of fetches performed.
        stop_reason: The condition that ended the loop.
        error: Failure message when stop_reason is FETCH_FAILED.
    """

    items: list[Item]
    iterations: int
    stop_reason: StopReason
    error: str | None = None

    @property
    def partial(self) -> bool:
        """True when a failed fetch cut the loop short."""
        return self.stop_reason is StopReason.FETCH_FAILED


PageFetcher = Callable[[int, Any], Awaitable["PageBatch | list[Item]"]]
KeyFn = Callable[[Item], Hashable | None]
ProgressFn = Callable[[str, int], Awaitable[Any]]


async def collect(
    fetch_page: PageFetcher,
    key_fn: KeyFn,
    stop_policy: StopPolicy | None = None,
    max_iterations: int = 50,
    progress: ProgressFn | None = None,
    noun: str = "items",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> CollectOutcome:
    """Fetch pages until a stop condition holds.

    Args:
        fetch_page: Called as ``fetch_page(iteration, cursor)``; returns a
            PageBatch or a plain list of items. ``iteration`` starts at 0
            and ``cursor`` is the previous batch's cursor (None at first).
        key_fn: Dedup key for an item. Items keyed None are skipped.
        stop_policy: Stop thresholds; defaults to ``StopPolicy()``.
        max_iterations: Hard cap on fetches.
        progress: Optional ``(message, count)`` callback invoked after
            every iteration with the cumulative count.
        noun: Plural noun used in progress messages.
        sleep: Awaitable sleep, injectable for tests.

    Returns:
        CollectOutcome with the admitted items and the stop reason.

    Raises:
        StrategyExhausted: If the first fetch reports that every
            extraction tier failed. Later failures end the loop with
            partial results instead.
    """
    if max_iterations < 1:
        raise ValueError("max_iterations must be at least 1")
    policy = stop_policy or StopPolicy()

    items: list[Item] = []
    seen: set[Hashable] = set()
    cursor: Any = None
    stagnant = 0
    iterations = 0

    for iteration in range(max_iterations):
        if iteration and policy.delay:
            await sleep(policy.delay)

        try:
            fetched = await fetch_page(iteration, cursor)
        except StrategyExhausted as e:
            if iteration == 0:
                raise
            logger.warning(
                f"Every extraction tier failed on iteration {iteration}; "
                f"keeping {len(items)} {noun}"
            )
            failures = "; ".join(f"{name}: {msg}" for name, msg in e.errors.items())
            return CollectOutcome(
                items,
                iterations,
                StopReason.FETCH_FAILED,
                f"strategies exhausted ({failures})",
            )
        except Exception as e:
            logger.warning(
                f"Page fetch failed on iteration {iteration}: {e}; "
                f"keeping {len(items)} {noun}",
                extra={"iteration": iteration, "collected": len(items)},
            )
            return CollectOutcome(
                items, iterations, StopReason.FETCH_FAILED, str(e)
            )

        iterations += 1
        batch = (
            fetched if isinstance(fetched, PageBatch) else PageBatch(list(fetched))
        )
        cursor = batch.cursor

        admitted = 0
        for item in batch.items:
            key = key_fn(item)
            if key is None or key in seen:
                continue
            seen.add(key)
            items.append(item)
            admitted += 1

        if policy.max_items is not None and len(items) >= policy.max_items:
            del items[policy.max_items :]

        if progress:
            await progress(f"Collected {len(items)} {noun}", len(items))

        logger.debug(
            f"Iteration {iteration}: {len(batch.items)} fetched, "
            f"{admitted} new, {len(items)} total"
        )

        if policy.max_items is not None and len(items) >= policy.max_items:
            return CollectOutcome(items, iterations, StopReason.ITEM_CEILING)

        if _is_end_of_data(batch, policy, iteration):
            return CollectOutcome(items, iterations, StopReason.END_OF_DATA)

        stagnant = stagnant + 1 if admitted == 0 else 0
        if policy.stagnant_limit is not None and stagnant >= policy.stagnant_limit:
            return CollectOutcome(items, iterations, StopReason.STAGNANT)

    logger.warning(
        f"Pagination stopped at the {max_iterations}-iteration cap with "
        f"{len(items)} {noun}; results may be incomplete"
    )
    return CollectOutcome(items, iterations, StopReason.ITERATION_CEILING)


def _is_end_of_data(batch: PageBatch, policy: StopPolicy, iteration: int) -> bool:
    if batch.has_next is False:
        return True
    if not batch.items:
        return iteration == 0 or policy.stop_on_empty
    if policy.page_size is not None and len(batch.items) < policy.page_size:
        return True
    return False
