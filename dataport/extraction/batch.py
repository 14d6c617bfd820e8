"""Bounded fan-out for per-item detail fetches.

Keys are processed in fixed-size batches. Within a batch every fetch runs
concurrently with its own timeout; batches run one after another. Results
come back in the caller's order, and a failed key becomes a BatchFailure
rather than aborting the batch.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")


@dataclass(frozen=True)
class BatchFailure:
    """Placeholder for a key whose fetch raised or timed out.

    Attributes:
        key: The key that failed.
        error: Description of the failure.
    """

    key: Any
    error: str


async def fetch_in_batches(
    keys: Sequence[K],
    fetch_one: Callable[[K], Awaitable[V]],
    batch_size: int = 5,
    timeout: float | None = 30.0,
    delay: float = 0.0,
    on_batch: Callable[[int, int], Awaitable[None]] | None = None,
) -> list[V | BatchFailure]:
    """Fetch every key with bounded concurrency.

    Args:
        keys: Keys to fetch, in the order results should be returned.
        fetch_one: Async callable fetching one key.
        batch_size: Maximum number of concurrent fetches.
        timeout: Per-fetch timeout in seconds; None disables it.
        delay: Seconds to sleep between batches.
        on_batch: Optional callback ``(done, total)`` after each batch.

    Returns:
        One entry per key, in input order: the fetched value or a
        BatchFailure.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")

    async def guarded(key: K) -> V | BatchFailure:
        try:
            if timeout is None:
                return await fetch_one(key)
            return await asyncio.wait_for(fetch_one(key), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Fetch for {key!r} timed out after {timeout:g}s")
            return BatchFailure(key=key, error=f"timed out after {timeout:g}s")
        except Exception as e:
            logger.warning(f"Fetch for {key!r} failed: {e}")
            return BatchFailure(key=key, error=str(e) or type(e).__name__)

    results: list[V | BatchFailure] = []
    total = len(keys)

    for start in range(0, total, batch_size):
        batch = keys[start : start + batch_size]
        results.extend(await asyncio.gather(*(guarded(k) for k in batch)))

        if on_batch:
            await on_batch(len(results), total)

        if delay and start + batch_size < total:
            await asyncio.sleep(delay)

    failed = sum(1 for r in results if isinstance(r, BatchFailure))
    if failed:
        logger.info(f"Batch fetch finished: {total - failed}/{total} succeeded")
    return results


def count_failures(results: Sequence[Any]) -> int:
    return sum(1 for r in results if isinstance(r, BatchFailure))


def error_suffix(results: Sequence[Any]) -> str:
    """Return `` (N had errors)`` for progress messages, or ``""``."""
    failed = count_failures(results)
    return f" ({failed} had errors)" if failed else ""
