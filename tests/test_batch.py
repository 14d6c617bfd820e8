"""Tests for bounded batch fetching."""

import asyncio

import pytest

from dataport.extraction import BatchFailure, fetch_in_batches
from dataport.extraction.batch import count_failures, error_suffix


class TestFetchInBatches:
    """Tests for fetch_in_batches()."""

    @pytest.mark.asyncio
    async def test_results_keep_input_order(self) -> None:
        """Results shall come back in key order regardless of completion order."""

        async def fetch(key: int) -> str:
            await asyncio.sleep(0.001 * (5 - key % 5))
            return f"value-{key}"

        results = await fetch_in_batches(list(range(12)), fetch, batch_size=5)

        assert results == [f"value-{k}" for k in range(12)]

    @pytest.mark.asyncio
    async def test_failures_do_not_abort_the_batch(self) -> None:
        """A failing key shall become a BatchFailure; the rest still succeed."""

        async def fetch(key: str) -> str:
            if key == "b":
                raise RuntimeError("HTTP 500")
            return key.upper()

        results = await fetch_in_batches(["a", "b", "c"], fetch)

        assert results == ["A", BatchFailure(key="b", error="HTTP 500"), "C"]
        assert count_failures(results) == 1

    @pytest.mark.asyncio
    async def test_slow_fetch_times_out(self) -> None:
        """A fetch exceeding the timeout shall become a timed-out failure."""

        async def fetch(key: str) -> str:
            if key == "slow":
                await asyncio.sleep(5)
            return key

        results = await fetch_in_batches(["fast", "slow"], fetch, timeout=0.05)

        assert results[0] == "fast"
        assert results[1] == BatchFailure(key="slow", error="timed out after 0.05s")

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self) -> None:
        """No more than batch_size fetches shall run at once."""
        active = 0
        peak = 0

        async def fetch(key: int) -> int:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.001)
            active -= 1
            return key

        await fetch_in_batches(list(range(23)), fetch, batch_size=4)

        assert peak == 4

    @pytest.mark.asyncio
    async def test_on_batch_reports_cumulative_progress(self) -> None:
        """on_batch shall be called after each batch with (done, total)."""
        calls: list[tuple[int, int]] = []

        async def on_batch(done: int, total: int) -> None:
            calls.append((done, total))

        async def fetch(key: int) -> int:
            return key

        await fetch_in_batches(list(range(12)), fetch, batch_size=5, on_batch=on_batch)

        assert calls == [(5, 12), (10, 12), (12, 12)]

    @pytest.mark.asyncio
    async def test_empty_keys(self) -> None:
        """No keys shall mean no fetches and an empty result."""

        async def fetch(key: int) -> int:
            raise AssertionError("should not be called")

        assert await fetch_in_batches([], fetch) == []

    @pytest.mark.asyncio
    async def test_invalid_batch_size(self) -> None:
        """A batch size below one shall be rejected."""

        async def fetch(key: int) -> int:
            return key

        with pytest.raises(ValueError):
            await fetch_in_batches([1], fetch, batch_size=0)


class TestErrorSuffix:
    """Tests for the progress message suffix."""

    def test_suffix_counts_failures(self) -> None:
        """The suffix shall report how many keys failed."""
        results = ["ok", BatchFailure("a", "x"), BatchFailure("b", "y")]

        assert error_suffix(results) == " (2 had errors)"

    def test_no_suffix_without_failures(self) -> None:
        """The suffix shall be empty when everything succeeded."""
        assert error_suffix(["ok", "ok"]) == ""
