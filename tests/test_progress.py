"""Tests for progress reporting.

Key behaviors tested:
- step/total are validated on construction
- count never decreases within one phase label
- a failing sink never breaks collection
"""

import pytest

from dataport.common.progress import ProgressReporter
from dataport.data_types import ProgressPhase, ProgressState


class TestProgressPhase:
    """Tests for phase validation."""

    @pytest.mark.parametrize("step,total", [(0, 3), (4, 3), (1, 0), (-1, 2)])
    def test_invalid_positions_raise(self, step: int, total: int) -> None:
        """A phase outside 1 <= step <= total shall raise ValueError."""
        with pytest.raises(ValueError):
            ProgressPhase(step, total, "Books")

    def test_status_omits_missing_count(self) -> None:
        """A progress status without a count shall omit the count key."""
        state = ProgressState(ProgressPhase(1, 1, "Profile"), "Starting")

        assert "count" not in state.to_status()


class TestProgressReporter:
    """Tests for ProgressReporter."""

    @pytest.mark.asyncio
    async def test_forwards_to_sink(self) -> None:
        """Each report shall be forwarded to the sink as a ProgressState."""
        received: list[ProgressState] = []

        async def sink(state: ProgressState) -> None:
            received.append(state)

        reporter = ProgressReporter(sink)
        await reporter.report(ProgressPhase(1, 2, "Books"), "Fetching", 10)

        assert received == [ProgressState(ProgressPhase(1, 2, "Books"), "Fetching", 10)]

    @pytest.mark.asyncio
    async def test_decreasing_count_is_clamped(self) -> None:
        """A lower count within the same label shall be clamped to the previous."""
        reporter = ProgressReporter()
        phase = ProgressPhase(1, 2, "Books")

        await reporter.report(phase, "a", 10)
        await reporter.report(phase, "b", 7)
        await reporter.report(phase, "c")
        await reporter.report(phase, "d", 12)

        assert [s.count for s in reporter.history] == [10, 10, None, 12]

    @pytest.mark.asyncio
    async def test_counts_are_independent_per_label(self) -> None:
        """A new phase label shall start its own count sequence."""
        reporter = ProgressReporter()

        await reporter.report(ProgressPhase(1, 2, "Books"), "a", 40)
        state = await reporter.report(ProgressPhase(2, 2, "Feed"), "b", 3)

        assert state.count == 3

    @pytest.mark.asyncio
    async def test_sink_failure_is_swallowed(self) -> None:
        """A failing sink shall not propagate; the update is still recorded."""

        async def broken_sink(state: ProgressState) -> None:
            raise OSError("pipe closed")

        reporter = ProgressReporter(broken_sink)
        state = await reporter.report(ProgressPhase(1, 1, "Books"), "x", 1)

        assert reporter.history == [state]

    @pytest.mark.asyncio
    async def test_phase_reporter_binds_phase(self) -> None:
        """A bound phase reporter shall only need message and count."""
        reporter = ProgressReporter()
        progress = reporter.phase_reporter(ProgressPhase(2, 3, "Feed"))

        state = await progress("Collected 5 posts", 5)

        assert state.phase == ProgressPhase(2, 3, "Feed")
        assert state.count == 5
