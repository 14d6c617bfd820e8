"""Progress reporting for collection phases.

Progress is fire-and-forget: a dropped update is not a correctness failure,
so a failing sink is logged and swallowed. The reporter does guarantee what
consumers rely on: ``1 <= step <= total`` and a non-decreasing
``count`` within one phase label.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from dataport.data_types import ProgressPhase, ProgressState

logger = logging.getLogger(__name__)

ProgressSink = Callable[[ProgressState], Awaitable[None]]


class ProgressReporter:
    """Validates and forwards progress updates to a sink.

    Example::

        reporter = ProgressReporter(sink)
        await reporter.report(ProgressPhase(2, 3, "Repositories"),
                              "Fetched 40 repositories", count=40)
    """

    def __init__(self, sink: ProgressSink | None = None) -> None:
        self.sink = sink
        self._last_count: dict[str, int] = {}
        self.history: list[ProgressState] = []

    async def report(
        self,
        phase: ProgressPhase,
        message: str,
        count: int | None = None,
    ) -> ProgressState:
        """Emit a progress update.

        Args:
            phase: Current phase position; validated on construction.
            message: Human-readable description.
            count: Cumulative item count. A value lower than the last one
                reported for the same label is clamped up to it.

        Returns:
            The ProgressState that was emitted.
        """
        if count is not None:
            previous = self._last_count.get(phase.label)
            if previous is not None and count < previous:
                logger.debug(
                    f"Clamping progress count for '{phase.label}' "
                    f"from {count} to {previous}"
                )
                count = previous
            self._last_count[phase.label] = count

        state = ProgressState(phase=phase, message=message, count=count)
        self.history.append(state)

        if self.sink:
            try:
                await self.sink(state)
            except Exception as e:
                logger.warning(f"Dropped progress update: {e}")

        return state

    def phase_reporter(self, phase: ProgressPhase) -> PhaseProgress:
        """Bind a phase so pagination loops only pass message and count."""
        return PhaseProgress(self, phase)


class PhaseProgress:
    """A ProgressReporter bound to one phase."""

    def __init__(self, reporter: ProgressReporter, phase: ProgressPhase) -> None:
        self.reporter = reporter
        self.phase = phase

    async def __call__(
        self, message: str, count: int | None = None
    ) -> ProgressState:
        return await self.reporter.report(self.phase, message, count)
