"""Capability surface consumed by the worker and connectors.

Connectors never touch the browser directly. Everything they can do to
the session goes through a Capabilities object, and everything they tell
the user goes through its Emitter. This is the seam where tests swap in a
scripted fake instead of a real browser.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from dataport.common.exceptions import ProtocolError
from dataport.protocol.messages import (
    DEBUG_MARKER,
    ControlMessage,
    DataMessage,
    ErrorMessage,
    LogMessage,
    NetworkCapturedMessage,
    ResultMessage,
    StatusMessage,
    is_terminal,
)

if TYPE_CHECKING:
    from dataport.common.poll import PollPolicy
    from dataport.data_types import ProgressState
    from dataport.protocol.channel import ProtocolWriter
    from dataport.worker.remote import RemoteOperation

logger = logging.getLogger(__name__)


class Emitter:
    """Sends worker-to-orchestrator messages for one run.

    Guarantees at most one terminal message (``result`` or ``error``); a
    second terminal message is a programming error.

    Args:
        writer: Protocol writer for the worker's stdout. When None the
            emitter only records messages (used by tests and dry runs).
    """

    def __init__(self, writer: ProtocolWriter | None = None) -> None:
        self.writer = writer
        self.messages: list[ControlMessage] = []
        self.terminated = False

    async def send(self, message: ControlMessage) -> None:
        if is_terminal(message):
            if self.terminated:
                raise ProtocolError(
                    f"Terminal message already sent; refusing {message.type}"
                )
            self.terminated = True
        self.messages.append(message)
        if self.writer is not None:
            await self.writer.send(message)

    async def status(self, status: str | dict[str, Any]) -> None:
        await self.send(StatusMessage(status=status))

    async def progress(self, state: ProgressState) -> None:
        await self.send(StatusMessage.from_progress(state))

    async def log(self, message: str) -> None:
        await self.send(LogMessage(message=message))

    async def data(self, key: str, value: Any) -> None:
        await self.send(DataMessage(key=key, value=value))

    async def debug(self, message: str) -> None:
        """Emit a developer diagnostic as a ``[DEBUG]`` data message."""
        await self.data("debug", f"{DEBUG_MARKER} {message}")

    async def warning(self, scope: str, message: str) -> None:
        """Surface a tolerated partial failure for a scope."""
        await self.status(f"Warning: {message}")
        await self.data("warning", {"scope": scope, "message": message})

    async def network_captured(self, key: str, url: str) -> None:
        await self.send(NetworkCapturedMessage(key=key, url=url))

    async def result(self, data: dict[str, Any]) -> None:
        await self.send(ResultMessage(data=data))

    async def error(self, message: str) -> None:
        await self.send(ErrorMessage(message=message))


@runtime_checkable
class Capabilities(Protocol):
    """Browser session operations available to a run.

    Implementations own exactly one page. Navigation and page-state
    operations are serialized; operations marked ``concurrent`` (same-page
    background fetches) may overlap.
    """

    emitter: Emitter

    @property
    def headless(self) -> bool:
        """True when the browser window is hidden."""
        ...

    async def navigate(self, url: str) -> None:
        """Load ``url`` in the page.

        Raises:
            TransientException: If navigation times out.
        """
        ...

    async def invoke(
        self, operation: RemoteOperation[Any, Any], params: Any = None
    ) -> Any:
        """Run a typed remote operation in the page.

        Args:
            operation: The operation definition.
            params: Parameters model (or dict) for the operation.

        Returns:
            The validated result.

        Raises:
            RemoteOperationError: If the operation fails, times out, or
                returns a result of the wrong shape.
        """
        ...

    async def sleep(self, seconds: float) -> None:
        ...

    async def show_browser(self, url: str | None = None) -> None:
        """Make the browser visible, optionally navigating to ``url``."""
        ...

    async def go_headless(self) -> None:
        """Hide the browser, keeping the session."""
        ...

    async def prompt_user(
        self,
        message: str,
        predicate: Callable[[], Awaitable[Any]],
        policy: PollPolicy,
    ) -> bool:
        """Ask the user to act in the visible browser.

        Polls ``predicate`` according to ``policy`` until it holds.

        Returns:
            True if the predicate held before the policy ran out.
        """
        ...

    async def capture_network(self, key: str, url_pattern: str) -> None:
        """Store the first response whose URL matches ``url_pattern``."""
        ...

    async def get_captured(self, key: str) -> Any | None:
        """Return the captured response body for ``key``, if any."""
        ...

    async def close(self) -> None:
        ...
