"""Line-delimited transport for control messages.

The channel is single-writer, single-reader per direction. The writer
serializes concurrent sends with a lock so that lines produced by batched
fetches never interleave mid-line; the reader decodes each line
independently and preserves FIFO order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import TextIO

from dataport.protocol.messages import ControlMessage, decode, encode

logger = logging.getLogger(__name__)

ReadLine = Callable[[], Awaitable[str | bytes]]


class ProtocolWriter:
    """Writes one encoded message per line.

    Accepts either a text stream (the worker's stdout) or an
    ``asyncio.StreamWriter`` (the orchestrator's handle on worker stdin).

    Example::

        writer = ProtocolWriter(sys.stdout)
        await writer.send(ReadyMessage())
    """

    def __init__(self, stream: TextIO | asyncio.StreamWriter) -> None:
        self.stream = stream
        self._lock = asyncio.Lock()
        self.sent: int = 0

    async def send(self, message: ControlMessage) -> None:
        line = encode(message) + "\n"
        async with self._lock:
            if isinstance(self.stream, asyncio.StreamWriter):
                self.stream.write(line.encode("utf-8"))
                await self.stream.drain()
            else:
                self.stream.write(line)
                self.stream.flush()
            self.sent += 1


class ProtocolReader:
    """Async iterator of decoded messages from a ``readline`` callable.

    Iteration ends when ``readline`` returns an empty string (EOF). Blank
    lines are skipped; non-protocol lines arrive as raw LogMessages.

    Example::

        async for message in ProtocolReader(process.stdout.readline):
            ...
    """

    def __init__(self, readline: ReadLine) -> None:
        self._readline = readline

    def __aiter__(self) -> AsyncIterator[ControlMessage]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[ControlMessage]:
        while True:
            line = await self._readline()
            if not line:
                return
            message = decode(line)
            if message is None:
                continue
            yield message

    async def next_message(self) -> ControlMessage | None:
        """Read the next message, or None at EOF."""
        async for message in self:
            return message
        return None
