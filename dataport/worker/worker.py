"""Worker process: one run per process over stdin/stdout.

Protocol, from the worker's side:

1. Write ``ready``.
2. Read lines until a ``run`` command arrives. Anything else is logged and
   ignored; EOF before ``run`` ends the process with an ``error``.
3. Execute the run, streaming ``status``/``log``/``data`` lines.
4. Write exactly one ``result`` (exit 0) or ``error`` (exit 1).

stdout carries protocol lines only. Logging goes to stderr.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager

from dataport.common.exceptions import ConnectorError
from dataport.connector import BaseConnector, load_connector
from dataport.data_types import RunRequest
from dataport.protocol.channel import ProtocolReader, ProtocolWriter, ReadLine
from dataport.protocol.messages import ReadyMessage, RunCommand
from dataport.worker.capabilities import Capabilities, Emitter
from dataport.worker.lifecycle import WorkerLifecycle
from dataport.worker.playwright_capabilities import (
    PlaywrightCapabilities,
    default_profile_dir,
)

logger = logging.getLogger(__name__)

CapabilitiesFactory = Callable[
    [Emitter, BaseConnector, RunRequest],
    AbstractAsyncContextManager[Capabilities],
]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def open_browser(
    emitter: Emitter, connector: BaseConnector, request: RunRequest
) -> AbstractAsyncContextManager[Capabilities]:
    """Default capabilities factory: a Playwright browser for the run."""
    return PlaywrightCapabilities.open(
        emitter,
        headless=request.headless,
        user_data_dir=default_profile_dir(connector.platform or "default"),
        rates=connector.rate_limits,
    )


def error_message(error: BaseException) -> str:
    """Plain-language message for an ``error`` line."""
    message = getattr(error, "message", None)
    if isinstance(message, str) and message:
        return message
    return str(error) or type(error).__name__


async def serve(
    readline: ReadLine,
    writer: ProtocolWriter,
    capabilities_factory: CapabilitiesFactory = open_browser,
) -> int:
    """Run the worker side of the protocol.

    Args:
        readline: Async callable returning the next input line ("" at EOF).
        writer: Protocol writer for output.
        capabilities_factory: Opens the capability surface for the run.

    Returns:
        Process exit code: 0 after ``result``, 1 after ``error``.
    """
    emitter = Emitter(writer)
    await writer.send(ReadyMessage())

    command: RunCommand | None = None
    async for message in ProtocolReader(readline):
        if isinstance(message, RunCommand):
            command = message
            break
        logger.warning(f"Ignoring '{message.type}' message before run command")

    if command is None:
        await emitter.error("Input closed before a run command was received")
        return 1

    return await execute(command.to_request(), emitter, capabilities_factory)


async def execute(
    request: RunRequest,
    emitter: Emitter,
    capabilities_factory: CapabilitiesFactory = open_browser,
) -> int:
    """Execute one run and emit its terminal message.

    Returns:
        0 if a ``result`` was emitted, 1 if an ``error`` was.
    """
    try:
        connector_class = load_connector(request.connector_ref)
    except ConnectorError as e:
        logger.error(f"Could not load connector: {e}")
        await emitter.error(error_message(e))
        return 1

    try:
        connector = connector_class()
    except Exception as e:
        logger.exception(f"Could not create {connector_class.__name__}")
        await emitter.error(
            f"Could not create connector {connector_class.__name__}: {error_message(e)}"
        )
        return 1

    logger.info(
        f"Starting run {request.run_id} with {request.connector_ref}",
        extra={"run_id": request.run_id, "platform": connector.platform},
    )
    await emitter.status(
        {
            "type": "STARTED",
            "message": f"Starting {connector.display_name} export",
            "runId": request.run_id,
        }
    )

    try:
        async with capabilities_factory(emitter, connector, request) as capabilities:
            envelope = await WorkerLifecycle(connector, capabilities).run(request)
    except Exception as e:
        logger.exception(f"Run {request.run_id} failed")
        await emitter.error(error_message(e))
        return 1

    await emitter.result(envelope)
    return 0


async def _read_stdin() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


def run_worker(level: int | str = logging.INFO) -> int:
    """Configure logging to stderr and serve on stdin/stdout."""
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stderr)
    writer = ProtocolWriter(sys.stdout)
    return asyncio.run(serve(_read_stdin, writer))


def main() -> None:
    """Entry point of the ``dataport-worker`` console script."""
    level = os.environ.get("DATAPORT_LOG_LEVEL", "INFO").upper()
    sys.exit(run_worker(level))
