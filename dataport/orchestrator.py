"""Orchestrator side of the control protocol.

Starts a worker process, waits for ``ready``, sends one ``run`` command and
consumes the message stream until the worker exits. The exit code decides
success framing; the ``result`` payload is the data.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shlex
import shutil
import sys
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from dataport.common.exceptions import ProtocolError, WorkerNotFound
from dataport.data_types import RunRequest
from dataport.protocol.channel import ProtocolReader, ProtocolWriter
from dataport.protocol.messages import (
    ControlMessage,
    ErrorMessage,
    ReadyMessage,
    ResultMessage,
    RunCommand,
)

logger = logging.getLogger(__name__)

WORKER_ENV = "DATAPORT_WORKER"
WORKER_SCRIPT = "dataport-worker"

# Result lines carry the whole envelope on one line.
STREAM_LIMIT = 64 * 1024 * 1024

MessageCallback = Callable[[ControlMessage], None]


def locate_worker(env: Mapping[str, str] | None = None) -> list[str]:
    """Find the worker command line.

    Order: the ``DATAPORT_WORKER`` environment variable (split like a
    shell command), the ``dataport-worker`` script on PATH, then the script
    next to the running interpreter.

    Raises:
        WorkerNotFound: If no candidate exists; the message lists where
            it looked.
    """
    env = os.environ if env is None else env

    configured = env.get(WORKER_ENV, "").strip()
    if configured:
        return shlex.split(configured)

    searched: list[str] = []

    on_path = shutil.which(WORKER_SCRIPT, path=env.get("PATH"))
    searched.append(f"{WORKER_SCRIPT} on PATH")
    if on_path:
        return [on_path]

    beside_python = Path(sys.executable).parent / WORKER_SCRIPT
    searched.append(str(beside_python))
    if beside_python.exists():
        return [str(beside_python)]

    raise WorkerNotFound(WORKER_ENV, searched)


@dataclass
class RunOutcome:
    """What came back from one worker run.

    Attributes:
        exit_code: Worker process exit code.
        result: The ``result`` payload, if one arrived.
        error: Failure message: the worker's ``error`` message, or a
            description derived from the exit code.
        messages: Number of protocol messages received.
        elapsed: Wall-clock seconds from spawn to exit.
    """

    exit_code: int
    result: dict[str, Any] | None = None
    error: str | None = None
    messages: int = 0
    elapsed: float = 0.0
    stray_terminals: list[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and self.result is not None


class Orchestrator:
    """Runs a worker process for a RunRequest.

    Args:
        command: Worker command line; located with ``locate_worker`` when
            None.
        env: Environment for the worker process (default: inherit).
        ready_timeout: Seconds to wait for the ``ready`` message.

    Example::

        orchestrator = Orchestrator()
        outcome = await orchestrator.run(request, on_message=print)
        if outcome.succeeded:
            save(outcome.result)
    """

    def __init__(
        self,
        command: list[str] | None = None,
        env: Mapping[str, str] | None = None,
        ready_timeout: float = 60.0,
    ) -> None:
        self.command = command
        self.env = dict(env) if env is not None else None
        self.ready_timeout = ready_timeout

    async def run(
        self,
        request: RunRequest,
        on_message: MessageCallback | None = None,
    ) -> RunOutcome:
        """Execute one run in a fresh worker process.

        Args:
            request: The run to execute.
            on_message: Called with every message received after ``ready``
                (and with raw log lines before it).

        Returns:
            The RunOutcome.

        Raises:
            WorkerNotFound: If no worker command is configured or found.
            ProtocolError: If the worker never sends ``ready``.
        """
        command = self.command or locate_worker(self.env)
        logger.debug(f"Starting worker: {shlex.join(command)}")

        started = time.monotonic()
        process = await asyncio.create_subprocess_exec(
            *command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            env=self.env,
            limit=STREAM_LIMIT,
        )
        if process.stdin is None or process.stdout is None:
            process.kill()
            await process.wait()
            raise ProtocolError("Worker process was started without stdio pipes")

        reader = ProtocolReader(process.stdout.readline)
        writer = ProtocolWriter(process.stdin)
        outcome = RunOutcome(exit_code=-1)

        try:
            await asyncio.wait_for(
                self._await_ready(reader, on_message), self.ready_timeout
            )
            await writer.send(RunCommand.from_request(request))
            process.stdin.close()

            async for message in reader:
                outcome.messages += 1
                self._record(outcome, message)
                if on_message:
                    on_message(message)

            outcome.exit_code = await process.wait()
        except asyncio.TimeoutError as e:
            raise ProtocolError(
                f"Worker did not send ready within {self.ready_timeout:g}s"
            ) from e
        finally:
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        outcome.elapsed = time.monotonic() - started
        self._frame(outcome)
        return outcome

    async def _await_ready(
        self, reader: ProtocolReader, on_message: MessageCallback | None
    ) -> None:
        async for message in reader:
            if isinstance(message, ReadyMessage):
                return
            logger.debug(f"Message before ready: {message.type}")
            if on_message:
                on_message(message)
        raise ProtocolError("Worker exited before sending ready")

    def _record(self, outcome: RunOutcome, message: ControlMessage) -> None:
        if not isinstance(message, (ResultMessage, ErrorMessage)):
            return
        if outcome.result is not None or outcome.error is not None:
            logger.warning(f"Ignoring extra terminal '{message.type}' message")
            outcome.stray_terminals.append(message.type)
            return
        if isinstance(message, ResultMessage):
            outcome.result = message.data
        else:
            outcome.error = message.message

    def _frame(self, outcome: RunOutcome) -> None:
        if outcome.exit_code == 0:
            if outcome.result is None:
                outcome.error = outcome.error or "No result data returned"
            return
        if outcome.error is None:
            outcome.error = f"Worker exited with code {outcome.exit_code}"
