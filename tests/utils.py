"""Test utilities for the dataport test suite.

This module provides reusable helpers for driving the protocol, building
fake worker processes and collecting emitted messages.
"""

import io
import json
import sys
import textwrap
from collections.abc import Awaitable, Callable, Iterable
from pathlib import Path
from typing import Any

from dataport.protocol.messages import ControlMessage, decode


def collect_messages() -> tuple[Callable[[ControlMessage], None], list[ControlMessage]]:
    """Create a callback that collects protocol messages in a list.

    Returns:
        A tuple of (callback_function, messages_list).

    Example:
        callback, messages = collect_messages()
        outcome = await orchestrator.run(request, on_message=callback)
        assert any(m.type == "status" for m in messages)
    """
    messages: list[ControlMessage] = []

    def callback(message: ControlMessage) -> None:
        messages.append(message)

    return callback, messages


def scripted_readline(lines: Iterable[str]) -> Callable[[], Awaitable[str]]:
    """Async readline over fixed lines, returning "" (EOF) afterwards."""
    pending = [line if line.endswith("\n") else line + "\n" for line in lines]

    async def readline() -> str:
        if pending:
            return pending.pop(0)
        return ""

    return readline


def output_messages(stream: io.StringIO) -> list[ControlMessage]:
    """Decode every line written to a StringIO stream."""
    messages = []
    for line in stream.getvalue().splitlines():
        message = decode(line)
        if message is not None:
            messages.append(message)
    return messages


def status_texts(messages: Iterable[ControlMessage]) -> list[Any]:
    """The ``status`` payloads of the given messages, in order."""
    return [m.status for m in messages if m.type == "status"]


def write_fake_worker(
    tmp_path: Path,
    lines: list[dict[str, Any] | str],
    exit_code: int = 0,
    send_ready: bool = True,
    name: str = "fake_worker.py",
) -> list[str]:
    """Write a scripted worker process and return its command line.

    The script optionally sends ``ready``, reads one line (the run
    command), echoes the run id back as a ``data`` message, then writes
    ``lines`` (dicts as JSON, strings verbatim) and exits with
    ``exit_code``.

    Returns:
        The command, suitable for ``Orchestrator(command=...)``.
    """
    encoded = [line if isinstance(line, str) else json.dumps(line) for line in lines]
    script = textwrap.dedent(
        f"""
        import json
        import sys

        if {send_ready!r}:
            print(json.dumps({{"type": "ready"}}), flush=True)
            command = json.loads(sys.stdin.readline())
            print(json.dumps({{"type": "data", "key": "runId",
                               "value": command.get("runId")}}), flush=True)
        for line in {encoded!r}:
            print(line, flush=True)
        sys.exit({exit_code})
        """
    )
    path = tmp_path / name
    path.write_text(script)
    return [sys.executable, str(path)]
