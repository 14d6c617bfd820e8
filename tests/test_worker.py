"""Tests for the worker side of the control protocol.

serve() is driven in-process: input lines come from a scripted readline,
output goes to a StringIO, and the browser is the simulated Bookshelf site.
"""

import io

import pytest

from dataport.common.exceptions import ProtocolError, RemoteOperationError
from dataport.data_types import RunRequest
from dataport.demo.connector import BookshelfConnector
from dataport.demo.simulated import SimulatedBookshelf, simulated_factory
from dataport.protocol import (
    ErrorMessage,
    ProtocolWriter,
    ReadyMessage,
    ResultMessage,
    RunCommand,
    encode,
)
from dataport.worker.capabilities import Emitter
from dataport.worker.worker import error_message, serve
from tests.conftest import BOOKSHELF_REF
from tests.utils import output_messages, scripted_readline


class AccountBoundConnector(BookshelfConnector):
    def __init__(self, account: str) -> None:
        self.account = account


def run_line(ref: str = BOOKSHELF_REF, run_id: str = "run-42") -> str:
    return encode(RunCommand.from_request(RunRequest(run_id, ref)))


async def serve_lines(lines: list[str], site: SimulatedBookshelf):
    stream = io.StringIO()
    exit_code = await serve(
        scripted_readline(lines), ProtocolWriter(stream), simulated_factory(site)
    )
    return exit_code, output_messages(stream)


def terminals(messages):
    return [m for m in messages if m.type in ("result", "error")]


class TestServe:
    """Tests for serve()."""

    @pytest.mark.asyncio
    async def test_successful_run(self, site) -> None:
        """A run shall start with ready and end with exactly one result and exit 0."""
        exit_code, messages = await serve_lines([run_line()], site)

        assert exit_code == 0
        assert messages[0] == ReadyMessage()
        assert messages[1].status == {
            "type": "STARTED",
            "message": "Starting Bookshelf export",
            "runId": "run-42",
        }
        assert terminals(messages) == [messages[-1]]
        result = messages[-1]
        assert isinstance(result, ResultMessage)
        assert result.data["exportSummary"]["count"] == 23
        assert len(result.data["bookshelf.books"]) == 23

    @pytest.mark.asyncio
    async def test_output_is_protocol_only(self, site) -> None:
        """Every output line shall be a decodable protocol message."""
        stream = io.StringIO()
        await serve(
            scripted_readline([run_line()]),
            ProtocolWriter(stream),
            simulated_factory(site),
        )

        messages = output_messages(stream)
        assert len(messages) == len(stream.getvalue().splitlines())
        assert not any(getattr(m, "raw", False) for m in messages)

    @pytest.mark.asyncio
    async def test_messages_before_run_are_ignored(self, site) -> None:
        """Non-run input before the run command shall be ignored."""
        exit_code, messages = await serve_lines(
            ['{"type":"status","status":"hello"}', "garbage", run_line()], site
        )

        assert exit_code == 0
        assert isinstance(messages[-1], ResultMessage)

    @pytest.mark.asyncio
    async def test_eof_before_run(self, site) -> None:
        """Closed input before a run command shall end with an error and exit 1."""
        exit_code, messages = await serve_lines([], site)

        assert exit_code == 1
        assert messages == [
            ReadyMessage(),
            ErrorMessage(message="Input closed before a run command was received"),
        ]

    @pytest.mark.asyncio
    async def test_unknown_connector(self, site) -> None:
        """An unloadable connector shall end with an error before STARTED."""
        exit_code, messages = await serve_lines(
            [run_line("dataport.demo.connector:NoSuchConnector")], site
        )

        assert exit_code == 1
        assert [m.type for m in messages] == ["ready", "error"]
        assert "NoSuchConnector" in messages[-1].message

    @pytest.mark.asyncio
    async def test_connector_that_cannot_be_created(self, site) -> None:
        """A connector whose constructor raises shall end with an error, not a crash."""
        exit_code, messages = await serve_lines(
            [run_line("tests.test_worker:AccountBoundConnector")], site
        )

        assert exit_code == 1
        assert [m.type for m in messages] == ["ready", "error"]
        assert messages[-1].message.startswith(
            "Could not create connector AccountBoundConnector: "
        )
        assert "account" in messages[-1].message
        assert site.calls == []

    @pytest.mark.asyncio
    async def test_fatal_failure_emits_error(self) -> None:
        """A fatal run failure shall end with one plain-language error and exit 1."""
        site = SimulatedBookshelf(identity=None)

        exit_code, messages = await serve_lines([run_line()], site)

        assert exit_code == 1
        assert terminals(messages) == [
            ErrorMessage(
                message="Logged in, but could not determine which account is active"
            )
        ]
        assert messages[-1].type == "error"
        assert messages[-2].status == "ERROR"


class TestErrorMessage:
    """Tests for error_message()."""

    def test_prefers_message_attribute(self) -> None:
        """Errors carrying a message attribute shall use it."""
        error = RemoteOperationError("fetch_review", "HTTP 500")

        assert error_message(error) == "Remote operation 'fetch_review' failed: HTTP 500"

    def test_falls_back_to_str_then_type(self) -> None:
        """Plain exceptions shall use str(), or the type name when empty."""
        assert error_message(ValueError("bad value")) == "bad value"
        assert error_message(KeyError()) == "KeyError"


class TestEmitter:
    """Tests for the worker emitter."""

    @pytest.mark.asyncio
    async def test_second_terminal_is_refused(self) -> None:
        """The emitter shall refuse a second terminal message."""
        emitter = Emitter()
        await emitter.result({"a.x": []})

        with pytest.raises(ProtocolError):
            await emitter.error("late failure")

        assert emitter.terminated
        assert [m.type for m in emitter.messages] == ["result"]

    @pytest.mark.asyncio
    async def test_debug_and_warning(self) -> None:
        """Debug and warning helpers shall use the agreed message shapes."""
        emitter = Emitter()

        await emitter.debug("token refreshed")
        await emitter.warning("a.feed", "Feed unavailable")

        debug, status, data = emitter.messages
        assert debug.key == "debug"
        assert debug.value == "[DEBUG] token refreshed"
        assert debug.is_debug
        assert status.status == "Warning: Feed unavailable"
        assert data.value == {"scope": "a.feed", "message": "Feed unavailable"}

    @pytest.mark.asyncio
    async def test_writes_through_writer(self) -> None:
        """With a writer, every message shall also be written as a line."""
        stream = io.StringIO()
        emitter = Emitter(ProtocolWriter(stream))

        await emitter.status("hello")
        await emitter.log("details")

        assert [m.type for m in output_messages(stream)] == ["status", "log"]
