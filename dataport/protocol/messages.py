"""Control protocol messages and their line codec.

Every line on the channel is exactly one JSON object discriminated by its
``type`` field. Decoding never fails: a line that is not a recognizable
message is returned as raw log text, because browser and engine console
output can be interleaved on the same stream.
"""

from __future__ import annotations

import json
import logging
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from dataport.data_types import ProgressState, RunRequest

logger = logging.getLogger(__name__)

# A data value starting with this marker is a developer diagnostic.
DEBUG_MARKER = "[DEBUG]"


class _Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)


class ReadyMessage(_Message):
    """Worker is ready to accept a run command. Sent exactly once."""

    type: Literal["ready"] = "ready"


class RunCommand(_Message):
    """Orchestrator request to execute one connector run."""

    type: Literal["run"] = "run"
    run_id: str = Field(alias="runId")
    connector_path: str = Field(alias="connectorPath")
    url: str = "about:blank"
    headless: bool = False
    force_headed: bool = Field(default=False, alias="forceHeaded")

    @classmethod
    def from_request(cls, request: RunRequest) -> RunCommand:
        return cls(
            run_id=request.run_id,
            connector_path=request.connector_ref,
            url=request.initial_url,
            headless=request.headless,
            force_headed=request.force_headed,
        )

    def to_request(self) -> RunRequest:
        return RunRequest(
            run_id=self.run_id,
            connector_ref=self.connector_path,
            initial_url=self.url,
            headless=self.headless,
            force_headed=self.force_headed,
        )


class StatusMessage(_Message):
    """User-facing status: a plain string or a structured progress object."""

    type: Literal["status"] = "status"
    status: str | dict[str, Any]

    @classmethod
    def from_progress(cls, state: ProgressState) -> StatusMessage:
        return cls(status=state.to_status())


class LogMessage(_Message):
    """Diagnostic text.

    ``raw`` is set when the line could not be decoded as a protocol
    message; it is never serialized.
    """

    type: Literal["log"] = "log"
    message: str = ""
    raw: bool = Field(default=False, exclude=True)


class DataMessage(_Message):
    """Ad hoc key/value telemetry."""

    type: Literal["data"] = "data"
    key: str
    value: Any = None

    @property
    def is_debug(self) -> bool:
        return isinstance(self.value, str) and self.value.startswith(
            DEBUG_MARKER
        )


class ResultMessage(_Message):
    """Terminal success message carrying the finalized envelope."""

    type: Literal["result"] = "result"
    data: dict[str, Any]


class ErrorMessage(_Message):
    """Terminal failure message."""

    type: Literal["error"] = "error"
    message: str


class NetworkCapturedMessage(_Message):
    """A registered network capture matched a response."""

    type: Literal["network-captured"] = "network-captured"
    key: str
    url: str = ""


ControlMessage = Annotated[
    Union[
        ReadyMessage,
        RunCommand,
        StatusMessage,
        LogMessage,
        DataMessage,
        ResultMessage,
        ErrorMessage,
        NetworkCapturedMessage,
    ],
    Field(discriminator="type"),
]

TERMINAL_TYPES = (ResultMessage, ErrorMessage)

_adapter: TypeAdapter[ControlMessage] = TypeAdapter(ControlMessage)


def encode(message: ControlMessage) -> str:
    """Serialize a message to a single line of JSON (without newline)."""
    return json.dumps(
        message.model_dump(mode="json", by_alias=True),
        separators=(",", ":"),
        ensure_ascii=False,
    )


def decode(line: str | bytes) -> ControlMessage | None:
    """Parse one line into a message.

    Args:
        line: A line read from the channel, with or without its newline.

    Returns:
        The decoded message; a raw LogMessage for anything that is not a
        valid protocol message; None for a blank line.
    """
    if isinstance(line, bytes):
        line = line.decode("utf-8", errors="replace")
    text = line.rstrip("\r\n")
    if not text.strip():
        return None

    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        return LogMessage(message=text, raw=True)

    if not isinstance(payload, dict):
        return LogMessage(message=text, raw=True)

    try:
        return _adapter.validate_python(payload)
    except ValidationError as e:
        logger.debug(
            f"Undecodable protocol line downgraded to log: {e.error_count()} "
            f"validation error(s)"
        )
        return LogMessage(message=text, raw=True)


def is_terminal(message: ControlMessage) -> bool:
    return isinstance(message, TERMINAL_TYPES)
