"""Line-delimited JSON control protocol between orchestrator and worker."""

from dataport.protocol.channel import ProtocolReader, ProtocolWriter
from dataport.protocol.messages import (
    ControlMessage,
    DataMessage,
    ErrorMessage,
    LogMessage,
    NetworkCapturedMessage,
    ReadyMessage,
    ResultMessage,
    RunCommand,
    StatusMessage,
    decode,
    encode,
)

__all__ = [
    "ControlMessage",
    "DataMessage",
    "ErrorMessage",
    "LogMessage",
    "NetworkCapturedMessage",
    "ProtocolReader",
    "ProtocolWriter",
    "ReadyMessage",
    "ResultMessage",
    "RunCommand",
    "StatusMessage",
    "decode",
    "encode",
]
