"""Worker side of a run: capabilities, lifecycle and the protocol loop."""

from dataport.worker.capabilities import Capabilities, Emitter
from dataport.worker.lifecycle import WorkerLifecycle
from dataport.worker.remote import RemoteOperation

__all__ = [
    "Capabilities",
    "Emitter",
    "RemoteOperation",
    "WorkerLifecycle",
]
