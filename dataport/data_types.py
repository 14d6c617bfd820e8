"""Data types shared by the worker, the orchestrator and connectors.

These types are designed to be:

1. Immutable - frozen dataclasses wherever a value crosses a stage boundary
2. Explicit - the collection context is passed along, never stored globally
3. Serializable - everything that reaches the protocol is plain JSON
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dataport.worker.capabilities import Capabilities

# An Item is an opaque, strategy-defined record.
Item = dict[str, Any]

# Envelope keys that are metadata, never scopes.
RESERVED_KEYS: frozenset[str] = frozenset(
    {"exportSummary", "timestamp", "version", "platform"}
)

SCOPE_SEPARATOR = "."


# =============================================================================
# Run Request
# =============================================================================


@dataclass(frozen=True)
class RunRequest:
    """A single invocation of a connector.

    Created once by the orchestrator and consumed once by the worker.

    Attributes:
        run_id: Opaque identifier correlating protocol messages to this run.
        connector_ref: ``"module.path:ClassName"`` reference to the connector.
        initial_url: URL the browser opens first.
        headless: Start the browser without a visible window.
        force_headed: Keep the browser visible for the whole run.
    """

    run_id: str
    connector_ref: str
    initial_url: str = "about:blank"
    headless: bool = False
    force_headed: bool = False


# =============================================================================
# Worker Phase
# =============================================================================


class WorkerPhase(Enum):
    """Phase of a worker run.

    Values:
        IDLE: Run accepted, nothing done yet.
        CHECKING_LOGIN: Polling the connector's login predicate.
        AWAITING_INTERACTIVE_LOGIN: Browser shown, waiting for the user.
        VERIFYING_LOGIN: Confirming the user's login attempt.
        HEADLESS_COLLECTING: Running collection phases.
        COMPLETE: Envelope finalized.
        FAILED: Unrecoverable failure.
    """

    IDLE = "idle"
    CHECKING_LOGIN = "checking_login"
    AWAITING_INTERACTIVE_LOGIN = "awaiting_interactive_login"
    VERIFYING_LOGIN = "verifying_login"
    HEADLESS_COLLECTING = "headless_collecting"
    COMPLETE = "complete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkerPhase.COMPLETE, WorkerPhase.FAILED)


# Legal forward transitions. FAILED is reachable from every non-terminal
# phase and is added by the state machine itself.
PHASE_TRANSITIONS: dict[WorkerPhase, frozenset[WorkerPhase]] = {
    WorkerPhase.IDLE: frozenset({WorkerPhase.CHECKING_LOGIN}),
    WorkerPhase.CHECKING_LOGIN: frozenset(
        {
            WorkerPhase.HEADLESS_COLLECTING,
            WorkerPhase.AWAITING_INTERACTIVE_LOGIN,
        }
    ),
    WorkerPhase.AWAITING_INTERACTIVE_LOGIN: frozenset(
        {WorkerPhase.VERIFYING_LOGIN}
    ),
    WorkerPhase.VERIFYING_LOGIN: frozenset(
        {
            WorkerPhase.HEADLESS_COLLECTING,
            WorkerPhase.AWAITING_INTERACTIVE_LOGIN,
        }
    ),
    WorkerPhase.HEADLESS_COLLECTING: frozenset({WorkerPhase.COMPLETE}),
    WorkerPhase.COMPLETE: frozenset(),
    WorkerPhase.FAILED: frozenset(),
}


# =============================================================================
# Progress
# =============================================================================


@dataclass(frozen=True)
class ProgressPhase:
    """Position of a sub-task within the collection run.

    Attributes:
        step: 1-based index of the current phase.
        total: Number of phases in the run.
        label: Stable, user-facing name of the phase.
    """

    step: int
    total: int
    label: str

    def __post_init__(self) -> None:
        if self.step < 1 or self.total < self.step:
            raise ValueError(
                f"Invalid progress phase {self.step}/{self.total} "
                f"for '{self.label}': expected 1 <= step <= total"
            )

    def to_dict(self) -> dict[str, Any]:
        return {"step": self.step, "total": self.total, "label": self.label}


@dataclass(frozen=True)
class ProgressState:
    """A single progress update.

    Attributes:
        phase: Where the run currently is.
        message: Human-readable description.
        count: Cumulative item count for the phase, when known.
    """

    phase: ProgressPhase
    message: str
    count: int | None = None

    def to_status(self) -> dict[str, Any]:
        """Render as the object payload of a ``status`` message."""
        payload: dict[str, Any] = {
            "type": "COLLECTING",
            "message": self.message,
            "phase": self.phase.to_dict(),
        }
        if self.count is not None:
            payload["count"] = self.count
        return payload


# =============================================================================
# Extraction
# =============================================================================


@dataclass
class ExtractionResult:
    """Outcome of running an ordered list of extraction strategies.

    Attributes:
        items: Items produced by the winning strategy (empty when none won).
        strategy: Name of the winning strategy, or None.
        attempted: Names of strategies tried, in order.
        errors: Failure message per strategy that raised.
        error: Summary of all failures when no strategy produced items and
            at least one failed. None means "legitimately nothing to export".
    """

    items: list[Item] = field(default_factory=list)
    strategy: str | None = None
    attempted: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.strategy is not None

    @property
    def exhausted(self) -> bool:
        """True when nothing was produced because every tier broke."""
        return not self.items and self.error is not None


# =============================================================================
# Collection Context
# =============================================================================


@dataclass(frozen=True)
class CollectionContext:
    """Explicit context threaded through lifecycle, strategies and pagination.

    Stages never mutate the context; they return an updated copy via
    ``with_values`` or ``with_identity``.

    Attributes:
        request: The run being executed.
        capabilities: The browser capability surface for this run.
        identity: Account identity resolved after login (username, email...).
        values: Connector-specific values (tokens, device ids, cursors).
    """

    request: RunRequest
    capabilities: Capabilities
    identity: str | None = None
    values: dict[str, Any] = field(default_factory=dict)

    def with_values(self, **values: Any) -> CollectionContext:
        return replace(self, values={**self.values, **values})

    def with_identity(self, identity: str) -> CollectionContext:
        return replace(self, identity=identity)

    def get(self, key: str, default: Any = None) -> Any:
        return self.values.get(key, default)


def is_scope_name(name: str) -> bool:
    """Return True if ``name`` is usable as a namespaced scope key."""
    return (
        name not in RESERVED_KEYS
        and SCOPE_SEPARATOR in name
        and not name.startswith(SCOPE_SEPARATOR)
        and not name.endswith(SCOPE_SEPARATOR)
    )
