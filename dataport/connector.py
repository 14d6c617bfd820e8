"""Connector base class.

A connector is the per-platform part of an export: where to log in, how to
tell whether the session is authenticated, who the account is, and an
ordered list of collection phases, each producing one scope.

Example:
    class GitHubConnector(BaseConnector):
        platform = "github"
        name = "GitHub"
        version = "1.1.3"
        connect_url = "https://github.com/"
        login_url = "https://github.com/login"
        rate_limits = [Rate(2, Duration.SECOND)]

        async def is_logged_in(self, context):
            return await context.capabilities.invoke(IS_LOGGED_IN)

        async def resolve_identity(self, context):
            return await context.capabilities.invoke(USERNAME)

        def phases(self):
            return [
                CollectionPhase("github.repositories", "Repositories",
                                self.collect_repositories),
                CollectionPhase("github.starred", "Starred",
                                self.collect_starred, optional=True),
            ]
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from dataport.common.exceptions import ConnectorError
from dataport.common.poll import PollPolicy
from dataport.data_types import is_scope_name

if TYPE_CHECKING:
    from pyrate_limiter import Rate

    from dataport.aggregate import ScopeEnvelope
    from dataport.common.progress import PhaseProgress
    from dataport.data_types import CollectionContext

logger = logging.getLogger(__name__)

PhaseFn = Callable[["CollectionContext", "PhaseProgress"], Awaitable[Any]]


@dataclass(frozen=True)
class CollectionPhase:
    """One collection step of a connector.

    Attributes:
        scope: Namespaced envelope key the phase's value is stored under.
        label: Stable, user-facing name used in progress updates.
        collect: Async callable ``(context, progress) -> value``. The value
            is stored verbatim in the envelope. Return a PartialScope when
            the value is usable but incomplete.
        optional: When True, a phase that fails with StrategyExhausted or
            returns nothing is tolerated with a warning.
    """

    scope: str
    label: str
    collect: PhaseFn
    optional: bool = False

    def __post_init__(self) -> None:
        if not is_scope_name(self.scope):
            raise ValueError(
                f"Phase scope '{self.scope}' must be namespaced as "
                "'platform.category' and must not be a reserved key"
            )


@dataclass(frozen=True)
class PartialScope:
    """A phase value that is usable but known to be incomplete.

    The value is stored like any other; ``reason`` is reported to the
    user as a warning on the scope and listed in the export summary.
    """

    value: Any
    reason: str


class BaseConnector:
    """Base class for platform connectors.

    Class Attributes:
        platform: Platform identifier, the prefix of every scope name.
        name: Display name.
        version: Connector version string stamped on the envelope.
        connect_url: URL the run starts at when no override is given.
        login_url: URL shown to the user for interactive login; defaults
            to connect_url.
        noun: Singular noun for the export summary label.
        plural: Plural noun; defaults to ``noun + "s"``.
        count_scopes: Scopes counted in the summary; all by default.
        rate_limits: pyrate_limiter rates pacing navigation.
        empty_result_is_error: End the run with an error when every scope
            came back empty.
        requires_identity: Resolve an account identity after login.
        report_identity: Report the resolved identity as a data message.
        login_check_policy: Poll policy for the initial login check.
        identity_policy: Poll policy for identity resolution.
        login_timeout: Overall deadline in seconds for interactive login.
        login_poll_interval: Seconds between login checks while waiting.
    """

    platform: ClassVar[str] = ""
    name: ClassVar[str] = ""
    version: ClassVar[str] = ""
    connect_url: ClassVar[str] = ""
    login_url: ClassVar[str] = ""

    noun: ClassVar[str] = "item"
    plural: ClassVar[str | None] = None
    count_scopes: ClassVar[list[str] | None] = None

    rate_limits: ClassVar[list[Rate] | None] = None
    empty_result_is_error: ClassVar[bool] = False

    requires_identity: ClassVar[bool] = True
    report_identity: ClassVar[bool] = True

    login_check_policy: ClassVar[PollPolicy] = PollPolicy(
        max_attempts=2, interval=2.0
    )
    identity_policy: ClassVar[PollPolicy] = PollPolicy(
        max_attempts=5, interval=1.5
    )
    login_timeout: ClassVar[float] = 300.0
    login_poll_interval: ClassVar[float] = 2.0

    @property
    def display_name(self) -> str:
        return self.name or self.platform or type(self).__name__

    @property
    def interactive_login_url(self) -> str:
        return self.login_url or self.connect_url

    def login_prompt(self) -> str:
        return f"Log in to {self.display_name}. Click 'Done' when you are logged in."

    async def is_logged_in(self, context: CollectionContext) -> bool:
        """Return True if the session is authenticated."""
        raise NotImplementedError(
            f"{type(self).__name__} must implement is_logged_in()"
        )

    async def resolve_identity(self, context: CollectionContext) -> str | None:
        """Return the account identity (username, email), or None if it
        cannot be determined yet."""
        raise NotImplementedError(
            f"{type(self).__name__} must implement resolve_identity()"
        )

    async def prepare(self, context: CollectionContext) -> CollectionContext:
        """Hook run after login and identity, before the first phase.

        Override to derive session values (tokens, device ids) and return
        an updated context.
        """
        return context

    def phases(self) -> list[CollectionPhase]:
        """Return the ordered collection phases."""
        raise NotImplementedError(
            f"{type(self).__name__} must implement phases()"
        )

    def summary_details(self, scopes: dict[str, Any]) -> str | None:
        """Custom ``exportSummary.details`` line; None for the default."""
        return None

    def completion_message(
        self, envelope: ScopeEnvelope, identity: str | None
    ) -> str:
        summary = envelope.summary
        message = f"Complete! Exported {summary['count']} {summary['label']}"
        if identity:
            message += f" for {identity}"
        return message

    @classmethod
    def metadata(cls) -> dict[str, Any]:
        return {
            "platform": cls.platform,
            "name": cls.name,
            "version": cls.version,
            "connect_url": cls.connect_url,
            "login_url": cls.login_url or cls.connect_url,
            "noun": cls.noun,
            "empty_result_is_error": cls.empty_result_is_error,
            "rate_limits": [
                f"{rate.limit}/{rate.interval}ms" for rate in cls.rate_limits or []
            ],
        }


def load_connector(ref: str) -> type[BaseConnector]:
    """Import a connector class from a ``"module.path:ClassName"`` reference.

    Raises:
        ConnectorError: If the reference is malformed, the import fails,
            or the target is not a BaseConnector subclass.
    """
    if ":" not in ref:
        raise ConnectorError(
            f"Invalid connector reference '{ref}'. "
            "Expected format: 'module.path:ClassName'"
        )

    module_path, class_name = ref.rsplit(":", 1)
    try:
        module = importlib.import_module(module_path)
    except ImportError as e:
        raise ConnectorError(
            f"Could not import module '{module_path}': {e}"
        ) from e

    try:
        connector_cls = getattr(module, class_name)
    except AttributeError as e:
        raise ConnectorError(
            f"Module '{module_path}' has no class '{class_name}'"
        ) from e

    if not (
        isinstance(connector_cls, type) and issubclass(connector_cls, BaseConnector)
    ):
        raise ConnectorError(f"'{ref}' is not a BaseConnector subclass")

    return connector_cls
