"""Exception types for connector and worker errors.

This module defines the exception hierarchy for export runs. Fatal errors
(login and identity failures) end the run with an ``error`` message;
everything else is caught at the layer that can tolerate it.
"""

from typing import Any


class ConnectorError(Exception):
    """Base class for failures raised while running a connector.

    Connectors make assumptions about how a platform authenticates and
    exposes data. When these assumptions are violated, they should raise
    clear, contextual exceptions that help diagnose the issue.
    """

    def __init__(
        self,
        message: str,
        platform: str = "",
        context: dict[str, Any] | None = None,
    ) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable description of the failure.
            platform: Identifier of the platform being exported.
            context: Optional dict of additional context (urls, attempts, etc).
        """
        self.message = message
        self.platform = platform
        self.context = context or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Format the error message with context.

        Returns:
            Formatted error message string.
        """
        parts = [self.message]
        if self.platform:
            parts.append(f"Platform: {self.platform}")

        if self.context:
            parts.append("Context:")
            for key, value in self.context.items():
                parts.append(f"  {key}: {value}")

        return "\n".join(parts)


class LoginTimeout(ConnectorError):
    """Raised when interactive login polling exceeds its deadline.

    Attributes:
        timeout_seconds: The overall login deadline that elapsed.
    """

    def __init__(self, platform: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Login was not completed within {timeout_seconds:g} seconds",
            platform,
            {"timeout_seconds": timeout_seconds},
        )


class SessionAcquisitionFailure(ConnectorError):
    """Raised when the user is logged in but a required identity or token
    cannot be derived from the session."""

    pass


class StrategyExhausted(ConnectorError):
    """Raised when every extraction tier failed for a scope.

    Whether this is fatal depends on whether the scope is optional; the
    worker lifecycle tolerates it for optional scopes.

    Attributes:
        scope: The scope being collected, if known.
        errors: Failure message per strategy name.
    """

    def __init__(
        self,
        errors: dict[str, str],
        scope: str = "",
        platform: str = "",
    ) -> None:
        self.scope = scope
        self.errors = errors

        summary = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
        target = f" for '{scope}'" if scope else ""
        message = f"All extraction strategies failed{target}: {summary}"

        super().__init__(message, platform, {"strategies": list(errors)})


class InvalidPhaseTransition(ConnectorError):
    """Raised when the worker lifecycle is asked to make an illegal move."""

    def __init__(self, current: Any, target: Any) -> None:
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal phase transition {current.name} -> {target.name}"
        )


# =============================================================================
# Transient Exceptions
# =============================================================================


class TransientException(Exception):
    """Base class for transient errors that might resolve on retry.

    Transient exceptions represent temporary failures like browser
    timeouts or flaky remote calls. Retry policy belongs to individual
    strategies and pagination loops, never to the worker lifecycle.
    """

    pass


class RemoteOperationError(TransientException):
    """Raised when a remote operation fails inside the browser.

    Attributes:
        operation: Name of the remote operation.
        message: Human-readable error message.
    """

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = f"Remote operation '{operation}' failed: {message}"
        super().__init__(self.message)


class RemoteOperationTimeout(RemoteOperationError):
    """Raised when a remote operation exceeds its per-request timeout."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(operation, f"timed out after {timeout_seconds:g}s")


# =============================================================================
# Protocol
# =============================================================================


class ProtocolError(Exception):
    """Raised when a peer violates the control protocol framing.

    Undecodable lines are not protocol errors; they are downgraded to log
    text. This covers structural violations such as a missing ``ready`` or
    a second ``run`` command.
    """

    pass


class WorkerNotFound(Exception):
    """Raised when no worker executable can be located."""

    def __init__(self, env_var: str, searched: list[str]) -> None:
        self.env_var = env_var
        self.searched = searched
        lines = [
            "Could not find the dataport worker executable.",
            f"Set the {env_var} environment variable to the worker command.",
        ]
        if searched:
            lines.append("Looked in:")
            lines.extend(f"  {location}" for location in searched)
        super().__init__("\n".join(lines))
