"""Worker lifecycle state machine.

Drives one run from login to a finalized envelope::

    IDLE -> CHECKING_LOGIN -> HEADLESS_COLLECTING -> COMPLETE
                 |                    ^
                 v                    |
    AWAITING_INTERACTIVE_LOGIN <-> VERIFYING_LOGIN

Any non-terminal phase may move to FAILED. Every transition emits a
``status`` message; the terminal ``result``/``error`` message is the
worker loop's job, not the state machine's.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import Any

from dataport.aggregate import EnvelopeBuilder, ScopeEnvelope, count_items
from dataport.common.exceptions import (
    ConnectorError,
    InvalidPhaseTransition,
    LoginTimeout,
    SessionAcquisitionFailure,
    StrategyExhausted,
    TransientException,
)
from dataport.common.poll import PollPolicy, poll
from dataport.common.progress import ProgressReporter
from dataport.connector import BaseConnector, CollectionPhase, PartialScope
from dataport.data_types import (
    PHASE_TRANSITIONS,
    CollectionContext,
    ProgressPhase,
    RunRequest,
    WorkerPhase,
)
from dataport.worker.capabilities import Capabilities

logger = logging.getLogger(__name__)


class WorkerLifecycle:
    """Runs a connector through login and collection.

    Args:
        connector: The connector instance for this run.
        capabilities: Browser capabilities; its emitter receives status.
        clock: Monotonic clock used for the interactive login deadline.

    Example::

        lifecycle = WorkerLifecycle(connector, capabilities)
        envelope = await lifecycle.run(request)
    """

    def __init__(
        self,
        connector: BaseConnector,
        capabilities: Capabilities,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.connector = connector
        self.capabilities = capabilities
        self.emitter = capabilities.emitter
        self.clock = clock
        self.phase = WorkerPhase.IDLE
        self.history: list[WorkerPhase] = [WorkerPhase.IDLE]
        self.reporter = ProgressReporter(self.emitter.progress)
        self.context: CollectionContext | None = None

    # =========================================================================
    # Transitions
    # =========================================================================

    def can_transition(self, target: WorkerPhase) -> bool:
        if target is WorkerPhase.FAILED:
            return not self.phase.is_terminal
        return target in PHASE_TRANSITIONS[self.phase]

    def transition(self, target: WorkerPhase) -> None:
        """Move to ``target``.

        Raises:
            InvalidPhaseTransition: If the move is not in the table.
        """
        if not self.can_transition(target):
            raise InvalidPhaseTransition(self.phase, target)
        logger.debug(f"Phase {self.phase.name} -> {target.name}")
        self.phase = target
        self.history.append(target)

    async def _enter(self, target: WorkerPhase, status: str | dict[str, Any]) -> None:
        self.transition(target)
        await self.emitter.status(status)

    # =========================================================================
    # Run
    # =========================================================================

    async def run(self, request: RunRequest) -> ScopeEnvelope:
        """Execute the run.

        Returns:
            The finalized envelope.

        Raises:
            LoginTimeout: Interactive login did not complete in time.
            SessionAcquisitionFailure: No identity could be resolved.
            StrategyExhausted: A required phase lost every extraction tier.
            ConnectorError: Any other fatal connector failure.
        """
        context = CollectionContext(request=request, capabilities=self.capabilities)
        self.context = context

        try:
            await self._enter(
                WorkerPhase.CHECKING_LOGIN,
                f"Checking login status for {self.connector.display_name}...",
            )
            await self._check_login(context)

            if not request.force_headed:
                await self.capabilities.go_headless()

            context = await self._resolve_identity(context)
            context = await self.connector.prepare(context)
            self.context = context

            envelope = await self._collect(context)

            await self.emitter.status(
                self.connector.completion_message(envelope, context.identity)
            )
            await self._enter(WorkerPhase.COMPLETE, "COMPLETE")
            return envelope

        except Exception as e:
            if self.can_transition(WorkerPhase.FAILED):
                self.transition(WorkerPhase.FAILED)
                await self.emitter.status("ERROR")
            logger.error(
                f"Run failed in phase {self.history[-2].name}: {e}",
                extra={"platform": self.connector.platform},
            )
            raise

    async def _check_login(self, context: CollectionContext) -> None:
        start_url = self._start_url(context.request)
        if start_url:
            await self.capabilities.navigate(start_url)

        logged_in = await poll(
            lambda: self.connector.is_logged_in(context),
            self.connector.login_check_policy,
            sleep=self.capabilities.sleep,
        )
        if logged_in:
            await self._enter(
                WorkerPhase.HEADLESS_COLLECTING,
                "Session restored from previous login",
            )
            return

        await self._interactive_login(context)

    def _start_url(self, request: RunRequest) -> str | None:
        if request.initial_url and request.initial_url != "about:blank":
            return request.initial_url
        return self.connector.connect_url or None

    async def _interactive_login(self, context: CollectionContext) -> None:
        timeout = self.connector.login_timeout
        deadline = self.clock() + timeout

        await self._enter(
            WorkerPhase.AWAITING_INTERACTIVE_LOGIN,
            f"Please log in to {self.connector.display_name}",
        )
        await self.capabilities.show_browser(self.connector.interactive_login_url)

        while True:
            remaining = deadline - self.clock()
            if remaining <= 0:
                raise LoginTimeout(self.connector.platform, timeout)

            confirmed = await self.capabilities.prompt_user(
                self.connector.login_prompt(),
                lambda: self.connector.is_logged_in(context),
                PollPolicy(
                    max_attempts=None,
                    interval=self.connector.login_poll_interval,
                    timeout=remaining,
                ),
            )
            if not confirmed:
                raise LoginTimeout(self.connector.platform, timeout)

            await self._enter(WorkerPhase.VERIFYING_LOGIN, "Verifying login...")
            if await self._verify(context):
                await self._enter(WorkerPhase.HEADLESS_COLLECTING, "Login verified")
                return

            await self._enter(
                WorkerPhase.AWAITING_INTERACTIVE_LOGIN,
                "Login not detected yet. Still waiting...",
            )

    async def _verify(self, context: CollectionContext) -> bool:
        try:
            return bool(await self.connector.is_logged_in(context))
        except Exception as e:
            logger.debug(f"Login verification raised: {e}")
            return False

    async def _resolve_identity(self, context: CollectionContext) -> CollectionContext:
        if not self.connector.requires_identity:
            return context

        policy = self.connector.identity_policy
        identity = await poll(
            lambda: self.connector.resolve_identity(context),
            policy,
            sleep=self.capabilities.sleep,
        )
        if not identity:
            raise SessionAcquisitionFailure(
                "Logged in, but could not determine which account is active",
                self.connector.platform,
                {"attempts": policy.max_attempts, "interval": policy.interval},
            )

        logger.info(f"Resolved identity for {self.connector.platform}: {identity}")
        if self.connector.report_identity:
            await self.emitter.data("identity", identity)
        return context.with_identity(identity)

    # =========================================================================
    # Collection
    # =========================================================================

    async def _collect(self, context: CollectionContext) -> ScopeEnvelope:
        connector = self.connector
        phases = connector.phases()
        builder = EnvelopeBuilder(
            connector.platform,
            connector.version,
            noun=connector.noun,
            plural=connector.plural,
            count_scopes=connector.count_scopes,
        )

        for step, phase in enumerate(phases, start=1):
            await self._run_phase(context, phase, step, len(phases), builder)

        if connector.empty_result_is_error and builder.is_empty():
            raise ConnectorError(
                f"No data found to export from {connector.display_name}",
                connector.platform,
            )

        return builder.finalize(details=connector.summary_details(builder.scopes))

    async def _run_phase(
        self,
        context: CollectionContext,
        phase: CollectionPhase,
        step: int,
        total: int,
        builder: EnvelopeBuilder,
    ) -> None:
        progress = self.reporter.phase_reporter(ProgressPhase(step, total, phase.label))
        await progress(f"Collecting {phase.label.lower()}...")

        try:
            value = await phase.collect(context, progress)
        except (StrategyExhausted, TransientException) as e:
            if not phase.optional:
                raise
            logger.warning(f"Optional phase '{phase.scope}' failed: {e}")
            message = f"{phase.label} unavailable; continuing without it"
            builder.warn(phase.scope, message)
            await self.emitter.warning(phase.scope, message)
            await progress(f"{phase.label} skipped")
            return

        if isinstance(value, PartialScope):
            builder.warn(phase.scope, value.reason)
            await self.emitter.warning(phase.scope, value.reason)
            value, warned = value.value, True
        else:
            warned = False

        count = count_items(value)
        if count == 0 and phase.optional and not warned:
            message = f"No {phase.label.lower()} found"
            builder.warn(phase.scope, message)
            await self.emitter.warning(phase.scope, message)

        builder.add(phase.scope, value)
        await progress(f"Collected {count} {phase.label.lower()}", count)
