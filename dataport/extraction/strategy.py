"""Extraction strategies.

A strategy is one way of obtaining the items of a scope: an authenticated
API call, a network response captured while the page loaded, or a DOM
scrape. Strategies are plain objects listed in priority order by the
connector; the executor tries them in that order.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

from dataport.data_types import CollectionContext, Item

logger = logging.getLogger(__name__)


class Tier(Enum):
    """Kind of data source a strategy reads. Diagnostic only."""

    API = "api"
    NETWORK = "network"
    DOM = "dom"


class ExtractionStrategy(ABC):
    """One way to extract the items of a scope.

    Subclasses set ``name`` and ``tier`` and implement ``attempt``. An
    empty list means "this source had nothing"; raising means "this source
    is broken" and the executor moves on either way.
    """

    name: str = "strategy"
    tier: Tier = Tier.API

    @abstractmethod
    async def attempt(self, context: CollectionContext) -> list[Item]:
        """Try to extract items.

        Args:
            context: The current collection context.

        Returns:
            Extracted items, possibly empty.
        """
        ...

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name} ({self.tier.value})>"


class FunctionStrategy(ExtractionStrategy):
    """Wraps an async callable as a strategy.

    Example::

        strategies = [
            FunctionStrategy("api", fetch_from_api, Tier.API),
            FunctionStrategy("dom", scrape_list, Tier.DOM),
        ]
    """

    def __init__(
        self,
        name: str,
        fn: Callable[[CollectionContext], Awaitable[list[Item]]],
        tier: Tier = Tier.API,
    ) -> None:
        self.name = name
        self.fn = fn
        self.tier = tier

    async def attempt(self, context: CollectionContext) -> list[Item]:
        return await self.fn(context)


class CapturedResponseStrategy(ExtractionStrategy):
    """Reads items out of a network response captured during page load.

    The capture must have been registered earlier with
    ``capabilities.capture_network(key, pattern)``. If nothing was captured
    the strategy returns an empty list, so the next tier runs.

    Args:
        key: Capture key passed to ``capture_network``.
        parse: Converts the captured JSON body to items. Raising marks the
            strategy as failed (the response shape changed).
        name: Strategy name; defaults to ``captured:<key>``.
    """

    tier = Tier.NETWORK

    def __init__(
        self,
        key: str,
        parse: Callable[[Any], list[Item]],
        name: str | None = None,
    ) -> None:
        self.key = key
        self.parse = parse
        self.name = name or f"captured:{key}"

    async def attempt(self, context: CollectionContext) -> list[Item]:
        body = await context.capabilities.get_captured(self.key)
        if body is None:
            logger.debug(f"No captured response for '{self.key}'")
            return []
        return self.parse(body)
