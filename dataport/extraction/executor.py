"""Tiered extraction executor.

Tries an ordered list of strategies and returns the first non-empty result.
Strategy failures never escape: a raising strategy is logged, recorded and
treated exactly like one that found nothing.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from dataport.common.exceptions import StrategyExhausted
from dataport.data_types import CollectionContext, ExtractionResult, Item
from dataport.extraction.strategy import ExtractionStrategy

logger = logging.getLogger(__name__)


async def extract(
    strategies: Sequence[ExtractionStrategy],
    context: CollectionContext,
) -> ExtractionResult:
    """Run strategies in order until one yields items.

    Later strategies are not invoked once one succeeds.

    Args:
        strategies: Strategies in priority order for this call.
        context: The collection context passed to each strategy.

    Returns:
        ExtractionResult naming the winner, or an empty result. The
        result's ``error`` is set only when at least one strategy raised.
    """
    result = ExtractionResult()

    for strategy in strategies:
        result.attempted.append(strategy.name)
        try:
            items = await strategy.attempt(context)
        except Exception as e:
            logger.warning(
                f"Strategy '{strategy.name}' failed: {e}",
                extra={"strategy": strategy.name, "tier": strategy.tier.value},
            )
            result.errors[strategy.name] = str(e) or type(e).__name__
            continue

        if items:
            logger.debug(
                f"Strategy '{strategy.name}' produced {len(items)} item(s)",
                extra={"strategy": strategy.name, "tier": strategy.tier.value},
            )
            result.items = list(items)
            result.strategy = strategy.name
            return result

        logger.debug(f"Strategy '{strategy.name}' returned no items")

    if result.errors:
        result.error = "; ".join(
            f"{name}: {message}" for name, message in result.errors.items()
        )
    return result


def require(
    result: ExtractionResult, scope: str = "", platform: str = ""
) -> list[Item]:
    """Return the items, or raise if every tier broke.

    An empty result with no errors is legitimate ("nothing to export") and
    returns an empty list.

    Raises:
        StrategyExhausted: If no items were produced and a strategy failed.
    """
    if result.exhausted:
        raise StrategyExhausted(result.errors, scope=scope, platform=platform)
    return result.items
