"""Result aggregation: scopes in, one ScopeEnvelope out.

The envelope is a flat JSON object. Every collected scope sits under its
namespaced key (``platform.category``) exactly as collected, next to the
reserved metadata keys::

    {
        "github.repositories": {"items": [...], "total": 40},
        "github.starred": {"items": [...], "total": 12},
        "exportSummary": {
            "count": 52,
            "label": "items",
            "details": "40 repositories, 12 starred",
        },
        "timestamp": "2026-01-01T12:00:00+00:00",
        "version": "1.1.3",
        "platform": "github",
    }
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime, timezone
from typing import Any

from dataport.data_types import RESERVED_KEYS, SCOPE_SEPARATOR, is_scope_name

logger = logging.getLogger(__name__)


class ScopeEnvelope(dict):
    """Finalized export envelope.

    A plain dict (so it serializes as-is) with helpers to tell scope keys
    apart from the reserved metadata keys.
    """

    def scopes(self) -> Iterator[str]:
        """Iterate scope names, excluding reserved keys."""
        return (key for key in self if key not in RESERVED_KEYS)

    @property
    def summary(self) -> dict[str, Any]:
        return self.get("exportSummary", {})


def validate_scope_name(name: str) -> None:
    """Raise ValueError unless ``name`` is a namespaced, non-reserved key."""
    if name in RESERVED_KEYS:
        raise ValueError(f"'{name}' is a reserved envelope key")
    if not is_scope_name(name):
        raise ValueError(
            f"Scope name '{name}' must be namespaced as "
            f"'platform{SCOPE_SEPARATOR}category'"
        )


def count_items(value: Any) -> int:
    """Item count of one scope value.

    - a list counts its elements
    - a dict with an integer ``total`` uses it; otherwise the length of
      its first list-valued entry; a dict without lists counts as 1
    - None counts as 0
    - any other value (a profile object, a string) counts as 1
    """
    if value is None:
        return 0
    if isinstance(value, (list, tuple)):
        return len(value)
    if isinstance(value, dict):
        total = value.get("total")
        if isinstance(total, int) and not isinstance(total, bool):
            return total
        for entry in value.values():
            if isinstance(entry, list):
                return len(entry)
        return 1 if value else 0
    return 1


def pluralize(noun: str, count: int, plural: str | None = None) -> str:
    if count == 1:
        return noun
    return plural or f"{noun}s"


def scope_leaf(name: str) -> str:
    """``'github.starred'`` -> ``'starred'``."""
    return name.rsplit(SCOPE_SEPARATOR, 1)[-1]


def finalize(
    scopes: Mapping[str, Any],
    platform: str,
    version: str,
    noun: str = "item",
    plural: str | None = None,
    count_scopes: Iterable[str] | None = None,
    details: str | None = None,
    warnings: list[str] | None = None,
    now: datetime | None = None,
) -> ScopeEnvelope:
    """Build the envelope from collected scopes.

    Args:
        scopes: Scope name to collected value, copied verbatim.
        platform: Platform identifier.
        version: Connector version string.
        noun: Singular noun for the summary label.
        plural: Plural noun; defaults to ``noun + "s"``.
        count_scopes: Scopes contributing to ``exportSummary.count``; all
            scopes by default. Use this when one scope is the primary one.
        details: Human-readable detail line; by default "N leaf" per scope.
        warnings: Tolerated partial failures to list in the summary.
        now: Finalization time; defaults to the current UTC time.

    Returns:
        The finalized ScopeEnvelope.

    Raises:
        ValueError: If a scope name is reserved or not namespaced, or a
            count scope was not collected.
    """
    for name in scopes:
        validate_scope_name(name)

    counted = list(scopes) if count_scopes is None else list(count_scopes)
    unknown = [name for name in counted if name not in scopes]
    if unknown:
        raise ValueError(f"Count scopes not collected: {', '.join(unknown)}")

    counts = {name: count_items(value) for name, value in scopes.items()}
    total = sum(counts[name] for name in counted)

    summary: dict[str, Any] = {
        "count": total,
        "label": pluralize(noun, total, plural),
        "details": details
        if details is not None
        else ", ".join(f"{counts[name]} {scope_leaf(name)}" for name in scopes),
    }
    if warnings:
        summary["warnings"] = list(warnings)

    stamp = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)

    envelope = ScopeEnvelope(scopes)
    envelope["exportSummary"] = summary
    envelope["timestamp"] = stamp.isoformat()
    envelope["version"] = version
    envelope["platform"] = platform
    return envelope


class EnvelopeBuilder:
    """Assembles an envelope incrementally and finalizes it exactly once.

    Example::

        builder = EnvelopeBuilder("github", "1.1.3", noun="item")
        builder.add("github.repositories", repos)
        builder.warn("github.starred", "Starred repositories unavailable")
        envelope = builder.finalize()
    """

    def __init__(
        self,
        platform: str,
        version: str,
        noun: str = "item",
        plural: str | None = None,
        count_scopes: Iterable[str] | None = None,
    ) -> None:
        self.platform = platform
        self.version = version
        self.noun = noun
        self.plural = plural
        self.count_scopes = list(count_scopes) if count_scopes else None
        self.scopes: dict[str, Any] = {}
        self.warnings: list[str] = []
        self._envelope: ScopeEnvelope | None = None

    @property
    def finalized(self) -> bool:
        return self._envelope is not None

    def add(self, scope: str, value: Any) -> None:
        """Register a collected scope.

        Raises:
            ValueError: If the name is invalid or already registered.
            RuntimeError: If the envelope was already finalized.
        """
        self._check_open()
        validate_scope_name(scope)
        if scope in self.scopes:
            raise ValueError(f"Scope '{scope}' already collected")
        self.scopes[scope] = value

    def warn(self, scope: str, message: str) -> None:
        """Record a tolerated partial failure for a scope."""
        self._check_open()
        logger.warning(f"{scope}: {message}")
        self.warnings.append(f"{scope}: {message}")

    def is_empty(self) -> bool:
        """True when no scope holds any item."""
        return all(count_items(value) == 0 for value in self.scopes.values())

    def finalize(
        self, details: str | None = None, now: datetime | None = None
    ) -> ScopeEnvelope:
        """Produce the envelope. May only be called once.

        Raises:
            RuntimeError: On a second call.
        """
        self._check_open()
        count_scopes = (
            [name for name in self.count_scopes if name in self.scopes]
            if self.count_scopes is not None
            else None
        )
        self._envelope = finalize(
            self.scopes,
            platform=self.platform,
            version=self.version,
            noun=self.noun,
            plural=self.plural,
            count_scopes=count_scopes,
            details=details,
            warnings=self.warnings,
            now=now,
        )
        return self._envelope

    def _check_open(self) -> None:
        if self._envelope is not None:
            raise RuntimeError("Envelope has already been finalized")
