"""Tests for result aggregation and envelope finalization.

Key behaviors tested:
- Scopes are stored verbatim under their namespaced keys
- The export summary counts items with a singular/plural label
- Reserved and unnamespaced scope names are rejected
- An envelope is finalized exactly once
"""

from datetime import datetime, timedelta, timezone

import pytest

from dataport.aggregate import (
    EnvelopeBuilder,
    count_items,
    finalize,
    pluralize,
    scope_leaf,
)

NOON = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestCountItems:
    """Tests for per-scope item counting."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (None, 0),
            ([], 0),
            ([1, 2, 3], 3),
            ((1, 2), 2),
            ({"items": [1, 2], "total": 40}, 40),
            ({"items": [1, 2]}, 2),
            ({"total": True, "items": [1]}, 1),
            ({"username": "reader42"}, 1),
            ({}, 0),
            ("text", 1),
            (7, 1),
        ],
    )
    def test_count_rules(self, value, expected) -> None:
        """Each scope value shape shall be counted by its documented rule."""
        assert count_items(value) == expected


class TestFinalize:
    """Tests for finalize()."""

    def test_envelope_contents(self) -> None:
        """Scopes shall be kept verbatim next to the reserved metadata keys."""
        items = [{"id": i} for i in range(5)]

        envelope = finalize(
            {"a.x": items, "a.y": []}, platform="a", version="1.0.0", now=NOON
        )

        assert envelope["a.x"] is items
        assert envelope["a.y"] == []
        assert envelope["exportSummary"] == {
            "count": 5,
            "label": "items",
            "details": "5 x, 0 y",
        }
        assert envelope["timestamp"] == "2026-01-01T12:00:00+00:00"
        assert envelope["version"] == "1.0.0"
        assert envelope["platform"] == "a"
        assert list(envelope.scopes()) == ["a.x", "a.y"]
        assert envelope.summary["count"] == 5

    def test_singular_label(self) -> None:
        """A count of one shall use the singular noun."""
        envelope = finalize({"a.x": [1]}, "a", "1", noun="conversation")

        assert envelope.summary["label"] == "conversation"

    def test_custom_plural(self) -> None:
        """An explicit plural shall be used for counts other than one."""
        assert pluralize("entry", 0, "entries") == "entries"
        assert pluralize("book", 2) == "books"
        assert pluralize("entry", 1, "entries") == "entry"

    def test_timestamp_is_utc(self) -> None:
        """A non-UTC finalization time shall be rendered in UTC."""
        local = NOON.astimezone(timezone(timedelta(hours=-5)))

        envelope = finalize({"a.x": []}, "a", "1", now=local)

        assert envelope["timestamp"] == "2026-01-01T12:00:00+00:00"

    def test_default_timestamp_is_current(self) -> None:
        """Without an explicit time the timestamp shall be the current UTC time."""
        before = datetime.now(timezone.utc)
        envelope = finalize({"a.x": []}, "a", "1")
        after = datetime.now(timezone.utc)

        stamp = datetime.fromisoformat(envelope["timestamp"])
        assert before <= stamp <= after

    def test_count_scopes_limit_the_total(self) -> None:
        """Only count scopes shall contribute to the summary count."""
        envelope = finalize(
            {"a.profile": {"username": "u"}, "a.items": [1, 2, 3]},
            "a",
            "1",
            count_scopes=["a.items"],
        )

        assert envelope.summary["count"] == 3

    def test_unknown_count_scope(self) -> None:
        """Naming a count scope that was not collected shall raise ValueError."""
        with pytest.raises(ValueError, match="a.missing"):
            finalize({"a.x": []}, "a", "1", count_scopes=["a.missing"])

    @pytest.mark.parametrize(
        "name", ["timestamp", "exportSummary", "platform", "version", "books", ".x", "a."]
    )
    def test_invalid_scope_names(self, name: str) -> None:
        """Reserved or unnamespaced scope names shall be rejected."""
        with pytest.raises(ValueError):
            finalize({name: []}, "a", "1")

    def test_explicit_details_and_warnings(self) -> None:
        """Explicit details shall replace the default; warnings shall be listed."""
        envelope = finalize(
            {"a.x": [1, 2]},
            "a",
            "1",
            details="2 things",
            warnings=["a.y: unavailable"],
        )

        assert envelope.summary["details"] == "2 things"
        assert envelope.summary["warnings"] == ["a.y: unavailable"]

    def test_scope_leaf(self) -> None:
        """The leaf of a scope name shall be its last segment."""
        assert scope_leaf("github.repos.starred") == "starred"


class TestEnvelopeBuilder:
    """Tests for EnvelopeBuilder."""

    def test_builds_and_finalizes_once(self) -> None:
        """The builder shall finalize once and refuse any later change."""
        builder = EnvelopeBuilder("a", "1.0.0")
        builder.add("a.x", [1, 2])

        envelope = builder.finalize(now=NOON)

        assert builder.finalized
        assert envelope.summary["count"] == 2
        with pytest.raises(RuntimeError):
            builder.finalize()
        with pytest.raises(RuntimeError):
            builder.add("a.y", [])
        with pytest.raises(RuntimeError):
            builder.warn("a.y", "late")

    def test_duplicate_scope(self) -> None:
        """Adding the same scope twice shall raise ValueError."""
        builder = EnvelopeBuilder("a", "1")
        builder.add("a.x", [])

        with pytest.raises(ValueError):
            builder.add("a.x", [1])

    def test_reserved_scope(self) -> None:
        """A reserved key shall never be accepted as a scope."""
        with pytest.raises(ValueError):
            EnvelopeBuilder("a", "1").add("timestamp", [])

    def test_is_empty(self) -> None:
        """The builder shall be empty until a scope holds an item."""
        builder = EnvelopeBuilder("a", "1")
        assert builder.is_empty()

        builder.add("a.x", [])
        assert builder.is_empty()

        builder.add("a.y", [{"id": 1}])
        assert not builder.is_empty()

    def test_warnings_are_included(self) -> None:
        """Recorded warnings shall appear in the finalized summary."""
        builder = EnvelopeBuilder("a", "1")
        builder.add("a.x", [1])
        builder.warn("a.feed", "Feed unavailable")

        envelope = builder.finalize()

        assert envelope.summary["warnings"] == ["a.feed: Feed unavailable"]
        assert "a.feed" not in envelope

    def test_missing_count_scope_is_ignored(self) -> None:
        """A count scope skipped during collection shall not break finalization."""
        builder = EnvelopeBuilder("a", "1", count_scopes=["a.items", "a.extra"])
        builder.add("a.items", [1, 2])
        builder.add("a.profile", {"username": "u"})

        envelope = builder.finalize()

        assert envelope.summary["count"] == 2
