"""Tests for connector definition, loading and shared data types."""

import pytest

from dataport.aggregate import ScopeEnvelope
from dataport.common.exceptions import ConnectorError, InvalidPhaseTransition
from dataport.connector import BaseConnector, CollectionPhase, load_connector
from dataport.data_types import (
    CollectionContext,
    ExtractionResult,
    WorkerPhase,
    is_scope_name,
)
from dataport.demo.connector import BookshelfConnector, parse_books_body
from tests.conftest import BOOKSHELF_REF


async def nothing(context, progress):
    return []


class TestLoadConnector:
    """Tests for load_connector()."""

    def test_loads_class(self) -> None:
        """A valid reference shall resolve to the connector class."""
        assert load_connector(BOOKSHELF_REF) is BookshelfConnector

    @pytest.mark.parametrize(
        "ref,fragment",
        [
            ("no_colon_here", "Invalid connector reference"),
            ("dataport.no_such_module:Thing", "Could not import module"),
            ("dataport.demo.connector:Nope", "has no class 'Nope'"),
            ("dataport.demo.connector:PER_PAGE", "not a BaseConnector subclass"),
        ],
    )
    def test_bad_references(self, ref: str, fragment: str) -> None:
        """Unresolvable references shall raise ConnectorError with a clear message."""
        with pytest.raises(ConnectorError, match=fragment):
            load_connector(ref)


class TestBaseConnector:
    """Tests for BaseConnector defaults."""

    class Minimal(BaseConnector):
        platform = "minimal"
        connect_url = "https://minimal.example"

    @pytest.mark.asyncio
    async def test_required_hooks(self, context) -> None:
        """Login and identity hooks shall be required of subclasses."""
        connector = self.Minimal()

        with pytest.raises(NotImplementedError):
            await connector.is_logged_in(context)
        with pytest.raises(NotImplementedError):
            await connector.resolve_identity(context)
        with pytest.raises(NotImplementedError):
            connector.phases()

    @pytest.mark.asyncio
    async def test_prepare_returns_context_unchanged(self, context) -> None:
        assert await self.Minimal().prepare(context) is context

    def test_fallbacks(self) -> None:
        """Display name and login URL shall fall back sensibly."""
        connector = self.Minimal()

        assert connector.display_name == "minimal"
        assert connector.interactive_login_url == "https://minimal.example"
        assert self.Minimal.metadata()["rate_limits"] == []

    def test_metadata(self) -> None:
        meta = BookshelfConnector.metadata()

        assert meta["platform"] == "bookshelf"
        assert meta["login_url"] == "https://bookshelf.example/login"
        assert meta["rate_limits"][0].startswith("2/")

    def test_completion_message(self) -> None:
        """The completion message shall name the count, label and identity."""
        envelope = ScopeEnvelope(exportSummary={"count": 1, "label": "book"})
        connector = BookshelfConnector()

        assert (
            connector.completion_message(envelope, "reader42")
            == "Complete! Exported 1 book for reader42"
        )
        assert (
            connector.completion_message(envelope, None)
            == "Complete! Exported 1 book"
        )


class TestCollectionPhase:
    """Tests for phase definitions."""

    @pytest.mark.parametrize("scope", ["books", "timestamp", ".books", "bookshelf."])
    def test_scope_must_be_namespaced(self, scope: str) -> None:
        """A phase scope shall be a namespaced, non-reserved key."""
        with pytest.raises(ValueError):
            CollectionPhase(scope, "Books", nothing)

    def test_bookshelf_phases(self) -> None:
        phases = BookshelfConnector().phases()

        assert [p.scope for p in phases] == [
            "bookshelf.profile",
            "bookshelf.books",
            "bookshelf.feed",
        ]
        assert [p.optional for p in phases] == [False, False, True]


class TestDataTypes:
    """Tests for shared data types."""

    def test_context_updates_return_copies(self, context: CollectionContext) -> None:
        """Context updates shall return new values and leave the original untouched."""
        updated = context.with_values(token="abc").with_identity("reader42")

        assert updated.get("token") == "abc"
        assert updated.identity == "reader42"
        assert context.get("token") is None
        assert context.identity is None
        assert context.get("missing", 5) == 5

    def test_extraction_result_flags(self) -> None:
        """Exhaustion shall mean no items and at least one failure."""
        assert not ExtractionResult().exhausted
        assert ExtractionResult(error="api: boom").exhausted
        assert not ExtractionResult(items=[{"id": 1}], strategy="api").exhausted

    def test_scope_names(self) -> None:
        assert is_scope_name("github.repositories")
        assert not is_scope_name("platform")
        assert not is_scope_name("repositories")

    def test_invalid_transition_message(self) -> None:
        error = InvalidPhaseTransition(WorkerPhase.IDLE, WorkerPhase.COMPLETE)

        assert "IDLE -> COMPLETE" in str(error)

    def test_parse_books_body(self) -> None:
        """Captured books bodies shall be validated before use."""
        assert parse_books_body({"books": [{"id": "b001"}]}) == [{"id": "b001"}]
        with pytest.raises(ValueError):
            parse_books_body({"items": []})
