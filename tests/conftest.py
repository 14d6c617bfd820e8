"""Shared fixtures for the dataport test suite."""

import pytest

from dataport.data_types import CollectionContext, RunRequest
from dataport.demo.connector import BookshelfConnector
from dataport.demo.simulated import SimulatedBookshelf, SimulatedCapabilities
from dataport.worker.capabilities import Emitter

BOOKSHELF_REF = "dataport.demo.connector:BookshelfConnector"


@pytest.fixture
def site() -> SimulatedBookshelf:
    """A logged-in Bookshelf session with the sample data."""
    return SimulatedBookshelf()


@pytest.fixture
def emitter() -> Emitter:
    """An emitter that records messages without writing them anywhere."""
    return Emitter()


@pytest.fixture
def capabilities(
    site: SimulatedBookshelf, emitter: Emitter
) -> SimulatedCapabilities:
    return SimulatedCapabilities(site, emitter)


@pytest.fixture
def run_request() -> RunRequest:
    return RunRequest(run_id="test-1", connector_ref=BOOKSHELF_REF)


@pytest.fixture
def context(
    run_request: RunRequest, capabilities: SimulatedCapabilities
) -> CollectionContext:
    return CollectionContext(request=run_request, capabilities=capabilities)


@pytest.fixture
def connector() -> BookshelfConnector:
    return BookshelfConnector()
