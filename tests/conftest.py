"""Pytest configuration and fixtures."""

import pytest

from orchestrator.domain.context import ContextCompressor, ContextManager, EmbeddingCache, SemanticSearchAdapter
from orchestrator.domain.projection import EventProjector
from orchestrator.infrastructure.store import InMemoryStore
from tests.fakes import EventFactory, FakeSummarizer, KeywordEmbeddingProvider


@pytest.fixture
def store():
    """Fresh in-memory event and projection store."""
    return InMemoryStore()


@pytest.fixture
def events(store):
    """Event factory bound to the store."""
    return EventFactory(store)


@pytest.fixture
def projector(store):
    """Projector with fast polling for loop tests."""
    return EventProjector(store, store, consumer_id="test", poll_interval_ms=10, batch_size=50)


@pytest.fixture
def embedding_provider():
    return KeywordEmbeddingProvider()


@pytest.fixture
def summarizer():
    return FakeSummarizer()


@pytest.fixture
def search(store, embedding_provider):
    """Semantic search over the store with no rate-limit delay."""
    return SemanticSearchAdapter(store, provider=embedding_provider, cache=EmbeddingCache(), embedding_delay_ms=0)


@pytest.fixture
def context_manager(store):
    """Context manager without semantic search or summarization."""
    return ContextManager(store, compressor=ContextCompressor())
