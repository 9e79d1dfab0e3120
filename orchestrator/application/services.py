from typing import Optional
import structlog

from orchestrator.domain.context import (
    ContextCompressor, ContextManager, EmbeddingCache, SemanticSearchAdapter
)
from orchestrator.domain.event_service import EventService
from orchestrator.domain.projection import EventProjector, FailurePolicy
from orchestrator.infrastructure.config import Settings
from orchestrator.infrastructure.providers import (
    EmbeddingProvider, TextGenerationProvider, build_providers
)
from orchestrator.infrastructure.store import EventStore, InMemoryStore, ProjectionStore

logger = structlog.get_logger(__name__)


class Services:
    """Wires stores, providers and engines for one process"""

    def __init__(
        self,
        settings: Settings,
        event_store: EventStore,
        projection_store: ProjectionStore,
        embedding_provider: Optional[EmbeddingProvider] = None,
        summarizer: Optional[TextGenerationProvider] = None
    ):
        self.settings = settings
        self.event_store = event_store
        self.projection_store = projection_store

        self.events = EventService(event_store)
        self.search = SemanticSearchAdapter(
            projection_store,
            provider=embedding_provider,
            cache=EmbeddingCache(max_entries=settings.EMBEDDING_CACHE_SIZE),
            embedding_delay_ms=settings.EMBEDDING_DELAY_MS
        )
        self.context = ContextManager(
            projection_store,
            search=self.search,
            compressor=ContextCompressor(summarizer)
        )
        self.projector = EventProjector(
            event_store,
            projection_store,
            consumer_id=settings.CONSUMER_ID,
            poll_interval_ms=settings.POLL_INTERVAL_MS,
            batch_size=settings.BATCH_SIZE,
            failure_policy=FailurePolicy(settings.FAILURE_POLICY),
            max_retries=settings.MAX_RETRIES,
            retry_backoff_ms=settings.RETRY_BACKOFF_MS
        )


def build_services(settings: Settings, store: Optional[InMemoryStore] = None) -> Services:
    """Build services over a shared store, with OpenAI providers when configured"""

    store = store or InMemoryStore()
    embedding_provider, summarizer = build_providers(settings)

    logger.info(
        "Services configured",
        consumer_id=settings.CONSUMER_ID,
        failure_policy=settings.FAILURE_POLICY,
        embeddings=embedding_provider is not None,
        summarizer=summarizer is not None
    )
    return Services(settings, store, store, embedding_provider, summarizer)
