from typing import Dict, Any, List, Optional
import asyncio
import structlog

from orchestrator.domain.errors import EmbeddingUnavailableError
from orchestrator.domain.models import EmbeddingBackfillResult, SearchOptions, SearchResult
from orchestrator.infrastructure.providers.base import EmbeddingProvider
from orchestrator.infrastructure.store.base import ProjectionStore
from .embedding_cache import EmbeddingCache

logger = structlog.get_logger(__name__)

# Fixed low-confidence similarity reported for keyword matches
KEYWORD_SIMILARITY = 0.5

MAX_EMBEDDING_CHARS = 8192


class SemanticSearchAdapter:
    """Embedding cache and semantic search with keyword fallback"""

    def __init__(
        self,
        store: ProjectionStore,
        provider: Optional[EmbeddingProvider] = None,
        cache: Optional[EmbeddingCache] = None,
        embedding_delay_ms: int = 350
    ):
        self.store = store
        self.provider = provider
        self.cache = cache or EmbeddingCache()
        self.embedding_delay_ms = embedding_delay_ms

    @property
    def configured(self) -> bool:
        return self.provider is not None

    async def embed(self, text: str) -> List[float]:
        """Embed text through the cache"""

        if self.provider is None:
            raise EmbeddingUnavailableError("Embedding provider not configured")

        text = text[:MAX_EMBEDDING_CHARS]
        cached = await self.cache.get(text)
        if cached is not None:
            return cached

        try:
            vector = await self.provider.embed(text)
        except Exception as e:
            logger.error("Failed to generate embedding", error=str(e))
            raise EmbeddingUnavailableError(f"Embedding provider failed: {e}") from e

        await self.cache.set(text, vector)
        return vector

    async def semantic_search(
        self,
        project_id: str,
        query: str,
        options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """Rank a project's blocks and context items against a query"""

        options = options or SearchOptions()

        if not self.configured:
            logger.warning("Embedding provider not configured, falling back to keyword search")
            return await self.keyword_search(project_id, query, options)

        try:
            query_vector = await self.embed(query)
            results = await self.store.vector_search(
                project_id,
                query_vector,
                limit=options.limit,
                threshold=options.threshold,
                include_blocks=options.include_blocks,
                include_context=options.include_context
            )
        except Exception as e:
            logger.warning("Semantic search failed, falling back to keyword search", error=str(e))
            return await self.keyword_search(project_id, query, options)

        return results

    async def keyword_search(
        self,
        project_id: str,
        query: str,
        options: Optional[SearchOptions] = None
    ) -> List[SearchResult]:
        """Term containment over title and content"""

        options = options or SearchOptions()
        terms = [term for term in query.lower().split() if len(term) > 2]
        if not terms:
            return []

        results = await self.store.keyword_search(
            project_id,
            terms,
            limit=options.limit,
            include_blocks=options.include_blocks,
            include_context=options.include_context
        )
        return [r.model_copy(update={"similarity": KEYWORD_SIMILARITY}) for r in results]

    async def process_pending_embeddings(
        self,
        project_id: Optional[str] = None,
        limit: int = 100
    ) -> EmbeddingBackfillResult:
        """Generate and persist embeddings for entities that lack one"""

        result = EmbeddingBackfillResult()

        if not self.configured:
            logger.info("Embedding provider not configured, skipping embedding generation")
            result.skipped = 1
            return result

        try:
            pending = await self.store.find_missing_embeddings(project_id=project_id, limit=limit)
        except Exception as e:
            logger.error("Failed to load pending embeddings", error=str(e))
            result.errors += 1
            return result

        logger.info("Processing pending embeddings", count=len(pending), project_id=project_id)

        for item in pending:
            if not item.text_content.strip():
                result.skipped += 1
                continue

            try:
                vector = await self.embed(item.text_content)
                await self.store.set_embedding(item.item_type, item.id, vector)
                result.processed += 1
            except Exception as e:
                result.errors += 1
                logger.error(
                    "Failed to process embedding",
                    item_type=item.item_type,
                    item_id=item.id,
                    error=str(e)
                )

            # Rate limit provider calls
            if self.embedding_delay_ms > 0:
                await asyncio.sleep(self.embedding_delay_ms / 1000)

        logger.info(
            "Embedding processing complete",
            processed=result.processed,
            errors=result.errors,
            skipped=result.skipped
        )
        return result

    async def health_check(self) -> Dict[str, Any]:
        """Report provider, vector search and backlog status"""

        try:
            store_ok = await self.store.health_check()
        except Exception as e:
            logger.warning("Store health check failed", error=str(e))
            store_ok = False

        pending_count = 0
        if store_ok:
            try:
                pending_count = len(await self.store.find_missing_embeddings(limit=10_000))
            except Exception as e:
                logger.warning("Could not count pending embeddings", error=str(e))

        return {
            "provider_configured": self.configured,
            "vector_search_available": store_ok,
            "pending_embeddings": pending_count,
            "cache": await self.cache.get_stats()
        }
