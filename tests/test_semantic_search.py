"""Tests for the embedding cache and semantic search adapter."""

import pytest
import pytest_asyncio

from orchestrator.domain.context import ContextManager, EmbeddingCache, SemanticSearchAdapter
from orchestrator.domain.errors import EmbeddingUnavailableError
from orchestrator.domain.models import PreviewOptions, SearchOptions
from tests.fakes import PROJECT_ID, FailingEmbeddingProvider


@pytest_asyncio.fixture
async def knowledge(store, events, projector):
    """Projected items with searchable text."""

    await events.project(name="Orchestrator")
    await events.block("b1", "Login page", content="auth form and login button")
    await events.context("c1", "Fix the auth login bug", type="blocker")
    await events.context("c2", "Database schema for payment records", type="decision")
    await events.context("c3", "", type="note")
    await projector.process_batch()
    return store


class TestEmbeddingCache:

    @pytest.mark.asyncio
    async def test_fifo_eviction(self):
        cache = EmbeddingCache(max_entries=2)
        await cache.set("a", [1.0])
        await cache.set("b", [2.0])
        await cache.set("c", [3.0])

        assert await cache.get("a") is None
        assert await cache.get("b") == [2.0]
        assert await cache.get("c") == [3.0]
        stats = await cache.get_stats()
        assert stats["size"] == 2
        assert stats["evictions"] == 1

    @pytest.mark.asyncio
    async def test_reset_and_reads_do_not_refresh_position(self):
        cache = EmbeddingCache(max_entries=2)
        await cache.set("a", [1.0])
        await cache.set("b", [2.0])
        await cache.set("a", [1.5])
        await cache.get("a")
        await cache.set("c", [3.0])

        assert not await cache.contains("a")
        assert await cache.contains("b")

    @pytest.mark.asyncio
    async def test_hit_and_miss_counters(self):
        cache = EmbeddingCache()
        await cache.set("a", [1.0])
        await cache.get("a")
        await cache.get("missing")

        stats = await cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1

    @pytest.mark.asyncio
    async def test_clear(self):
        cache = EmbeddingCache()
        await cache.set("a", [1.0])

        assert await cache.clear() == 1
        assert (await cache.get_stats())["size"] == 0

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError):
            EmbeddingCache(max_entries=0)


class TestEmbed:

    @pytest.mark.asyncio
    async def test_repeated_text_hits_cache(self, search, embedding_provider):
        first = await search.embed("auth flow")
        second = await search.embed("auth flow")

        assert first == second
        assert embedding_provider.calls == ["auth flow"]

    @pytest.mark.asyncio
    async def test_without_provider_raises(self, store):
        adapter = SemanticSearchAdapter(store)

        with pytest.raises(EmbeddingUnavailableError):
            await adapter.embed("auth")

    @pytest.mark.asyncio
    async def test_provider_failure_is_wrapped_and_not_cached(self, store):
        provider = FailingEmbeddingProvider()
        adapter = SemanticSearchAdapter(store, provider=provider, embedding_delay_ms=0)

        with pytest.raises(EmbeddingUnavailableError):
            await adapter.embed("auth")
        with pytest.raises(EmbeddingUnavailableError):
            await adapter.embed("auth")

        assert provider.calls == 2
        assert (await adapter.cache.get_stats())["size"] == 0


class TestSearch:

    @pytest.mark.asyncio
    async def test_vector_search_after_backfill(self, knowledge, search):
        await search.process_pending_embeddings()

        results = await search.semantic_search(PROJECT_ID, "auth login", SearchOptions(threshold=0.5))

        assert results
        assert results[0].id in {"c1", "b1"}
        assert "c2" not in {r.id for r in results}
        assert all(r.similarity >= 0.5 for r in results)

    @pytest.mark.asyncio
    async def test_include_flags_filter_results(self, knowledge, search):
        await search.process_pending_embeddings()

        results = await search.semantic_search(
            PROJECT_ID, "auth login", SearchOptions(threshold=0.5, include_blocks=False)
        )

        assert {r.item_type for r in results} == {"context_item"}

    @pytest.mark.asyncio
    async def test_excluded_kind_does_not_use_up_the_limit(self, store, events, projector):
        await events.project()
        await events.context("c1", "auth token expiry")
        await events.context("c2", "auth session cookie")
        for block_id in ("b1", "b2", "b3"):
            await events.block(block_id, f"auth screen {block_id}")
        await projector.process_batch()
        adapter = SemanticSearchAdapter(store)

        contexts = await adapter.keyword_search(PROJECT_ID, "auth", SearchOptions(limit=2, include_blocks=False))
        blocks = await adapter.keyword_search(PROJECT_ID, "auth", SearchOptions(limit=2, include_context=False))

        assert [r.id for r in contexts] == ["c2", "c1"]
        assert [r.id for r in blocks] == ["b3", "b2"]

    @pytest.mark.asyncio
    async def test_failing_provider_falls_back_to_keywords(self, knowledge):
        adapter = SemanticSearchAdapter(knowledge, provider=FailingEmbeddingProvider(), embedding_delay_ms=0)

        results = await adapter.semantic_search(PROJECT_ID, "auth bug")

        assert {r.id for r in results} == {"c1", "b1"}
        assert all(r.similarity == 0.5 for r in results)

    @pytest.mark.asyncio
    async def test_failing_provider_does_not_break_preview(self, knowledge):
        adapter = SemanticSearchAdapter(knowledge, provider=FailingEmbeddingProvider(), embedding_delay_ms=0)
        manager = ContextManager(knowledge, search=adapter)

        preview = await manager.build_preview(PROJECT_ID, PreviewOptions(query="auth bug"))

        assert preview.total_items == 4
        assert preview.preview

    @pytest.mark.asyncio
    async def test_unconfigured_adapter_uses_keywords(self, knowledge):
        adapter = SemanticSearchAdapter(knowledge)

        results = await adapter.semantic_search(PROJECT_ID, "payment")

        assert [r.id for r in results] == ["c2"]
        assert results[0].similarity == 0.5

    @pytest.mark.asyncio
    async def test_keyword_search_ignores_short_terms(self, knowledge):
        adapter = SemanticSearchAdapter(knowledge)

        assert await adapter.keyword_search(PROJECT_ID, "a to") == []


class TestBackfill:

    @pytest.mark.asyncio
    async def test_counts_processed_and_skipped(self, knowledge, search):
        result = await search.process_pending_embeddings()

        assert result.processed == 3
        assert result.skipped == 1
        assert result.errors == 0
        assert knowledge.context_items["c1"].embedding is not None
        assert knowledge.blocks["b1"].embedding is not None

    @pytest.mark.asyncio
    async def test_second_pass_only_sees_unembeddable_items(self, knowledge, search, embedding_provider):
        await search.process_pending_embeddings()
        calls = len(embedding_provider.calls)

        result = await search.process_pending_embeddings()

        assert result.processed == 0
        assert result.skipped == 1
        assert len(embedding_provider.calls) == calls

    @pytest.mark.asyncio
    async def test_provider_errors_are_counted(self, knowledge):
        adapter = SemanticSearchAdapter(knowledge, provider=FailingEmbeddingProvider(), embedding_delay_ms=0)

        result = await adapter.process_pending_embeddings(project_id=PROJECT_ID)

        assert result.errors == 3
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_unconfigured_backfill_is_skipped(self, knowledge):
        result = await SemanticSearchAdapter(knowledge).process_pending_embeddings()

        assert result.skipped == 1
        assert result.processed == 0

    @pytest.mark.asyncio
    async def test_limit_bounds_the_pass(self, knowledge, search):
        result = await search.process_pending_embeddings(limit=2)

        assert result.processed + result.skipped == 2

    @pytest.mark.asyncio
    async def test_health_check(self, knowledge, search):
        health = await search.health_check()

        assert health["provider_configured"] is True
        assert health["vector_search_available"] is True
        assert health["pending_embeddings"] == 4
        assert health["cache"]["max_entries"] == 200
