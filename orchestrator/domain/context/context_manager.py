from typing import Callable, Dict, List, Optional
import asyncio
import time
from datetime import datetime
import structlog

from orchestrator.domain.errors import ProjectNotFoundError
from orchestrator.domain.models import (
    Block, ContextItem, ContextLink, ContextPreview, ContextPreviewItem, GitHubEntity,
    PreviewOptions, Project, ProjectGraph, SearchOptions, utcnow,
)
from orchestrator.infrastructure.observability.logging import metrics, projection_logger
from orchestrator.infrastructure.store.base import ProjectionStore
from .context_compressor import ContextCompressor
from .context_ranker import ContextRanker
from .memory.semantic_search import SemanticSearchAdapter

logger = structlog.get_logger(__name__)

# Semantic boost search parameters
SEMANTIC_LIMIT = 50
SEMANTIC_THRESHOLD = 0.6


class ContextManager:
    """Assembles ranked, budget-fitted context previews from projected entities"""

    def __init__(
        self,
        store: ProjectionStore,
        search: Optional[SemanticSearchAdapter] = None,
        compressor: Optional[ContextCompressor] = None,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.search = search
        self.compressor = compressor or ContextCompressor()
        self.clock = clock

    async def build_preview(
        self,
        project_id: str,
        options: Optional[PreviewOptions] = None
    ) -> ContextPreview:
        """Build a context preview for a project"""

        options = options or PreviewOptions()
        started = time.perf_counter()
        ranker = ContextRanker(now=self.clock())

        logger.info("Building context preview", project_id=project_id, query=bool(options.query))

        project, blocks, context_items, github_entities, links = await asyncio.gather(
            self.store.get_project(project_id),
            self.store.list_blocks(project_id),
            self.store.list_context_items(project_id),
            self.store.list_github_entities(project_id) if options.include_github else self._none(),
            self.store.list_context_links(project_id)
        )

        if project is None:
            raise ProjectNotFoundError(project_id)

        semantic_boosts = await self._semantic_boosts(ranker, project_id, options.query)

        candidates: List[ContextPreviewItem] = []

        if options.include_blocks:
            linked = self._links_by_block(links)
            for block in blocks:
                candidates.append(self._block_item(ranker, block, options.query, semantic_boosts, linked))

        if options.include_context:
            for item in context_items:
                candidates.append(self._context_item(ranker, item, options.query, semantic_boosts))

        if options.include_github:
            for entity in github_entities or []:
                candidates.append(self._github_item(ranker, entity))

        # Stable sort keeps gather order among equal scores
        candidates.sort(key=lambda c: c.score, reverse=True)

        result = await self.compressor.fit(candidates, options.token_budget, options.query)

        preview = ContextPreview(
            project_id=project_id,
            preview=result.items,
            summary=self.generate_summary(project, blocks, context_items, result.items),
            total_items=len(candidates),
            generated_at=self.clock()
        )

        duration_ms = (time.perf_counter() - started) * 1000
        metrics.record_latency("build_preview", duration_ms)
        projection_logger.log_preview_built(
            project_id=project_id,
            total_items=preview.total_items,
            included_items=len(preview.preview),
            compressed=result.compressed,
            duration_ms=duration_ms
        )

        return preview

    async def get_project_graph(self, project_id: str) -> ProjectGraph:
        """Blocks, context items and links of a project"""

        project, blocks, context_items, links = await asyncio.gather(
            self.store.get_project(project_id),
            self.store.list_blocks(project_id),
            self.store.list_context_items(project_id),
            self.store.list_context_links(project_id)
        )
        if project is None:
            raise ProjectNotFoundError(project_id)

        return ProjectGraph(project_id=project_id, blocks=blocks, context_items=context_items, links=links)

    async def _semantic_boosts(
        self,
        ranker: ContextRanker,
        project_id: str,
        query: Optional[str]
    ) -> Dict[str, float]:
        """Similarity boosts per entity id; empty when unavailable"""

        if not query or self.search is None:
            return {}

        try:
            results = await self.search.semantic_search(
                project_id,
                query,
                SearchOptions(limit=SEMANTIC_LIMIT, threshold=SEMANTIC_THRESHOLD)
            )
        except Exception as e:
            logger.warning("Semantic search failed, using standard scoring", error=str(e))
            return {}

        return ranker.semantic_boosts({r.id: r.similarity for r in results})

    def _block_item(
        self,
        ranker: ContextRanker,
        block: Block,
        query: Optional[str],
        boosts: Dict[str, float],
        linked: Dict[str, List[str]]
    ) -> ContextPreviewItem:
        textual = ranker.calculate_textual_relevance(query, f"{block.title} {block.content or ''}") if query else 0.0
        score = ranker.combine(ranker.score_block(block), textual, boosts.get(block.id, 0.0))

        return ContextPreviewItem(
            id=block.id,
            type=f"block_{block.lane.value}",
            title=block.title,
            content=self.format_block_content(block),
            score=score,
            source="block",
            links=[f"/blocks/{block.id}"] + [f"/context/{cid}" for cid in linked.get(block.id, [])],
            created_at=block.created_at
        )

    def _context_item(
        self,
        ranker: ContextRanker,
        item: ContextItem,
        query: Optional[str],
        boosts: Dict[str, float]
    ) -> ContextPreviewItem:
        textual = ranker.calculate_textual_relevance(query, f"{item.title or ''} {item.content}") if query else 0.0
        score = ranker.combine(ranker.score_context_item(item), textual, boosts.get(item.id, 0.0))

        return ContextPreviewItem(
            id=item.id,
            type=item.type.value,
            title=item.title or "",
            content=item.content,
            score=score,
            source=item.source,
            links=[f"/context/{item.id}"],
            created_at=item.created_at
        )

    def _github_item(self, ranker: ContextRanker, entity: GitHubEntity) -> ContextPreviewItem:
        provider_type = entity.provider_type.value

        return ContextPreviewItem(
            id=entity.id,
            type=f"github_{provider_type}",
            title=entity.title or "",
            content=f"{provider_type}: {entity.title or ''}",
            score=ranker.combine(ranker.score_github_entity(entity)),
            source="github",
            links=[entity.url or ""],
            created_at=entity.created_at
        )

    @staticmethod
    def format_block_content(block: Block) -> str:
        """Render a block as a single preview line"""

        parts = [
            f"Status: {block.status.value}",
            f"Lane: {block.lane.value}",
            f"Priority: {block.priority.value}",
        ]
        if block.progress > 0:
            parts.append(f"Progress: {block.progress}%")
        if block.content:
            parts.append(f"Content: {block.content}")

        return " | ".join(parts)

    @staticmethod
    def generate_summary(
        project: Project,
        blocks: List[Block],
        context_items: List[ContextItem],
        included: List[ContextPreviewItem]
    ) -> str:
        """One-line project summary with status and type counts"""

        active = sum(1 for b in blocks if b.status.value == "in_progress")
        completed = sum(1 for b in blocks if b.status.value == "completed")

        parts = [
            f"Project: {project.name}",
            f"Description: {project.description}" if project.description else "",
            f"Blocks: {len(blocks)} total ({active} active, {completed} completed)",
            f"Context items: {len(context_items)}",
            f"High-priority items included: {len(included)}",
        ]
        return " | ".join(p for p in parts if p)

    @staticmethod
    def _links_by_block(links: List[ContextLink]) -> Dict[str, List[str]]:
        linked: Dict[str, List[str]] = {}
        for link in links:
            linked.setdefault(link.block_id, []).append(link.context_id)
        return linked

    @staticmethod
    async def _none() -> None:
        return None
