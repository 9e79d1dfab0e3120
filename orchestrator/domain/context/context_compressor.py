from typing import List, Optional
from pydantic import BaseModel, Field
import math
import structlog

from orchestrator.domain.models import ContextPreviewItem, utcnow
from orchestrator.infrastructure.providers.base import TextGenerationProvider

logger = structlog.get_logger(__name__)

# Share of the budget available to ranked items; the rest is kept for summaries
FIT_RATIO = 0.8
COMPRESSION_SCORE_THRESHOLD = 0.7
FALLBACK_ITEM_COUNT = 3
FALLBACK_CONTENT_CHARS = 100
SUMMARY_SCORE = 0.9


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters"""
    return math.ceil(len(text) / 4)


class CompressionResult(BaseModel):
    """Items kept for a preview after fitting the budget"""
    items: List[ContextPreviewItem] = Field(default_factory=list)
    fitted_tokens: int = 0
    queued: int = 0
    compressed: bool = False
    dropped: int = 0


class ContextCompressor:
    """Greedily fits ranked items into a token budget and compresses overflow"""

    def __init__(self, summarizer: Optional[TextGenerationProvider] = None):
        self.summarizer = summarizer

    async def fit(
        self,
        items: List[ContextPreviewItem],
        token_budget: int,
        query: Optional[str] = None
    ) -> CompressionResult:
        """Fit items, already sorted by descending score, into the budget"""

        limit = token_budget * FIT_RATIO
        current_tokens = 0
        selected: List[ContextPreviewItem] = []
        queued: List[ContextPreviewItem] = []

        # First pass: include high-scoring items that fit
        for item in items:
            item_tokens = estimate_tokens(item.content)

            if current_tokens + item_tokens <= limit:
                selected.append(item)
                current_tokens += item_tokens
            elif item.score > COMPRESSION_SCORE_THRESHOLD:
                queued.append(item)

        result = CompressionResult(fitted_tokens=current_tokens, queued=len(queued))

        if queued and self.summarizer is not None:
            remaining = token_budget - current_tokens
            selected.extend(await self.compress(queued, remaining, query))
            result.compressed = True
        elif queued:
            logger.debug("No summarizer configured, dropping overflow items", dropped=len(queued))
            result.dropped = len(queued)

        result.items = selected
        return result

    async def compress(
        self,
        items: List[ContextPreviewItem],
        remaining_tokens: int,
        query: Optional[str] = None
    ) -> List[ContextPreviewItem]:
        """Summarize queued items, or truncate the top few if summarization fails"""

        target_tokens = max(1, math.floor(remaining_tokens * FIT_RATIO))

        try:
            summary = await self.summarizer.summarize(items, target_tokens, focus_query=query)
        except Exception as e:
            logger.error("AI compression failed, truncating instead", error=str(e))
            return self.truncate(items)

        links: List[str] = []
        for item in items:
            links.extend(item.links)

        return [ContextPreviewItem(
            id="compressed-items",
            type="summary",
            title=f"Summary of {len(items)} items",
            content=summary,
            score=SUMMARY_SCORE,
            source="ai_compressed",
            links=links,
            created_at=utcnow()
        )]

    @staticmethod
    def truncate(items: List[ContextPreviewItem]) -> List[ContextPreviewItem]:
        """Top items by score with content cut down"""

        return [
            item.model_copy(update={"content": item.content[:FALLBACK_CONTENT_CHARS] + "..."})
            for item in items[:FALLBACK_ITEM_COUNT]
        ]
