"""OpenAI-backed embedding and summarization providers."""

from typing import List, Optional, Tuple

import structlog
from openai import AsyncOpenAI

from orchestrator.domain.errors import SummarizationError
from orchestrator.domain.models import ContextPreviewItem
from orchestrator.infrastructure.config import Settings
from .base import EmbeddingProvider, TextGenerationProvider

logger = structlog.get_logger(__name__)

# Embedding model input limit, in characters
MAX_EMBEDDING_CHARS = 8192


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """Embeddings via the OpenAI embeddings endpoint"""

    def __init__(self, client: AsyncOpenAI, model: str = "text-embedding-3-small"):
        self.client = client
        self.model = model

    async def embed(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(
            model=self.model,
            input=text[:MAX_EMBEDDING_CHARS],
            encoding_format="float"
        )
        return list(response.data[0].embedding)


class OpenAISummarizer(TextGenerationProvider):
    """Context compression via chat completions"""

    def __init__(self, client: AsyncOpenAI, model: str = "gpt-3.5-turbo"):
        self.client = client
        self.model = model

    def build_prompt(
        self,
        items: List[ContextPreviewItem],
        target_tokens: int,
        focus_query: Optional[str] = None
    ) -> str:
        """Render the compression prompt"""

        item_texts = "\n\n".join(
            f"{item.type}: {item.title or ''} - {item.content}" for item in items
        )
        focus = f"Focus on information relevant to: {focus_query}\n" if focus_query else ""

        return (
            "Summarize the following project context items concisely while preserving key information.\n"
            f"{focus}\n"
            f"Target: {target_tokens} tokens maximum\n\n"
            f"Context items:\n{item_texts}\n\n"
            "Provide a bulleted summary that captures the essential information:\n"
        )

    async def summarize(
        self,
        items: List[ContextPreviewItem],
        target_tokens: int,
        focus_query: Optional[str] = None
    ) -> str:
        prompt = self.build_prompt(items, target_tokens, focus_query)

        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max(1, min(target_tokens, 1000)),
                temperature=0.3
            )
        except Exception as e:
            raise SummarizationError(f"Summarization request failed: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise SummarizationError("Summarization returned no content")
        return content


def build_providers(
    settings: Settings
) -> Tuple[Optional[EmbeddingProvider], Optional[TextGenerationProvider]]:
    """Create the OpenAI providers if an API key is configured"""

    if not settings.OPENAI_API_KEY:
        logger.warning("OpenAI not configured, semantic search and AI compression disabled")
        return None, None

    client = AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
    return (
        OpenAIEmbeddingProvider(client, model=settings.EMBEDDING_MODEL),
        OpenAISummarizer(client, model=settings.SUMMARY_MODEL),
    )
