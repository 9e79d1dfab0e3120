from abc import ABC, abstractmethod
from typing import List, Optional

from orchestrator.domain.models import ContextPreviewItem


class EmbeddingProvider(ABC):
    """External text embedding capability"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed a single text"""


class TextGenerationProvider(ABC):
    """External text generation capability used for context compression"""

    @abstractmethod
    async def summarize(
        self,
        items: List[ContextPreviewItem],
        target_tokens: int,
        focus_query: Optional[str] = None
    ) -> str:
        """Summarize items into at most target_tokens tokens"""
