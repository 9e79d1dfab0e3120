from typing import List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from .entities import utcnow


class PreviewOptions(BaseModel):
    """Options for building a context preview"""
    token_budget: int = Field(default=4000, gt=0, description="Approximate token budget for the preview")
    include_blocks: bool = True
    include_context: bool = True
    include_github: bool = True
    query: Optional[str] = Field(None, description="Optional focus query used to boost relevance")


class ContextPreviewItem(BaseModel):
    """A ranked candidate in a context preview"""
    id: str
    type: str
    title: Optional[str] = None
    content: str
    score: float = Field(ge=0.0, le=1.0)
    source: str
    links: List[str] = Field(default_factory=list)
    created_at: datetime


class ContextPreview(BaseModel):
    """Ranked, budget-fitted bundle for a language-model consumer"""
    project_id: str
    preview: List[ContextPreviewItem] = Field(default_factory=list)
    summary: str
    total_items: int
    generated_at: datetime = Field(default_factory=utcnow)


class SearchOptions(BaseModel):
    """Options for semantic search"""
    limit: int = Field(default=10, gt=0)
    threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    include_blocks: bool = True
    include_context: bool = True


class SearchResult(BaseModel):
    """A semantic or keyword search hit"""
    item_type: str = Field(description="'block' or 'context_item'")
    id: str
    title: Optional[str] = None
    content: Optional[str] = None
    similarity: float
    created_at: datetime


class EmbeddingBackfillResult(BaseModel):
    """Outcome of an embedding backfill pass"""
    processed: int = 0
    errors: int = 0
    skipped: int = 0
