from .entities import (
    Block, BlockLane, BlockPriority, BlockStatus, ClaudeSession, ContextItem,
    ContextLink, ContextType, GitHubEntity, Project, ProjectGraph, ProjectionOffset,
    ProviderType, status_for_progress, utcnow,
)
from .events import DeadLetter, Event, EventType
from .preview import (
    ContextPreview, ContextPreviewItem, EmbeddingBackfillResult, PreviewOptions,
    SearchOptions, SearchResult,
)
