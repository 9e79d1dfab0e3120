from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone
from enum import Enum


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC so they compare with aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class BlockLane(str, Enum):
    """Work-in-progress lanes a block lives in"""
    VISION = "vision"
    GOALS = "goals"
    CURRENT = "current"
    NEXT = "next"
    CONTEXT = "context"


class BlockStatus(str, Enum):
    """Block execution status"""
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"
    CANCELLED = "cancelled"


class BlockPriority(str, Enum):
    """Block priority levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ContextType(str, Enum):
    """Kinds of captured context"""
    DECISION = "decision"
    INSIGHT = "insight"
    BLOCKER = "blocker"
    SOLUTION = "solution"
    REFERENCE = "reference"
    NOTE = "note"


class ProviderType(str, Enum):
    """GitHub entity kinds"""
    PR = "pr"
    ISSUE = "issue"
    COMMIT = "commit"
    RELEASE = "release"
    PR_COMMENT = "pr_comment"


def status_for_progress(progress: int) -> BlockStatus:
    """Derive block status from progress"""
    if progress <= 0:
        return BlockStatus.NOT_STARTED
    if progress >= 100:
        return BlockStatus.COMPLETED
    return BlockStatus.IN_PROGRESS


class Project(BaseModel):
    """Projected project"""
    id: str
    name: str = ""
    description: Optional[str] = None
    owner_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class Block(BaseModel):
    """Projected unit of work on the project board"""
    id: str
    project_id: str
    title: str = ""
    content: Optional[str] = None
    lane: BlockLane = Field(default=BlockLane.CURRENT)
    status: BlockStatus = Field(default=BlockStatus.NOT_STARTED)
    priority: BlockPriority = Field(default=BlockPriority.MEDIUM)
    progress: int = Field(default=0, ge=0, le=100)
    effort: Optional[int] = None
    last_worked_at: Optional[datetime] = None
    embedding: Optional[List[float]] = Field(None, description="Vector for semantic search")
    created_at: datetime
    updated_at: datetime

    def embedding_text(self) -> str:
        """Text used to embed this block"""
        return f"{self.title} {self.content}".strip() if self.content else self.title


class ContextItem(BaseModel):
    """Projected piece of captured knowledge"""
    id: str
    project_id: str
    type: ContextType
    title: Optional[str] = None
    content: str = ""
    source: str = "mcp"
    author_id: Optional[str] = None
    embedding: Optional[List[float]] = Field(None, description="Vector for semantic search")
    created_at: datetime

    def embedding_text(self) -> str:
        """Text used to embed this item"""
        return f"{self.title or ''} {self.content}".strip()


class ContextLink(BaseModel):
    """Many-to-many link between a context item and a block"""
    context_id: str
    block_id: str
    created_at: datetime


class GitHubEntity(BaseModel):
    """Projected GitHub artefact"""
    id: str
    project_id: str
    provider_type: ProviderType
    provider_id: str
    url: Optional[str] = None
    title: Optional[str] = None
    status: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ClaudeSession(BaseModel):
    """Projected assistant working session"""
    id: str
    project_id: str
    block_id: Optional[str] = None
    user_id: Optional[str] = None
    session_type: str = "coding"
    context_data: Dict[str, Any] = Field(default_factory=dict)
    messages_count: int = 0
    tokens_used: int = 0
    outcomes: List[Any] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    ended_at: Optional[datetime] = None


class ProjectionOffset(BaseModel):
    """Cursor marking how far a consumer has replayed the log"""
    consumer_id: str
    last_event_id: Optional[str] = None
    last_seen_at: Optional[datetime] = None


class ProjectGraph(BaseModel):
    """Blocks, context items and links of one project"""
    project_id: str
    blocks: List[Block] = Field(default_factory=list)
    context_items: List[ContextItem] = Field(default_factory=list)
    links: List[ContextLink] = Field(default_factory=list)
