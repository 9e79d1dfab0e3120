from typing import Dict, Any, List, Optional, Tuple, Type
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from datetime import datetime
from enum import Enum

from orchestrator.domain.errors import InvalidEventError, UnknownEventTypeError
from .entities import (
    BlockLane, BlockStatus, BlockPriority, ContextType, ProviderType, ensure_utc, utcnow
)


class EventType(str, Enum):
    """Closed set of domain event types"""
    BLOCK_CREATED = "block.created"
    BLOCK_UPDATED = "block.updated"
    BLOCK_MOVED = "block.moved"
    BLOCK_DELETED = "block.deleted"
    BLOCK_PROGRESS_UPDATED = "block.progress_updated"
    CONTEXT_CAPTURED = "context.captured"
    CONTEXT_LINKED = "context.linked"
    SESSION_STARTED = "session.started"
    SESSION_ENDED = "session.ended"
    GITHUB_PR_OPENED = "github.pr.opened"
    GITHUB_PR_CLOSED = "github.pr.closed"
    GITHUB_PR_MERGED = "github.pr.merged"
    GITHUB_PR_COMMENTED = "github.pr.commented"
    GITHUB_ISSUE_OPENED = "github.issue.opened"
    GITHUB_ISSUE_CLOSED = "github.issue.closed"
    GITHUB_ISSUE_REOPENED = "github.issue.reopened"
    GITHUB_RELEASE_PUBLISHED = "github.release.published"
    GITHUB_COMMIT_PUSHED = "github.commit.pushed"
    PROJECT_CREATED = "project.created"
    PROJECT_UPDATED = "project.updated"

    @property
    def is_github(self) -> bool:
        return self.value.startswith("github.")


class Event(BaseModel):
    """Immutable fact describing something that happened in a project"""
    model_config = ConfigDict(frozen=True)

    id: str
    project_id: str
    type: str = Field(description="Event type; stored as text so unknown types survive to dispatch")
    actor_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        """Total log order"""
        return (ensure_utc(self.created_at), self.id)


class EventPayload(BaseModel):
    """Base for per-type payloads; unknown fields are ignored"""
    model_config = ConfigDict(extra="ignore")


class BlockCreatedPayload(EventPayload):
    id: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    lane: Optional[BlockLane] = None
    status: Optional[BlockStatus] = None
    priority: Optional[BlockPriority] = None
    effort: Optional[int] = None


class BlockMovedPayload(EventPayload):
    id: Optional[str] = None
    lane: Optional[BlockLane] = None


class BlockProgressUpdatedPayload(EventPayload):
    id: Optional[str] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    status: Optional[BlockStatus] = Field(None, description="Explicit override of the derived status")


class BlockUpdatedPayload(EventPayload):
    id: Optional[str] = None
    title: Optional[str] = None
    content: Optional[str] = None
    lane: Optional[BlockLane] = None
    priority: Optional[BlockPriority] = None
    status: Optional[BlockStatus] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    effort: Optional[int] = None


class BlockDeletedPayload(EventPayload):
    id: Optional[str] = None


class ContextCapturedPayload(EventPayload):
    id: Optional[str] = None
    type: ContextType = ContextType.NOTE
    title: Optional[str] = None
    content: Optional[str] = None
    source: str = "mcp"
    block_id: Optional[str] = Field(None, description="Block to link the item to on capture")


class ContextLinkedPayload(EventPayload):
    context_id: Optional[str] = None
    block_id: Optional[str] = None


class SessionStartedPayload(EventPayload):
    session_id: Optional[str] = None
    session_type: str = "coding"
    block_id: Optional[str] = None
    context_data: Dict[str, Any] = Field(default_factory=dict)


class SessionEndedPayload(EventPayload):
    session_id: Optional[str] = None
    messages_count: Optional[int] = None
    tokens_used: Optional[int] = None
    outcomes: Optional[List[Any]] = None


class GitHubPayload(EventPayload):
    provider_type: Optional[ProviderType] = None
    provider_id: Optional[str] = None
    url: Optional[str] = None
    title: Optional[str] = None
    status: Optional[str] = None
    author: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProjectCreatedPayload(EventPayload):
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    owner_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ProjectUpdatedPayload(EventPayload):
    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


PAYLOAD_MODELS: Dict[EventType, Type[EventPayload]] = {
    EventType.BLOCK_CREATED: BlockCreatedPayload,
    EventType.BLOCK_UPDATED: BlockUpdatedPayload,
    EventType.BLOCK_MOVED: BlockMovedPayload,
    EventType.BLOCK_DELETED: BlockDeletedPayload,
    EventType.BLOCK_PROGRESS_UPDATED: BlockProgressUpdatedPayload,
    EventType.CONTEXT_CAPTURED: ContextCapturedPayload,
    EventType.CONTEXT_LINKED: ContextLinkedPayload,
    EventType.SESSION_STARTED: SessionStartedPayload,
    EventType.SESSION_ENDED: SessionEndedPayload,
    EventType.PROJECT_CREATED: ProjectCreatedPayload,
    EventType.PROJECT_UPDATED: ProjectUpdatedPayload,
}
PAYLOAD_MODELS.update({event_type: GitHubPayload for event_type in EventType if event_type.is_github})

# (provider_type, status) implied by each GitHub event type
GITHUB_DEFAULTS: Dict[EventType, Tuple[ProviderType, str]] = {
    EventType.GITHUB_PR_OPENED: (ProviderType.PR, "open"),
    EventType.GITHUB_PR_CLOSED: (ProviderType.PR, "closed"),
    EventType.GITHUB_PR_MERGED: (ProviderType.PR, "merged"),
    EventType.GITHUB_PR_COMMENTED: (ProviderType.PR_COMMENT, "active"),
    EventType.GITHUB_ISSUE_OPENED: (ProviderType.ISSUE, "open"),
    EventType.GITHUB_ISSUE_CLOSED: (ProviderType.ISSUE, "closed"),
    EventType.GITHUB_ISSUE_REOPENED: (ProviderType.ISSUE, "open"),
    EventType.GITHUB_RELEASE_PUBLISHED: (ProviderType.RELEASE, "published"),
    EventType.GITHUB_COMMIT_PUSHED: (ProviderType.COMMIT, "pushed"),
}


def resolve_event_type(value: str) -> EventType:
    """Map a stored type string onto the closed set"""
    try:
        return EventType(value)
    except ValueError:
        raise UnknownEventTypeError(value) from None


def parse_payload(event_type: EventType, payload: Dict[str, Any]) -> EventPayload:
    """Validate a raw payload against its type's model"""
    model = PAYLOAD_MODELS[event_type]
    try:
        return model.model_validate(payload or {})
    except ValidationError as e:
        raise InvalidEventError(
            f"Malformed payload for {event_type.value}: {e.errors()[0].get('msg', 'invalid')}",
            event_type=event_type.value
        ) from e


class DeadLetter(BaseModel):
    """Event that exhausted its handler retries"""
    event: Event
    consumer_id: str
    error: str
    attempts: int
    failed_at: datetime = Field(default_factory=utcnow)
