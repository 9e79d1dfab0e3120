"""
Store contracts consumed by the projector, the ranking engine and the
embedding adapter.

The durable store is external; implementations must make each method a
single committed unit so that a returned call means the write is durable.
"""

from abc import ABC, abstractmethod
from typing import Dict, Any, List, Optional
from datetime import datetime
from pydantic import BaseModel

from orchestrator.domain.models import (
    Block, ClaudeSession, ContextItem, ContextLink, DeadLetter, Event,
    GitHubEntity, Project, ProjectionOffset, SearchResult,
)


class PendingEmbedding(BaseModel):
    """An entity that has no embedding yet"""
    item_type: str
    id: str
    project_id: str
    text_content: str
    created_at: datetime


class EventStore(ABC):
    """Append-only, totally ordered event log"""

    @abstractmethod
    async def append(
        self,
        project_id: str,
        type: str,
        actor_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None
    ) -> Event:
        """Append an event and return it with its id and timestamp"""

    @abstractmethod
    async def fetch_after(
        self,
        after_created_at: Optional[datetime],
        after_event_id: Optional[str],
        limit: int
    ) -> List[Event]:
        """Events strictly after (after_created_at, after_event_id), ascending"""

    @abstractmethod
    async def list_project_events(self, project_id: str, limit: int = 100) -> List[Event]:
        """Most recent events of a project, newest first"""


class ProjectionStore(ABC):
    """Point reads, idempotent inserts and partial updates over projected tables"""

    # Offsets

    @abstractmethod
    async def get_offset(self, consumer_id: str) -> ProjectionOffset:
        """Return the consumer's offset, initializing an empty one if absent"""

    @abstractmethod
    async def save_offset(self, offset: ProjectionOffset) -> None:
        """Persist a consumer offset"""

    # Projects

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        pass

    @abstractmethod
    async def insert_project(self, project: Project) -> bool:
        """Insert if absent; returns whether a row was written"""

    @abstractmethod
    async def update_project(self, project_id: str, fields: Dict[str, Any]) -> bool:
        """Patch supplied fields; returns whether the project exists"""

    # Blocks

    @abstractmethod
    async def get_block(self, block_id: str) -> Optional[Block]:
        pass

    @abstractmethod
    async def insert_block(self, block: Block) -> bool:
        """Insert if absent; returns whether a row was written"""

    @abstractmethod
    async def update_block(self, block_id: str, fields: Dict[str, Any]) -> bool:
        """Patch supplied fields; returns whether the block exists"""

    @abstractmethod
    async def delete_block(self, block_id: str) -> bool:
        """Hard delete a block and its context links"""

    @abstractmethod
    async def list_blocks(self, project_id: str) -> List[Block]:
        pass

    # Context items and links

    @abstractmethod
    async def get_context_item(self, item_id: str) -> Optional[ContextItem]:
        pass

    @abstractmethod
    async def insert_context_item(self, item: ContextItem) -> bool:
        """Insert if absent; returns whether a row was written"""

    @abstractmethod
    async def list_context_items(self, project_id: str, limit: Optional[int] = None) -> List[ContextItem]:
        """Context items of a project, newest first"""

    @abstractmethod
    async def insert_context_link(self, link: ContextLink) -> bool:
        """Insert if absent; returns whether a row was written"""

    @abstractmethod
    async def list_context_links(self, project_id: str) -> List[ContextLink]:
        """Links whose context item and block both exist in the project"""

    # Sessions

    @abstractmethod
    async def get_session(self, session_id: str) -> Optional[ClaudeSession]:
        pass

    @abstractmethod
    async def insert_session(self, session: ClaudeSession) -> bool:
        pass

    @abstractmethod
    async def update_session(self, session_id: str, fields: Dict[str, Any]) -> bool:
        pass

    # GitHub

    @abstractmethod
    async def upsert_github_entity(self, entity: GitHubEntity) -> bool:
        """Insert or update by (project_id, provider_type, provider_id); returns whether it was new"""

    @abstractmethod
    async def list_github_entities(self, project_id: str) -> List[GitHubEntity]:
        pass

    # Dead letters

    @abstractmethod
    async def add_dead_letter(self, dead_letter: DeadLetter) -> None:
        pass

    @abstractmethod
    async def list_dead_letters(self, consumer_id: Optional[str] = None) -> List[DeadLetter]:
        pass

    # Embeddings and search

    @abstractmethod
    async def find_missing_embeddings(
        self,
        project_id: Optional[str] = None,
        limit: int = 100
    ) -> List[PendingEmbedding]:
        """Blocks and context items without an embedding, newest first"""

    @abstractmethod
    async def set_embedding(self, item_type: str, item_id: str, embedding: List[float]) -> None:
        pass

    @abstractmethod
    async def vector_search(
        self,
        project_id: str,
        embedding: List[float],
        limit: int,
        threshold: float,
        include_blocks: bool = True,
        include_context: bool = True
    ) -> List[SearchResult]:
        """Blocks and context items by cosine similarity, best first"""

    @abstractmethod
    async def keyword_search(
        self,
        project_id: str,
        terms: List[str],
        limit: int,
        include_blocks: bool = True,
        include_context: bool = True
    ) -> List[SearchResult]:
        """Case-insensitive containment of any term in title or content, newest first"""

    async def health_check(self) -> bool:
        """Whether the store is reachable"""
        return True
