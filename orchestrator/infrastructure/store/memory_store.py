from typing import Dict, Any, List, Optional, Tuple
import asyncio
import math
import uuid
from datetime import datetime

from orchestrator.domain.models import (
    Block, ClaudeSession, ContextItem, ContextLink, DeadLetter, Event,
    GitHubEntity, Project, ProjectionOffset, SearchResult, utcnow,
)
from orchestrator.domain.models.entities import ensure_utc
from .base import EventStore, PendingEmbedding, ProjectionStore


def cosine_similarity(a: List[float], b: List[float]) -> float:
    """Cosine similarity of two vectors; 0.0 for mismatched or zero vectors"""

    if not a or not b or len(a) != len(b):
        return 0.0

    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return dot / (norm_a * norm_b)


class InMemoryStore(EventStore, ProjectionStore):
    """Process-local reference implementation of the event and projection stores"""

    def __init__(self):
        self.events: List[Event] = []
        self.offsets: Dict[str, ProjectionOffset] = {}
        self.projects: Dict[str, Project] = {}
        self.blocks: Dict[str, Block] = {}
        self.context_items: Dict[str, ContextItem] = {}
        self.context_links: Dict[Tuple[str, str], ContextLink] = {}
        self.sessions: Dict[str, ClaudeSession] = {}
        self.github_entities: Dict[Tuple[str, str, str], GitHubEntity] = {}
        self.dead_letters: List[DeadLetter] = []
        self._lock = asyncio.Lock()

    # Event log

    async def append(
        self,
        project_id: str,
        type: str,
        actor_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None
    ) -> Event:
        """Append an event and return it"""

        async with self._lock:
            event = Event(
                id=str(uuid.uuid4()),
                project_id=project_id,
                type=type,
                actor_id=actor_id,
                payload=payload or {},
                created_at=ensure_utc(created_at) if created_at else utcnow()
            )
            self.events.append(event)
            self.events.sort(key=lambda e: e.sort_key)
            return event

    async def fetch_after(
        self,
        after_created_at: Optional[datetime],
        after_event_id: Optional[str],
        limit: int
    ) -> List[Event]:
        """Events strictly after the cursor, ascending"""

        async with self._lock:
            if after_created_at is None:
                return self.events[:limit]

            cursor = (ensure_utc(after_created_at), after_event_id or "")
            return [e for e in self.events if e.sort_key > cursor][:limit]

    async def list_project_events(self, project_id: str, limit: int = 100) -> List[Event]:
        async with self._lock:
            events = [e for e in self.events if e.project_id == project_id]
            return list(reversed(events))[:limit]

    # Offsets

    async def get_offset(self, consumer_id: str) -> ProjectionOffset:
        async with self._lock:
            if consumer_id not in self.offsets:
                self.offsets[consumer_id] = ProjectionOffset(consumer_id=consumer_id)
            return self.offsets[consumer_id].model_copy()

    async def save_offset(self, offset: ProjectionOffset) -> None:
        async with self._lock:
            self.offsets[offset.consumer_id] = offset.model_copy()

    # Projects

    async def get_project(self, project_id: str) -> Optional[Project]:
        async with self._lock:
            project = self.projects.get(project_id)
            return project.model_copy(deep=True) if project else None

    async def insert_project(self, project: Project) -> bool:
        async with self._lock:
            if project.id in self.projects:
                return False
            self.projects[project.id] = project.model_copy(deep=True)
            return True

    async def update_project(self, project_id: str, fields: Dict[str, Any]) -> bool:
        async with self._lock:
            return self._patch(self.projects, project_id, fields)

    # Blocks

    async def get_block(self, block_id: str) -> Optional[Block]:
        async with self._lock:
            block = self.blocks.get(block_id)
            return block.model_copy(deep=True) if block else None

    async def insert_block(self, block: Block) -> bool:
        async with self._lock:
            if block.id in self.blocks:
                return False
            self.blocks[block.id] = block.model_copy(deep=True)
            return True

    async def update_block(self, block_id: str, fields: Dict[str, Any]) -> bool:
        async with self._lock:
            if block_id in self.blocks and ({"title", "content"} & fields.keys()):
                # Content changes invalidate the stored embedding
                fields = {**fields, "embedding": None}
            return self._patch(self.blocks, block_id, fields)

    async def delete_block(self, block_id: str) -> bool:
        async with self._lock:
            if self.blocks.pop(block_id, None) is None:
                return False
            for key in [k for k in self.context_links if k[1] == block_id]:
                del self.context_links[key]
            return True

    async def list_blocks(self, project_id: str) -> List[Block]:
        async with self._lock:
            blocks = [b for b in self.blocks.values() if b.project_id == project_id]
            blocks.sort(key=lambda b: (ensure_utc(b.created_at), b.id))
            return [b.model_copy(deep=True) for b in blocks]

    # Context items and links

    async def get_context_item(self, item_id: str) -> Optional[ContextItem]:
        async with self._lock:
            item = self.context_items.get(item_id)
            return item.model_copy(deep=True) if item else None

    async def insert_context_item(self, item: ContextItem) -> bool:
        async with self._lock:
            if item.id in self.context_items:
                return False
            self.context_items[item.id] = item.model_copy(deep=True)
            return True

    async def list_context_items(self, project_id: str, limit: Optional[int] = None) -> List[ContextItem]:
        async with self._lock:
            items = [i for i in self.context_items.values() if i.project_id == project_id]
            items.sort(key=lambda i: (ensure_utc(i.created_at), i.id), reverse=True)
            if limit is not None:
                items = items[:limit]
            return [i.model_copy(deep=True) for i in items]

    async def insert_context_link(self, link: ContextLink) -> bool:
        async with self._lock:
            key = (link.context_id, link.block_id)
            if key in self.context_links:
                return False
            self.context_links[key] = link.model_copy()
            return True

    async def list_context_links(self, project_id: str) -> List[ContextLink]:
        async with self._lock:
            return [
                link.model_copy() for (context_id, block_id), link in self.context_links.items()
                if context_id in self.context_items
                and block_id in self.blocks
                and self.blocks[block_id].project_id == project_id
            ]

    # Sessions

    async def get_session(self, session_id: str) -> Optional[ClaudeSession]:
        async with self._lock:
            session = self.sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    async def insert_session(self, session: ClaudeSession) -> bool:
        async with self._lock:
            if session.id in self.sessions:
                return False
            self.sessions[session.id] = session.model_copy(deep=True)
            return True

    async def update_session(self, session_id: str, fields: Dict[str, Any]) -> bool:
        async with self._lock:
            return self._patch(self.sessions, session_id, fields)

    # GitHub

    async def upsert_github_entity(self, entity: GitHubEntity) -> bool:
        async with self._lock:
            key = (entity.project_id, entity.provider_type.value, entity.provider_id)
            existing = self.github_entities.get(key)
            if existing is None:
                self.github_entities[key] = entity.model_copy(deep=True)
                return True

            self.github_entities[key] = existing.model_copy(update={
                "url": entity.url or existing.url,
                "title": entity.title or existing.title,
                "status": entity.status or existing.status,
                "metadata": {**existing.metadata, **entity.metadata},
                "updated_at": entity.updated_at,
            })
            return False

    async def list_github_entities(self, project_id: str) -> List[GitHubEntity]:
        async with self._lock:
            entities = [e for e in self.github_entities.values() if e.project_id == project_id]
            entities.sort(key=lambda e: (ensure_utc(e.created_at), e.id), reverse=True)
            return [e.model_copy(deep=True) for e in entities]

    # Dead letters

    async def add_dead_letter(self, dead_letter: DeadLetter) -> None:
        async with self._lock:
            self.dead_letters.append(dead_letter)

    async def list_dead_letters(self, consumer_id: Optional[str] = None) -> List[DeadLetter]:
        async with self._lock:
            return [
                d for d in self.dead_letters
                if consumer_id is None or d.consumer_id == consumer_id
            ]

    # Embeddings and search

    async def find_missing_embeddings(
        self,
        project_id: Optional[str] = None,
        limit: int = 100
    ) -> List[PendingEmbedding]:
        async with self._lock:
            pending = [
                PendingEmbedding(
                    item_type="context_item",
                    id=item.id,
                    project_id=item.project_id,
                    text_content=item.embedding_text(),
                    created_at=item.created_at
                )
                for item in self.context_items.values() if item.embedding is None
            ]
            pending.extend(
                PendingEmbedding(
                    item_type="block",
                    id=block.id,
                    project_id=block.project_id,
                    text_content=block.embedding_text(),
                    created_at=block.created_at
                )
                for block in self.blocks.values() if block.embedding is None
            )

            if project_id is not None:
                pending = [p for p in pending if p.project_id == project_id]
            pending.sort(key=lambda p: ensure_utc(p.created_at), reverse=True)
            return pending[:limit]

    async def set_embedding(self, item_type: str, item_id: str, embedding: List[float]) -> None:
        async with self._lock:
            table = self.blocks if item_type == "block" else self.context_items
            if item_id in table:
                table[item_id] = table[item_id].model_copy(update={"embedding": list(embedding)})

    async def vector_search(
        self,
        project_id: str,
        embedding: List[float],
        limit: int,
        threshold: float,
        include_blocks: bool = True,
        include_context: bool = True
    ) -> List[SearchResult]:
        async with self._lock:
            results = []
            for item_type, entity in self._searchable(project_id, include_blocks, include_context):
                if entity.embedding is None:
                    continue
                similarity = cosine_similarity(embedding, entity.embedding)
                if similarity >= threshold:
                    results.append(self._to_result(item_type, entity, similarity))

            results.sort(key=lambda r: r.similarity, reverse=True)
            return results[:limit]

    async def keyword_search(
        self,
        project_id: str,
        terms: List[str],
        limit: int,
        include_blocks: bool = True,
        include_context: bool = True
    ) -> List[SearchResult]:
        async with self._lock:
            lowered = [t.lower() for t in terms]
            results = []
            for item_type, entity in self._searchable(project_id, include_blocks, include_context):
                haystack = f"{entity.title or ''}\n{entity.content or ''}".lower()
                if any(term in haystack for term in lowered):
                    results.append(self._to_result(item_type, entity, 0.0))

            results.sort(key=lambda r: ensure_utc(r.created_at), reverse=True)
            return results[:limit]

    # Helpers

    def _patch(self, table: Dict[str, Any], key: str, fields: Dict[str, Any]) -> bool:
        """Apply a partial update to a row; caller holds the lock"""

        if key not in table:
            return False
        table[key] = table[key].model_copy(update=fields)
        return True

    def _searchable(self, project_id: str, include_blocks: bool = True, include_context: bool = True):
        if include_context:
            for item in self.context_items.values():
                if item.project_id == project_id:
                    yield "context_item", item
        if include_blocks:
            for block in self.blocks.values():
                if block.project_id == project_id:
                    yield "block", block

    @staticmethod
    def _to_result(item_type: str, entity, similarity: float) -> SearchResult:
        return SearchResult(
            item_type=item_type,
            id=entity.id,
            title=entity.title,
            content=entity.content,
            similarity=similarity,
            created_at=entity.created_at
        )
