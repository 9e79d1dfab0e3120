"""
Idempotent projection handlers, one per event type.

Every timestamp written comes from the event, never from the wall clock, so
replaying the log from the start reproduces the same projected state.
"""

from typing import Awaitable, Callable, Dict
import uuid
import structlog

from orchestrator.domain.models import (
    Block, BlockLane, BlockPriority, BlockStatus, ClaudeSession, ContextItem,
    ContextLink, Event, EventType, GitHubEntity, Project, status_for_progress,
)
from orchestrator.domain.models.events import (
    GITHUB_DEFAULTS,
    BlockCreatedPayload, BlockDeletedPayload, BlockMovedPayload, BlockProgressUpdatedPayload,
    BlockUpdatedPayload, ContextCapturedPayload, ContextLinkedPayload, EventPayload,
    GitHubPayload, ProjectCreatedPayload, ProjectUpdatedPayload, SessionEndedPayload,
    SessionStartedPayload, parse_payload, resolve_event_type,
)
from orchestrator.infrastructure.store.base import ProjectionStore

logger = structlog.get_logger(__name__)

Handler = Callable[[Event, EventPayload], Awaitable[None]]

# Block fields that may not be cleared by an explicit null
NON_NULLABLE_BLOCK_FIELDS = {"title", "lane", "priority", "status", "progress"}


def github_entity_id(project_id: str, provider_type: str, provider_id: str) -> str:
    """Deterministic id for a GitHub entity key"""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"github:{project_id}:{provider_type}:{provider_id}"))


class ProjectionHandlers:
    """Dispatches events to their mutation handler"""

    def __init__(self, store: ProjectionStore):
        self.store = store
        self.handlers: Dict[EventType, Handler] = {
            EventType.BLOCK_CREATED: self.handle_block_created,
            EventType.BLOCK_MOVED: self.handle_block_moved,
            EventType.BLOCK_PROGRESS_UPDATED: self.handle_block_progress_updated,
            EventType.BLOCK_UPDATED: self.handle_block_updated,
            EventType.BLOCK_DELETED: self.handle_block_deleted,
            EventType.CONTEXT_CAPTURED: self.handle_context_captured,
            EventType.CONTEXT_LINKED: self.handle_context_linked,
            EventType.SESSION_STARTED: self.handle_session_started,
            EventType.SESSION_ENDED: self.handle_session_ended,
            EventType.PROJECT_CREATED: self.handle_project_created,
            EventType.PROJECT_UPDATED: self.handle_project_updated,
        }
        self.handlers.update({
            event_type: self.handle_github_event for event_type in EventType if event_type.is_github
        })

    async def apply(self, event: Event) -> EventType:
        """Validate and apply one event

        Raises UnknownEventTypeError for types outside the closed set and
        InvalidEventError for malformed payloads.
        """

        event_type = resolve_event_type(event.type)
        payload = parse_payload(event_type, event.payload)
        await self.handlers[event_type](event, payload)
        return event_type

    # Blocks

    async def handle_block_created(self, event: Event, payload: BlockCreatedPayload):
        if not payload.id:
            logger.warning("block.created without id", event_id=event.id)
            return

        block = Block(
            id=payload.id,
            project_id=event.project_id,
            title=payload.title or "",
            content=payload.content,
            lane=payload.lane or BlockLane.CURRENT,
            status=payload.status or BlockStatus.NOT_STARTED,
            priority=payload.priority or BlockPriority.MEDIUM,
            progress=0,
            effort=payload.effort,
            created_at=event.created_at,
            updated_at=event.created_at
        )

        if await self.store.insert_block(block):
            logger.info("Created block", block_id=block.id, title=block.title)
        else:
            logger.debug("Block already exists", block_id=block.id)

    async def handle_block_moved(self, event: Event, payload: BlockMovedPayload):
        if not payload.id or payload.lane is None:
            logger.warning("block.moved without id or lane", event_id=event.id)
            return

        await self._update_block(payload.id, {
            "lane": payload.lane,
            "updated_at": event.created_at,
            "last_worked_at": event.created_at
        })

    async def handle_block_progress_updated(self, event: Event, payload: BlockProgressUpdatedPayload):
        if not payload.id or payload.progress is None:
            logger.warning("block.progress_updated without id or progress", event_id=event.id)
            return

        await self._update_block(payload.id, {
            "progress": payload.progress,
            "status": payload.status or status_for_progress(payload.progress),
            "updated_at": event.created_at,
            "last_worked_at": event.created_at
        })

    async def handle_block_updated(self, event: Event, payload: BlockUpdatedPayload):
        if not payload.id:
            logger.warning("block.updated without id", event_id=event.id)
            return

        fields = {
            key: value for key, value in payload.model_dump(exclude_unset=True, exclude={"id"}).items()
            if value is not None or key not in NON_NULLABLE_BLOCK_FIELDS
        }
        if not fields:
            return

        if "progress" in fields and "status" not in fields:
            fields["status"] = status_for_progress(fields["progress"])

        fields["updated_at"] = event.created_at
        fields["last_worked_at"] = event.created_at
        await self._update_block(payload.id, fields)

    async def handle_block_deleted(self, event: Event, payload: BlockDeletedPayload):
        if not payload.id:
            logger.warning("block.deleted without id", event_id=event.id)
            return

        if await self.store.delete_block(payload.id):
            logger.info("Deleted block", block_id=payload.id)

    # Context

    async def handle_context_captured(self, event: Event, payload: ContextCapturedPayload):
        if not payload.id:
            logger.warning("context.captured without id", event_id=event.id)
            return

        item = ContextItem(
            id=payload.id,
            project_id=event.project_id,
            type=payload.type,
            title=payload.title,
            content=payload.content or "",
            source=payload.source,
            author_id=event.actor_id,
            created_at=event.created_at
        )

        if await self.store.insert_context_item(item):
            logger.info("Captured context", context_id=item.id, context_type=item.type.value)

        if payload.block_id:
            await self._link(item.id, payload.block_id, event)

    async def handle_context_linked(self, event: Event, payload: ContextLinkedPayload):
        if not payload.context_id or not payload.block_id:
            logger.warning("context.linked without context_id or block_id", event_id=event.id)
            return

        await self._link(payload.context_id, payload.block_id, event)

    # Sessions

    async def handle_session_started(self, event: Event, payload: SessionStartedPayload):
        if not payload.session_id:
            logger.warning("session.started without session_id", event_id=event.id)
            return

        session = ClaudeSession(
            id=payload.session_id,
            project_id=event.project_id,
            block_id=payload.block_id,
            user_id=event.actor_id,
            session_type=payload.session_type,
            context_data=payload.context_data,
            created_at=event.created_at,
            updated_at=event.created_at
        )
        if await self.store.insert_session(session):
            logger.info("Started session", session_id=session.id)

    async def handle_session_ended(self, event: Event, payload: SessionEndedPayload):
        if not payload.session_id:
            logger.warning("session.ended without session_id", event_id=event.id)
            return

        fields = {
            "messages_count": payload.messages_count or 0,
            "tokens_used": payload.tokens_used or 0,
            "outcomes": payload.outcomes or [],
            "updated_at": event.created_at,
            "ended_at": event.created_at
        }

        if await self.store.update_session(payload.session_id, fields):
            logger.info("Ended session", session_id=payload.session_id)
            return

        # Ended before its start was projected
        await self.store.insert_session(ClaudeSession(
            id=payload.session_id,
            project_id=event.project_id,
            user_id=event.actor_id,
            created_at=event.created_at,
            **fields
        ))

    # GitHub

    async def handle_github_event(self, event: Event, payload: GitHubPayload):
        default_type, default_status = GITHUB_DEFAULTS[EventType(event.type)]
        provider_type = payload.provider_type or default_type

        if not payload.provider_id:
            logger.warning("GitHub event without provider_id", event_id=event.id, event_type=event.type)
            return

        metadata = dict(payload.metadata)
        if payload.author:
            metadata["author"] = payload.author

        entity = GitHubEntity(
            id=github_entity_id(event.project_id, provider_type.value, payload.provider_id),
            project_id=event.project_id,
            provider_type=provider_type,
            provider_id=payload.provider_id,
            url=payload.url,
            title=payload.title,
            status=payload.status or default_status,
            metadata=metadata,
            created_at=event.created_at,
            updated_at=event.created_at
        )

        created = await self.store.upsert_github_entity(entity)
        logger.info(
            "GitHub entity projected",
            provider_type=provider_type.value,
            provider_id=payload.provider_id,
            created=created
        )

    # Projects

    async def handle_project_created(self, event: Event, payload: ProjectCreatedPayload):
        project = Project(
            id=payload.id or event.project_id,
            name=payload.name or "",
            description=payload.description,
            owner_id=payload.owner_id or event.actor_id,
            metadata=payload.metadata,
            created_at=event.created_at,
            updated_at=event.created_at
        )
        if await self.store.insert_project(project):
            logger.info("Created project", project_id=project.id, name=project.name)

    async def handle_project_updated(self, event: Event, payload: ProjectUpdatedPayload):
        project_id = payload.id or event.project_id
        fields = {
            key: value for key, value in payload.model_dump(exclude_unset=True, exclude={"id"}).items()
            if value is not None or key == "description"
        }
        if not fields:
            return

        fields["updated_at"] = event.created_at
        if await self.store.update_project(project_id, fields):
            logger.info("Updated project", project_id=project_id)
            return

        # Updated before its creation was projected
        await self.store.insert_project(Project(
            id=project_id,
            created_at=event.created_at,
            **fields
        ))

    # Helpers

    async def _link(self, context_id: str, block_id: str, event: Event) -> None:
        # Stored even when either side is not projected yet; reads hide dangling links
        link = ContextLink(context_id=context_id, block_id=block_id, created_at=event.created_at)
        if await self.store.insert_context_link(link):
            logger.info("Linked context", context_id=context_id, block_id=block_id)

    async def _update_block(self, block_id: str, fields: Dict) -> None:
        if await self.store.update_block(block_id, fields):
            logger.debug("Updated block", block_id=block_id, fields=sorted(fields))
        else:
            logger.debug("Block not found, update ignored", block_id=block_id)
