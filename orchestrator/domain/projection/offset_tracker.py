from typing import Optional, Tuple
from datetime import datetime
import structlog

from orchestrator.domain.models import Event, ProjectionOffset
from orchestrator.domain.models.entities import ensure_utc
from orchestrator.infrastructure.observability.logging import projection_logger
from orchestrator.infrastructure.store.base import ProjectionStore

logger = structlog.get_logger(__name__)


class OffsetTracker:
    """Per-consumer cursor over the event log"""

    def __init__(self, store: ProjectionStore, consumer_id: str):
        self.store = store
        self.consumer_id = consumer_id
        self.offset: Optional[ProjectionOffset] = None

    async def load(self) -> ProjectionOffset:
        """Read the persisted offset"""

        self.offset = await self.store.get_offset(self.consumer_id)
        return self.offset

    @property
    def cursor(self) -> Tuple[Optional[datetime], Optional[str]]:
        """(last_seen_at, last_event_id) of the loaded offset"""

        if self.offset is None:
            return None, None
        return self.offset.last_seen_at, self.offset.last_event_id

    async def advance(self, event: Event) -> ProjectionOffset:
        """Move the offset to an event; offsets only ever move forward"""

        if self.offset is None:
            await self.load()

        last_seen_at, last_event_id = self.cursor
        if last_seen_at is not None and event.sort_key <= (ensure_utc(last_seen_at), last_event_id or ""):
            raise ValueError(
                f"Offset for {self.consumer_id} cannot move back to event {event.id}"
            )

        offset = ProjectionOffset(
            consumer_id=self.consumer_id,
            last_event_id=event.id,
            last_seen_at=event.created_at
        )
        await self.store.save_offset(offset)
        self.offset = offset

        projection_logger.log_offset_advanced(self.consumer_id, event.id, event.created_at.isoformat())
        return offset

    async def reset(self) -> ProjectionOffset:
        """Rewind to the start of the log"""

        offset = ProjectionOffset(consumer_id=self.consumer_id)
        await self.store.save_offset(offset)
        self.offset = offset

        logger.info("Offset reset", consumer_id=self.consumer_id)
        return offset
