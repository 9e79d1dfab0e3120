from typing import Dict, Any, Optional
from datetime import datetime
import structlog

from orchestrator.domain.errors import InvalidEventError
from orchestrator.domain.models import Event
from orchestrator.domain.models.events import parse_payload, resolve_event_type
from orchestrator.infrastructure.store.base import EventStore

logger = structlog.get_logger(__name__)


class EventService:
    """Validates events before they reach the log"""

    def __init__(self, event_store: EventStore):
        self.event_store = event_store

    async def append(
        self,
        project_id: str,
        type: str,
        actor_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
        created_at: Optional[datetime] = None
    ) -> Event:
        """Append an event of a known type with a well-formed payload"""

        if not project_id:
            raise InvalidEventError("project_id is required", event_type=type)

        event_type = resolve_event_type(type)
        parse_payload(event_type, payload or {})

        event = await self.event_store.append(
            project_id=project_id,
            type=event_type.value,
            actor_id=actor_id,
            payload=payload or {},
            created_at=created_at
        )

        logger.info("Event appended", event_id=event.id, event_type=event.type, project_id=project_id)
        return event
