from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime

from orchestrator.domain.models import Block, Event


class AppendEventRequest(BaseModel):
    """Event submitted by an external actor"""
    project_id: str = Field(min_length=1)
    type: str = Field(description="Event type, e.g. block.created")
    actor_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)


class AppendEventResponse(BaseModel):
    success: bool = True
    event_id: str
    event: Event


class EventListResponse(BaseModel):
    project_id: str
    events: List[Event]


class BlockListResponse(BaseModel):
    project_id: str
    blocks: List[Block]


class HealthResponse(BaseModel):
    status: str
    store: bool
    projector_running: bool
    embeddings: Dict[str, Any] = Field(default_factory=dict)
    metrics: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime
