from typing import Annotated
from fastapi import APIRouter, Depends, Query

from orchestrator.application.services import Services
from ..schema.requests import AppendEventRequest, AppendEventResponse, EventListResponse
from .dependencies import get_services

router = APIRouter(prefix="/api", tags=["events"])


@router.post("/events", status_code=201, response_model=AppendEventResponse)
async def append_event(
    request: AppendEventRequest,
    services: Annotated[Services, Depends(get_services)]
):
    """Append a domain event; projections catch up asynchronously"""
    event = await services.events.append(
        project_id=request.project_id,
        type=request.type,
        actor_id=request.actor_id,
        payload=request.payload
    )
    return AppendEventResponse(event_id=event.id, event=event)


@router.get("/projects/{project_id}/events", response_model=EventListResponse)
async def list_events(
    project_id: str,
    services: Annotated[Services, Depends(get_services)],
    limit: int = Query(default=100, gt=0, le=1000)
):
    """Most recent events of a project"""
    events = await services.event_store.list_project_events(project_id, limit=limit)
    return EventListResponse(project_id=project_id, events=events)
