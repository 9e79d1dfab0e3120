from typing import Annotated, Any, Dict, Optional
from fastapi import APIRouter, Depends, Query

from orchestrator.application.services import Services
from orchestrator.domain.models import EmbeddingBackfillResult
from .dependencies import get_services

router = APIRouter(prefix="/api/embeddings", tags=["embeddings"])


@router.post("/process", response_model=EmbeddingBackfillResult)
async def process_embeddings(
    services: Annotated[Services, Depends(get_services)],
    project_id: Optional[str] = None,
    limit: int = Query(default=100, gt=0, le=1000)
):
    """Backfill missing embeddings once"""
    return await services.search.process_pending_embeddings(project_id=project_id, limit=limit)


@router.get("/health")
async def embeddings_health(services: Annotated[Services, Depends(get_services)]) -> Dict[str, Any]:
    return await services.search.health_check()
