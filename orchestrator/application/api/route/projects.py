from typing import Annotated, List, Optional
import asyncio
import structlog
from fastapi import APIRouter, Depends, HTTPException, Query

from orchestrator.application.services import Services
from orchestrator.domain.models import ContextPreview, PreviewOptions, ProjectGraph, SearchOptions, SearchResult
from ..schema.requests import BlockListResponse
from .dependencies import get_services

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.get("/{project_id}/context-preview", response_model=ContextPreview)
async def context_preview(
    project_id: str,
    services: Annotated[Services, Depends(get_services)],
    max_tokens: Optional[int] = Query(default=None, gt=0),
    include_blocks: bool = True,
    include_context: bool = True,
    include_github: bool = True,
    query: Optional[str] = None
):
    """Ranked, token-budgeted context for a project"""

    options = PreviewOptions(
        token_budget=max_tokens or services.settings.DEFAULT_TOKEN_BUDGET,
        include_blocks=include_blocks,
        include_context=include_context,
        include_github=include_github,
        query=query or None
    )

    with structlog.contextvars.bound_contextvars(project_id=project_id):
        try:
            return await asyncio.wait_for(
                services.context.build_preview(project_id, options),
                timeout=services.settings.PREVIEW_TIMEOUT_S
            )
        except asyncio.TimeoutError:
            logger.warning("Context preview timed out", timeout_s=services.settings.PREVIEW_TIMEOUT_S)
            raise HTTPException(status_code=504, detail="Context preview timed out")


@router.get("/{project_id}/graph", response_model=ProjectGraph)
async def project_graph(project_id: str, services: Annotated[Services, Depends(get_services)]):
    """Blocks, context items and their links"""
    return await services.context.get_project_graph(project_id)


@router.get("/{project_id}/blocks", response_model=BlockListResponse)
async def list_blocks(project_id: str, services: Annotated[Services, Depends(get_services)]):
    blocks = await services.projection_store.list_blocks(project_id)
    return BlockListResponse(project_id=project_id, blocks=blocks)


@router.get("/{project_id}/search", response_model=List[SearchResult])
async def search(
    project_id: str,
    services: Annotated[Services, Depends(get_services)],
    q: str = Query(min_length=1),
    limit: int = Query(default=10, gt=0, le=100),
    threshold: float = Query(default=0.7, ge=0.0, le=1.0)
):
    """Semantic search with keyword fallback"""
    return await services.search.semantic_search(
        project_id, q, SearchOptions(limit=limit, threshold=threshold)
    )
