from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional
import structlog

from orchestrator.application.services import Services, build_services
from orchestrator.application.workers.embedding_worker import EmbeddingWorker
from orchestrator.domain.errors import InvalidEventError, ProjectNotFoundError
from orchestrator.domain.models import utcnow
from orchestrator.infrastructure.config import get_settings
from orchestrator.infrastructure.observability.logging import metrics, setup_logging
from .route import embeddings, events, projects
from .schema.requests import HealthResponse

logger = structlog.get_logger(__name__)


def create_app(services: Optional[Services] = None, start_background: bool = True) -> FastAPI:
    """Build the HTTP app around a set of services"""

    if services is None:
        settings = get_settings()
        setup_logging(
            log_level=settings.LOG_LEVEL,
            log_format=settings.LOG_FORMAT,
            service_name=settings.SERVICE_NAME
        )
        services = build_services(settings)

    app = FastAPI(title="Context Orchestrator")
    app.state.services = services
    app.state.embedding_worker = None

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(events.router)
    app.include_router(projects.router)
    app.include_router(embeddings.router)

    @app.on_event("startup")
    async def startup_event():
        """Start the projector and, when embeddings are configured, the backfill worker"""

        if not start_background:
            return

        services.projector.start()

        if services.search.configured:
            worker = EmbeddingWorker(
                services.search,
                interval_ms=services.settings.EMBEDDING_INTERVAL_MS,
                batch_size=services.settings.EMBEDDING_BATCH_SIZE
            )
            worker.start()
            app.state.embedding_worker = worker

        logger.info("Context orchestrator started", embeddings=services.search.configured)

    @app.on_event("shutdown")
    async def shutdown_event():
        """Stop background tasks; in-flight batches complete first"""

        if app.state.embedding_worker is not None:
            await app.state.embedding_worker.stop()
            app.state.embedding_worker = None
        await services.projector.stop()

        logger.info("Context orchestrator shutdown")

    @app.exception_handler(ProjectNotFoundError)
    async def project_not_found_handler(request: Request, exc: ProjectNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(InvalidEventError)
    async def invalid_event_handler(request: Request, exc: InvalidEventError):
        logger.warning("Rejected event", event_type=exc.event_type, error=str(exc))
        return JSONResponse(status_code=400, content={"detail": str(exc), "event_type": exc.event_type})

    @app.get("/health", response_model=HealthResponse)
    async def health_check():
        """Health check endpoint"""

        store_ok = await services.projection_store.health_check()
        return HealthResponse(
            status="healthy" if store_ok else "degraded",
            store=store_ok,
            projector_running=services.projector.is_running,
            embeddings=await services.search.health_check(),
            metrics=metrics.get_metrics_summary(),
            timestamp=utcnow()
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
