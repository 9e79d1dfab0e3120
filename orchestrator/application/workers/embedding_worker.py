from typing import Optional
import asyncio
import structlog

from orchestrator.domain.context import SemanticSearchAdapter
from orchestrator.infrastructure.observability.logging import metrics

logger = structlog.get_logger(__name__)


class EmbeddingWorker:
    """Periodically backfills embeddings for entities that lack one"""

    def __init__(
        self,
        search: SemanticSearchAdapter,
        interval_ms: int = 30000,
        batch_size: int = 100,
        project_id: Optional[str] = None
    ):
        self.search = search
        self.interval_ms = interval_ms
        self.batch_size = batch_size
        self.project_id = project_id
        self.passes = 0
        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    async def run(self) -> None:
        """Backfill until stop() is requested"""

        logger.info(
            "Starting embedding worker",
            interval_ms=self.interval_ms,
            batch_size=self.batch_size,
            project_id=self.project_id
        )

        while not self._stop_event.is_set():
            self.passes += 1
            try:
                result = await self.search.process_pending_embeddings(
                    project_id=self.project_id, limit=self.batch_size
                )
            except Exception as e:
                logger.error("Error in embedding loop", error=str(e), exc_info=True)
                await self._sleep(self.interval_ms * 2)
                continue

            metrics.increment_counter("embeddings.processed", result.processed)
            if result.errors:
                metrics.increment_counter("embeddings.errors", result.errors)

            await self._sleep(self.interval_ms)

        logger.info("Embedding worker stopped", passes=self.passes)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def _sleep(self, interval_ms: int) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval_ms / 1000)
        except asyncio.TimeoutError:
            pass
