"""
Worker entrypoints for a host process that already owns the services.

Both run until SIGINT or SIGTERM, then stop after the current batch.
"""

from contextlib import contextmanager
from typing import Optional
import asyncio
import signal
import structlog

from orchestrator.application.services import Services
from .embedding_worker import EmbeddingWorker

logger = structlog.get_logger(__name__)

_SIGNALS = (signal.SIGINT, signal.SIGTERM)


@contextmanager
def _shutdown_on_signals(stop):
    loop = asyncio.get_running_loop()
    installed = []

    async def handle(sig: signal.Signals):
        logger.info("Received shutdown signal", signal=sig.name)
        await stop()

    for sig in _SIGNALS:
        try:
            loop.add_signal_handler(sig, lambda s=sig: asyncio.ensure_future(handle(s)))
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # No signal handler support outside the main thread or on Windows loops
            logger.debug("Signal handlers unavailable", signal=sig.name)
    try:
        yield
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


async def run_projector(services: Services) -> None:
    """Run the event projector until a shutdown signal arrives"""

    projector = services.projector
    with _shutdown_on_signals(projector.stop):
        await projector.start()


async def run_embedding_worker(services: Services, project_id: Optional[str] = None) -> None:
    """Run the embedding backfill loop until a shutdown signal arrives"""

    if not services.search.configured:
        logger.warning("OPENAI_API_KEY not set, embedding worker has nothing to do")
        return

    worker = EmbeddingWorker(
        services.search,
        interval_ms=services.settings.EMBEDDING_INTERVAL_MS,
        batch_size=services.settings.EMBEDDING_BATCH_SIZE,
        project_id=project_id
    )
    with _shutdown_on_signals(worker.stop):
        await worker.start()
