from typing import Optional
from enum import Enum
import asyncio
import time
import structlog
from pydantic import BaseModel
from tenacity import AsyncRetrying, retry_if_not_exception_type, stop_after_attempt, wait_incrementing

from orchestrator.domain.errors import InvalidEventError, UnknownEventTypeError
from orchestrator.domain.models import DeadLetter, Event
from orchestrator.infrastructure.observability.logging import metrics, projection_logger
from orchestrator.infrastructure.store.base import EventStore, ProjectionStore
from .handlers import ProjectionHandlers
from .offset_tracker import OffsetTracker

logger = structlog.get_logger(__name__)


class FailurePolicy(str, Enum):
    """What to do with an event whose handler keeps failing"""
    SKIP = "skip"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


class BatchResult(BaseModel):
    """Outcome of one poll cycle"""
    fetched: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    dead_lettered: int = 0


class EventProjector:
    """
    Consumes the event log in order and maintains projected entities.

    One projector owns one consumer offset and applies events strictly
    sequentially. Reading the offset, applying events and advancing the offset
    are separate commits, so delivery is at-least-once and every handler is
    idempotent. The offset advances past an event once it has been applied,
    rejected as unknown, or given up on under the failure policy.
    """

    def __init__(
        self,
        event_store: EventStore,
        projection_store: ProjectionStore,
        consumer_id: str = "default",
        poll_interval_ms: int = 1000,
        batch_size: int = 50,
        failure_policy: FailurePolicy = FailurePolicy.SKIP,
        max_retries: int = 3,
        retry_backoff_ms: int = 100
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        self.event_store = event_store
        self.projection_store = projection_store
        self.consumer_id = consumer_id
        self.poll_interval_ms = poll_interval_ms
        self.batch_size = batch_size
        self.failure_policy = FailurePolicy(failure_policy)
        self.max_retries = max_retries
        self.retry_backoff_ms = retry_backoff_ms

        self.handlers = ProjectionHandlers(projection_store)
        self.offsets = OffsetTracker(projection_store, consumer_id)

        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self.is_running = False

    async def run(self) -> None:
        """Poll the log until stop() is requested"""

        if self.is_running:
            logger.warning("Event projector is already running", consumer_id=self.consumer_id)
            return

        self.is_running = True
        logger.info("Starting event projector", consumer_id=self.consumer_id)

        try:
            with structlog.contextvars.bound_contextvars(consumer_id=self.consumer_id):
                while not self._stop_event.is_set():
                    try:
                        result = await self.process_batch()
                    except Exception as e:
                        logger.error("Error in event processing loop", error=str(e), exc_info=True)
                        metrics.increment_counter("projector.loop_errors", tags={"consumer": self.consumer_id})
                        await self._sleep(self.poll_interval_ms * 2)
                        continue

                    # A full batch means more events are probably waiting
                    if result.fetched < self.batch_size:
                        await self._sleep(self.poll_interval_ms)
        finally:
            self.is_running = False
            logger.info("Event projector stopped", consumer_id=self.consumer_id)

    def start(self) -> asyncio.Task:
        """Run the poll loop as a background task"""

        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Request shutdown; the current batch always completes"""

        logger.info("Stopping event projector", consumer_id=self.consumer_id)
        self._stop_event.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def process_batch(self) -> BatchResult:
        """Run one read-process-advance cycle"""

        await self.offsets.load()
        after_created_at, after_event_id = self.offsets.cursor
        events = await self.event_store.fetch_after(after_created_at, after_event_id, self.batch_size)

        result = BatchResult(fetched=len(events))
        if not events:
            return result

        logger.info("Processing new events", count=len(events), consumer_id=self.consumer_id)

        for event in events:
            await self._process_event(event, result)
            await self.offsets.advance(event)

        metrics.set_gauge("projector.last_batch_size", len(events), tags={"consumer": self.consumer_id})
        metrics.increment_counter("projector.events_processed", result.applied, tags={"consumer": self.consumer_id})
        if result.failed or result.dead_lettered:
            metrics.increment_counter(
                "projector.events_failed",
                result.failed + result.dead_lettered,
                tags={"consumer": self.consumer_id}
            )

        logger.info(
            "Processed events",
            consumer_id=self.consumer_id,
            applied=result.applied,
            skipped=result.skipped,
            failed=result.failed,
            dead_lettered=result.dead_lettered
        )
        return result

    async def replay(self) -> BatchResult:
        """Rewind the offset and drain the whole log"""

        await self.offsets.reset()
        total = BatchResult()

        while True:
            result = await self.process_batch()
            for field in BatchResult.model_fields:
                setattr(total, field, getattr(total, field) + getattr(result, field))
            if result.fetched == 0:
                return total

    async def _process_event(self, event: Event, result: BatchResult) -> None:
        """Apply one event under the failure policy"""

        attempts = 1 if self.failure_policy == FailurePolicy.SKIP else 1 + self.max_retries
        backoff = self.retry_backoff_ms / 1000
        # Malformed payloads fail the same way on every attempt
        retrying = AsyncRetrying(
            retry=retry_if_not_exception_type(InvalidEventError),
            stop=stop_after_attempt(attempts),
            wait=wait_incrementing(start=backoff, increment=backoff),
            reraise=True,
            before_sleep=lambda rs: logger.warning(
                "Handler failed, retrying",
                event_id=event.id,
                event_type=event.type,
                attempt=rs.attempt_number,
                error=str(rs.outcome.exception())
            ),
        )
        attempt = 0

        try:
            async for retry_attempt in retrying:
                with retry_attempt:
                    attempt = retry_attempt.retry_state.attempt_number
                    started = time.perf_counter()
                    await self.handlers.apply(event)
        except UnknownEventTypeError:
            projection_logger.log_event_skipped(
                self.consumer_id, event.id, event.type, reason="unknown_event_type"
            )
            result.skipped += 1
            return
        except Exception as e:
            await self._give_up(event, result, e, attempt)
            return

        projection_logger.log_event_applied(
            self.consumer_id,
            event.id,
            event.type,
            event.project_id,
            duration_ms=(time.perf_counter() - started) * 1000
        )
        result.applied += 1

    async def _give_up(self, event: Event, result: BatchResult, error: Exception, attempts: int) -> None:
        if self.failure_policy == FailurePolicy.DEAD_LETTER:
            await self.projection_store.add_dead_letter(DeadLetter(
                event=event,
                consumer_id=self.consumer_id,
                error=str(error),
                attempts=attempts
            ))
            result.dead_lettered += 1
            reason = "dead_lettered"
        else:
            result.failed += 1
            reason = "handler_failed"

        projection_logger.log_event_skipped(
            self.consumer_id, event.id, event.type, reason=f"{reason}: {error}", attempts=attempts
        )

    async def _sleep(self, interval_ms: int) -> None:
        """Sleep, waking early when stop() is requested"""

        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=interval_ms / 1000)
        except asyncio.TimeoutError:
            pass
