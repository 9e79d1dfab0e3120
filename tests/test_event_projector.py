"""Tests for the event projector.

Covers:
- read-process-advance cycle and offset persistence
- idempotent re-delivery
- unknown event types and failure policies
- replay equivalence
- background loop start/stop
"""

import asyncio
from datetime import timedelta

import pytest

from orchestrator.domain.models import EventType
from orchestrator.domain.projection import EventProjector, FailurePolicy, OffsetTracker
from orchestrator.infrastructure.store import InMemoryStore
from tests.fakes import EventFactory, snapshot


async def _seed_board(events: EventFactory):
    await events.project(name="Orchestrator", description="Context service")
    await events.block("b1", "Auth flow", lane="current", priority="high")
    await events.block("b2", "Schema migration", lane="next")
    await events.append("block.progress_updated", {"id": "b1", "progress": 40})
    await events.context("c1", "Use JWT for sessions", type="decision", block_id="b1")
    await events.append("block.moved", {"id": "b2", "lane": "current"})
    await events.append("github.pr.opened", {"provider_id": "42", "title": "Add login"})
    await events.append("github.pr.merged", {"provider_id": "42"})
    await events.append("session.started", {"session_id": "s1", "block_id": "b1"})
    await events.append("session.ended", {"session_id": "s1", "messages_count": 12, "tokens_used": 900})
    await events.append("block.progress_updated", {"id": "b1", "progress": 100})
    await events.append("block.deleted", {"id": "b2"})


class TestProcessBatch:
    """One read-process-advance cycle."""

    @pytest.mark.asyncio
    async def test_applies_events_and_advances_offset(self, store, events, projector):
        await events.project()
        last = await events.block("b1", "Auth flow")

        result = await projector.process_batch()

        assert result.fetched == 2
        assert result.applied == 2
        assert "b1" in store.blocks
        offset = await store.get_offset("test")
        assert offset.last_event_id == last.id
        assert offset.last_seen_at == last.created_at

    @pytest.mark.asyncio
    async def test_empty_log_is_a_noop(self, store, projector):
        result = await projector.process_batch()

        assert result.fetched == 0
        assert (await store.get_offset("test")).last_event_id is None

    @pytest.mark.asyncio
    async def test_batches_respect_batch_size(self, store, events):
        for i in range(5):
            await events.block(f"b{i}", f"Block {i}")
        projector = EventProjector(store, store, consumer_id="small", batch_size=2)

        fetched = [(await projector.process_batch()).fetched for _ in range(4)]

        assert fetched == [2, 2, 1, 0]
        assert len(store.blocks) == 5

    @pytest.mark.asyncio
    async def test_redelivery_is_idempotent(self, store, events, projector):
        await _seed_board(events)
        await projector.process_batch()
        first = snapshot(store)

        # Simulate a crash before the offset was committed
        await projector.offsets.reset()
        await projector.process_batch()

        assert snapshot(store) == first

    @pytest.mark.asyncio
    async def test_unknown_event_type_is_skipped_and_offset_advances(self, store, events, projector):
        unknown = await events.append("mystery.happened", {"id": "x"})

        result = await projector.process_batch()

        assert result.skipped == 1
        assert result.applied == 0
        assert (await store.get_offset("test")).last_event_id == unknown.id

    @pytest.mark.asyncio
    async def test_consumers_track_offsets_independently(self, store, events):
        await events.block("b1", "Auth flow")
        first = EventProjector(store, store, consumer_id="first")
        second = EventProjector(store, store, consumer_id="second")

        await first.process_batch()

        assert (await store.get_offset("first")).last_event_id is not None
        assert (await store.get_offset("second")).last_event_id is None
        assert (await second.process_batch()).applied == 1


class TestFailurePolicies:
    """Handler failures never stall the offset."""

    @staticmethod
    def _break_block_created(projector: EventProjector, fail_times: int = 10_000):
        original = projector.handlers.handlers[EventType.BLOCK_CREATED]
        calls = {"count": 0}

        async def flaky(event, payload):
            calls["count"] += 1
            if calls["count"] <= fail_times:
                raise RuntimeError("store write failed")
            await original(event, payload)

        projector.handlers.handlers[EventType.BLOCK_CREATED] = flaky
        return calls

    @pytest.mark.asyncio
    async def test_skip_policy_advances_past_failure(self, store, events):
        projector = EventProjector(store, store, consumer_id="skip", failure_policy=FailurePolicy.SKIP)
        calls = self._break_block_created(projector)
        await events.block("b1", "Broken")
        after = await events.context("c1", "Still projected")

        result = await projector.process_batch()

        assert calls["count"] == 1
        assert result.failed == 1
        assert result.applied == 1
        assert "b1" not in store.blocks
        assert "c1" in store.context_items
        assert (await store.get_offset("skip")).last_event_id == after.id

    @pytest.mark.asyncio
    async def test_retry_policy_recovers_transient_failure(self, store, events):
        projector = EventProjector(
            store, store, consumer_id="retry",
            failure_policy=FailurePolicy.RETRY, max_retries=2, retry_backoff_ms=0
        )
        calls = self._break_block_created(projector, fail_times=1)
        await events.block("b1", "Eventually")

        result = await projector.process_batch()

        assert calls["count"] == 2
        assert result.applied == 1
        assert "b1" in store.blocks

    @pytest.mark.asyncio
    async def test_dead_letter_policy_records_exhausted_event(self, store, events):
        projector = EventProjector(
            store, store, consumer_id="dlq",
            failure_policy=FailurePolicy.DEAD_LETTER, max_retries=2, retry_backoff_ms=0
        )
        calls = self._break_block_created(projector)
        broken = await events.block("b1", "Never")

        result = await projector.process_batch()

        assert calls["count"] == 3
        assert result.dead_lettered == 1
        dead = await store.list_dead_letters("dlq")
        assert len(dead) == 1
        assert dead[0].event.id == broken.id
        assert dead[0].attempts == 3
        assert "store write failed" in dead[0].error
        assert (await store.get_offset("dlq")).last_event_id == broken.id

    @pytest.mark.asyncio
    async def test_malformed_payload_is_not_retried(self, store, events):
        projector = EventProjector(
            store, store, consumer_id="dlq",
            failure_policy=FailurePolicy.DEAD_LETTER, max_retries=3, retry_backoff_ms=0
        )
        await events.block("b1", "Auth flow")
        await events.append("block.progress_updated", {"id": "b1", "progress": 150})

        result = await projector.process_batch()

        assert result.applied == 1
        assert result.dead_lettered == 1
        dead = await store.list_dead_letters()
        assert dead[0].attempts == 1
        assert store.blocks["b1"].progress == 0

    @pytest.mark.asyncio
    async def test_retry_policy_gives_up_after_max_retries(self, store, events):
        projector = EventProjector(
            store, store, consumer_id="retry",
            failure_policy=FailurePolicy.RETRY, max_retries=3, retry_backoff_ms=0
        )
        calls = self._break_block_created(projector)
        broken = await events.block("b1", "Never")

        result = await projector.process_batch()

        assert calls["count"] == 4
        assert result.failed == 1
        assert await store.list_dead_letters() == []
        assert (await store.get_offset("retry")).last_event_id == broken.id


class TestReplay:
    """Replaying the log reproduces the incremental state."""

    @pytest.mark.asyncio
    async def test_replay_matches_incremental_run(self, store, events):
        await _seed_board(events)
        incremental = EventProjector(store, store, consumer_id="inc", batch_size=3)
        while (await incremental.process_batch()).fetched:
            pass
        expected = snapshot(store)

        fresh = InMemoryStore()
        fresh.events = list(store.events)
        replayed = await EventProjector(fresh, fresh, consumer_id="replay").replay()

        assert replayed.fetched == len(store.events)
        assert snapshot(fresh) == expected

    @pytest.mark.asyncio
    async def test_replay_over_existing_state_is_stable(self, store, events, projector):
        await _seed_board(events)
        await projector.process_batch()
        expected = snapshot(store)

        total = await projector.replay()

        assert total.applied == len(store.events)
        assert snapshot(store) == expected

    @pytest.mark.asyncio
    async def test_link_captured_before_block_survives_replay(self, store, events, projector):
        await events.project()
        await events.context("c1", "Token refresh notes", block_id="b1")
        await events.block("b1", "Auth flow")
        await projector.process_batch()
        expected = snapshot(store)

        await projector.replay()

        assert snapshot(store) == expected
        assert expected["context_links"] == [("c1", "b1")]

        fresh = InMemoryStore()
        fresh.events = list(store.events)
        await EventProjector(fresh, fresh, consumer_id="replay").replay()

        assert snapshot(fresh) == expected


class TestOffsets:

    @pytest.mark.asyncio
    async def test_offset_never_moves_backwards(self, store, events):
        older = await events.block("b1", "First")
        newer = await events.block("b2", "Second")
        tracker = OffsetTracker(store, "test")

        await tracker.advance(newer)

        with pytest.raises(ValueError):
            await tracker.advance(older)
        assert (await store.get_offset("test")).last_event_id == newer.id

    @pytest.mark.asyncio
    async def test_equal_timestamps_are_ordered_by_id(self, store):
        ts = (await store.append("p", "block.created", payload={"id": "a"})).created_at
        tied = [await store.append("p", "block.created", payload={"id": f"t{i}"}, created_at=ts) for i in range(3)]
        ordered = sorted(store.events, key=lambda e: e.id)

        first = await store.fetch_after(None, None, 1)
        rest = await store.fetch_after(first[0].created_at, first[0].id, 10)

        assert len(tied) == 3
        assert [e.id for e in first + rest] == [e.id for e in ordered]

    @pytest.mark.asyncio
    async def test_fetch_after_excludes_cursor_event(self, store, events):
        first = await events.block("b1", "First")
        second = await events.block("b2", "Second")

        after = await store.fetch_after(first.created_at, first.id, 10)

        assert [e.id for e in after] == [second.id]


class TestRunLoop:

    @pytest.mark.asyncio
    async def test_background_loop_projects_and_stops(self, store, events, projector):
        await events.project()
        last = await events.block("b1", "Auth flow")

        projector.start()
        for _ in range(200):
            if (await store.get_offset("test")).last_event_id == last.id:
                break
            await asyncio.sleep(0.01)

        assert projector.is_running
        await projector.stop()

        assert not projector.is_running
        assert "b1" in store.blocks

    @pytest.mark.asyncio
    async def test_loop_survives_store_errors(self, store, events, projector, monkeypatch):
        await events.block("b1", "Auth flow")
        original = store.fetch_after
        calls = {"count": 0}

        async def flaky_fetch(*args, **kwargs):
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConnectionError("database unavailable")
            return await original(*args, **kwargs)

        monkeypatch.setattr(store, "fetch_after", flaky_fetch)

        projector.start()
        for _ in range(200):
            if "b1" in store.blocks:
                break
            await asyncio.sleep(0.01)
        await projector.stop()

        assert calls["count"] >= 2
        assert "b1" in store.blocks

    @pytest.mark.asyncio
    async def test_stop_interrupts_idle_sleep(self, store):
        projector = EventProjector(store, store, consumer_id="idle", poll_interval_ms=60_000)

        projector.start()
        await asyncio.sleep(0.05)
        await asyncio.wait_for(projector.stop(), timeout=timedelta(seconds=2).total_seconds())

        assert not projector.is_running

    @pytest.mark.asyncio
    async def test_stop_right_after_start(self, store):
        projector = EventProjector(store, store, consumer_id="eager", poll_interval_ms=60_000)

        projector.start()
        await asyncio.wait_for(projector.stop(), timeout=1)

        assert not projector.is_running

    @pytest.mark.asyncio
    async def test_restart_after_stop(self, store, events):
        projector = EventProjector(store, store, consumer_id="again", poll_interval_ms=10)
        projector.start()
        await asyncio.wait_for(projector.stop(), timeout=1)

        await events.block("b1", "Auth flow")
        projector.start()
        for _ in range(200):
            if "b1" in store.blocks:
                break
            await asyncio.sleep(0.01)
        await asyncio.wait_for(projector.stop(), timeout=1)

        assert "b1" in store.blocks
