"""Tests for the metrics collector and logging setup."""

import pytest
import structlog

from orchestrator.infrastructure.observability.logging import MetricsCollector, metrics, setup_logging


@pytest.fixture
def collector():
    return MetricsCollector()


def test_counters_are_keyed_by_tags(collector):
    collector.increment_counter("projector.events_processed", 3, tags={"consumer": "a"})
    collector.increment_counter("projector.events_processed", 2, tags={"consumer": "a"})
    collector.increment_counter("projector.events_processed", tags={"consumer": "b"})

    counters = collector.get_metrics_summary()["counters"]
    assert counters["projector.events_processed{consumer=a}"] == 5
    assert counters["projector.events_processed{consumer=b}"] == 1


def test_latency_summary(collector):
    collector.record_latency("build_preview", 10.0)
    collector.record_latency("build_preview", 30.0)

    latency = collector.get_metrics_summary()["latencies"]["build_preview"]
    assert latency == {"count": 2, "avg_ms": 20.0, "max_ms": 30.0}


def test_gauge_keeps_last_value(collector):
    collector.set_gauge("projector.last_batch_size", 50)
    collector.set_gauge("projector.last_batch_size", 7)

    assert collector.get_metrics_summary()["gauges"]["projector.last_batch_size"] == 7


def test_reset(collector):
    collector.increment_counter("x")
    collector.reset()

    assert collector.get_metrics_summary() == {"counters": {}, "gauges": {}, "latencies": {}}


@pytest.mark.asyncio
async def test_projector_records_metrics(store, events, projector):
    metrics.reset()
    await events.block("b1", "Auth")

    await projector.process_batch()

    summary = metrics.get_metrics_summary()
    assert summary["counters"]["projector.events_processed{consumer=test}"] == 1
    assert summary["gauges"]["projector.last_batch_size{consumer=test}"] == 1


def test_setup_logging_binds_service_context():
    setup_logging(log_level="DEBUG", log_format="console", service_name="orchestrator-test")

    try:
        assert structlog.contextvars.get_contextvars()["service"] == "orchestrator-test"
    finally:
        structlog.contextvars.clear_contextvars()
