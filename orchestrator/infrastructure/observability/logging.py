import structlog
import logging
import sys
from typing import Dict, Any, Optional
import os

from orchestrator.domain.models.entities import utcnow


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "context-orchestrator"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
        version=os.getenv("SERVICE_VERSION", "unknown")
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add service context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = utcnow().isoformat()

    context = structlog.contextvars.get_contextvars()

    # Consumer is bound by the projector loop, project by the preview route
    for key in ("consumer_id", "project_id"):
        if key not in event_dict and context.get(key):
            event_dict[key] = context[key]

    return event_dict


class ProjectionLogger:
    """Specialized logger for projector and preview operations"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_event_applied(
        self,
        consumer_id: str,
        event_id: str,
        event_type: str,
        project_id: str,
        duration_ms: Optional[float] = None
    ):
        """Log a successfully projected event"""

        self.logger.info(
            "event_applied",
            consumer_id=consumer_id,
            event_id=event_id,
            event_type=event_type,
            project_id=project_id,
            duration_ms=duration_ms
        )

    def log_event_skipped(
        self,
        consumer_id: str,
        event_id: str,
        event_type: str,
        reason: str,
        attempts: int = 1
    ):
        """Log an event the projector gave up on"""

        self.logger.warning(
            "event_skipped",
            consumer_id=consumer_id,
            event_id=event_id,
            event_type=event_type,
            reason=reason,
            attempts=attempts
        )

    def log_offset_advanced(self, consumer_id: str, event_id: str, seen_at: str):
        """Log offset movement"""

        self.logger.debug(
            "offset_advanced",
            consumer_id=consumer_id,
            last_event_id=event_id,
            last_seen_at=seen_at
        )

    def log_preview_built(
        self,
        project_id: str,
        total_items: int,
        included_items: int,
        compressed: bool,
        duration_ms: float
    ):
        """Log a finished context preview"""

        self.logger.info(
            "preview_built",
            project_id=project_id,
            total_items=total_items,
            included_items=included_items,
            compressed=compressed,
            duration_ms=duration_ms
        )


# Global logger instance
projection_logger = ProjectionLogger("orchestrator")


class MetricsCollector:
    """In-process counters, gauges and latency summaries, mirrored to debug logs"""

    def __init__(self):
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}
        self.latencies: Dict[str, Dict[str, float]] = {}

    @staticmethod
    def _key(name: str, tags: Optional[Dict[str, str]] = None) -> str:
        """Metric name with sorted tags, e.g. projector.events_failed{consumer=default}"""

        if not tags:
            return name
        rendered = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
        return f"{name}{{{rendered}}}"

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        key = self._key(operation, tags)
        stats = self.latencies.setdefault(key, {"count": 0, "total_ms": 0.0, "max_ms": 0.0})
        stats["count"] += 1
        stats["total_ms"] += duration_ms
        stats["max_ms"] = max(stats["max_ms"], duration_ms)

        projection_logger.logger.debug("metric", metric_type="latency", name=key, duration_ms=duration_ms)

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        key = self._key(name, tags)
        self.counters[key] = self.counters.get(key, 0) + value

        projection_logger.logger.debug("metric", metric_type="counter", name=key, value=value)

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        key = self._key(name, tags)
        self.gauges[key] = value

        projection_logger.logger.debug("metric", metric_type="gauge", name=key, value=value)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Counters, gauges and average/max latencies"""

        return {
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "latencies": {
                key: {
                    "count": stats["count"],
                    "avg_ms": stats["total_ms"] / stats["count"],
                    "max_ms": stats["max_ms"],
                }
                for key, stats in self.latencies.items()
            },
        }

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.latencies.clear()


# Global metrics collector
metrics = MetricsCollector()
