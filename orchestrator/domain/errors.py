from typing import Optional


class OrchestratorError(Exception):
    """Base error for the orchestrator"""


class ProjectNotFoundError(OrchestratorError, LookupError):
    """Raised when a caller references a project that has not been projected"""

    def __init__(self, project_id: str):
        super().__init__(f"Project {project_id} not found")
        self.project_id = project_id


class InvalidEventError(OrchestratorError, ValueError):
    """Raised when an event cannot be appended or its payload cannot be parsed"""

    def __init__(self, message: str, event_type: Optional[str] = None):
        super().__init__(message)
        self.event_type = event_type


class UnknownEventTypeError(InvalidEventError):
    """Raised at the dispatch boundary for types outside the closed event set"""

    def __init__(self, event_type: str):
        super().__init__(f"Unknown event type: {event_type}", event_type=event_type)


class EmbeddingUnavailableError(OrchestratorError):
    """Raised when no embedding provider is configured or the provider fails"""


class SummarizationError(OrchestratorError):
    """Raised when the text generation provider fails to summarize"""
