from .base import EventStore, PendingEmbedding, ProjectionStore
from .memory_store import InMemoryStore, cosine_similarity

__all__ = [
    "EventStore",
    "PendingEmbedding",
    "ProjectionStore",
    "InMemoryStore",
    "cosine_similarity",
]
