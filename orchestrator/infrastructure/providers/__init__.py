from .base import EmbeddingProvider, TextGenerationProvider
from .openai_provider import OpenAIEmbeddingProvider, OpenAISummarizer, build_providers

__all__ = [
    "EmbeddingProvider",
    "TextGenerationProvider",
    "OpenAIEmbeddingProvider",
    "OpenAISummarizer",
    "build_providers",
]
