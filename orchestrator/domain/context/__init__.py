# This module handles context ranking and compression
#
# +---------------------+
# |  Projected entities |   (Current state, owned by the projector)
# |---------------------|
# | Blocks              |
# | Context items       |
# | GitHub entities     |
# +---------------------+
#
# +---------------------+
# |   Query relevance   |   (Optional, per request)
# |---------------------|
# | Textual overlap     |
# | Semantic similarity |
# +---------------------+
#
#    \    /
#     \  /
#      \/
# +------------------------------+
# |       Context preview        |   (Ranked, fitted to a token budget)
# |------------------------------|
# | Items sorted by score        |
# | Compressed overflow          |
# | Project summary line         |
# +------------------------------+
#         |
#         v
#   [LLM tool call]

from .context_compressor import CompressionResult, ContextCompressor, estimate_tokens
from .context_manager import ContextManager
from .context_ranker import ContextRanker
from .memory.embedding_cache import EmbeddingCache
from .memory.semantic_search import SemanticSearchAdapter
