"""Vector store interface and the in-process backend.

The Weaviate backend lives in :mod:`study.services.weaviate`.
"""

from .base import RetrievalScope, ScoredChunk, VectorStore
from .memory import InMemoryVectorStore

__all__ = [
    "InMemoryVectorStore",
    "RetrievalScope",
    "ScoredChunk",
    "VectorStore",
]
