"""
Weaviate service package.

Exports the public API surface; no network I/O or initialisation on import.
"""

from .client import get_client, is_available
from .store import WeaviateVectorStore

__all__ = [
    "WeaviateVectorStore",
    "get_client",
    "is_available",
]
