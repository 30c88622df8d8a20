"""Study content processing and indexing."""

from .indexer import ContentIndexer, IndexResult
from .processor import ContentProcessor
from .schemas import ContentChunk, ProcessedDocument, RawDocument

__all__ = [
    'ContentChunk',
    'ContentIndexer',
    'ContentProcessor',
    'IndexResult',
    'ProcessedDocument',
    'RawDocument',
]
