"""Write path: process → embed through the router → replace in the vector store."""

import abc
import logging
import threading
from dataclasses import dataclass
from typing import Optional

from django.utils import timezone

from study.services.ai.router import AIRouter
from study.services.vectorstore.base import VectorStore

from .processor import ContentProcessor
from .schemas import RawDocument

logger = logging.getLogger(__name__)

EMBED_BATCH_SIZE = 64


@dataclass(frozen=True)
class IndexResult:
    source_id: str
    content_hash: str
    chunk_count: int
    skipped: bool = False


class IndexRegistry(abc.ABC):
    """Remembers the content hash each source was last indexed with."""

    @abc.abstractmethod
    def get_hash(self, source_id: str) -> Optional[str]:
        ...

    @abc.abstractmethod
    def record(self, document: RawDocument, content_hash: str, chunk_count: int) -> None:
        ...

    @abc.abstractmethod
    def forget(self, source_id: str) -> None:
        ...


class InMemoryIndexRegistry(IndexRegistry):
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hashes: dict[str, str] = {}

    def get_hash(self, source_id):
        with self._lock:
            return self._hashes.get(source_id)

    def record(self, document, content_hash, chunk_count):
        with self._lock:
            self._hashes[document.source_id] = content_hash

    def forget(self, source_id):
        with self._lock:
            self._hashes.pop(source_id, None)


class DatabaseIndexRegistry(IndexRegistry):
    """Backed by :class:`~study.models.IndexedDocument`."""

    def get_hash(self, source_id):
        from study.models import IndexedDocument  # local import

        row = IndexedDocument.objects.filter(source_id=source_id).only('content_hash').first()
        return row.content_hash if row is not None else None

    def record(self, document, content_hash, chunk_count):
        from study.models import IndexedDocument  # local import

        IndexedDocument.objects.update_or_create(
            source_id=document.source_id,
            defaults={
                'user_id': document.user_id,
                'course_id': document.course_id or '',
                'title': document.title,
                'content_hash': content_hash,
                'chunk_count': chunk_count,
                'indexed_at': timezone.now(),
            },
        )

    def forget(self, source_id):
        from study.models import IndexedDocument  # local import

        IndexedDocument.objects.filter(source_id=source_id).delete()


class ContentIndexer:
    """Keeps the vector store in sync with users' study material.

    Unchanged documents (same content hash) are skipped entirely. Changed
    documents get new chunk ids and the previous chunks are retired in the
    same :meth:`VectorStore.replace_source` step.
    """

    def __init__(
        self,
        processor: ContentProcessor,
        router: AIRouter,
        store: VectorStore,
        registry: Optional[IndexRegistry] = None,
        batch_size: int = EMBED_BATCH_SIZE,
    ) -> None:
        self.processor = processor
        self.router = router
        self.store = store
        self.registry = registry or InMemoryIndexRegistry()
        self.batch_size = batch_size

    def index(self, document: RawDocument, *, force: bool = False) -> IndexResult:
        content_hash = self.processor.content_hash(document)
        if not force and self.registry.get_hash(document.source_id) == content_hash:
            logger.info('Index skipped for source_id=%s (unchanged)', document.source_id)
            return IndexResult(document.source_id, content_hash, chunk_count=0, skipped=True)

        chunks = self.processor.process(document)
        embedded = []
        for start in range(0, len(chunks), self.batch_size):
            batch = chunks[start:start + self.batch_size]
            response = self.router.embed(
                [c.text for c in batch], agent='study.indexer', user_id=document.user_id,
            )
            embedded.extend(c.with_embedding(v) for c, v in zip(batch, response.embeddings))

        self.store.replace_source(document.source_id, embedded)
        self.registry.record(document, content_hash, len(embedded))
        logger.info('Indexed source_id=%s: %d chunk(s)', document.source_id, len(embedded))
        return IndexResult(document.source_id, content_hash, chunk_count=len(embedded))

    def remove(self, source_id: str) -> None:
        self.store.delete(source_id)
        self.registry.forget(source_id)
        logger.info('Removed source_id=%s from the index', source_id)
