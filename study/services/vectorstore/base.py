"""Vector store interface, retrieval scope and shared helpers."""

import abc
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterable, Iterator, NamedTuple, Optional, Sequence

from study.services.base import DimensionMismatch, InvalidArgument
from study.services.content.schemas import ContentChunk


@dataclass(frozen=True)
class RetrievalScope:
    """Restricts retrieval to content the caller may see.

    ``user_id`` is always enforced; ``course_id`` and ``source_ids`` narrow
    further when given.
    """

    user_id: str
    course_id: Optional[str] = None
    source_ids: Optional[frozenset] = None

    def __post_init__(self) -> None:
        if not self.user_id:
            raise InvalidArgument('RetrievalScope.user_id is required.')
        if self.source_ids is not None and not isinstance(self.source_ids, frozenset):
            object.__setattr__(self, 'source_ids', frozenset(self.source_ids))

    def allows(self, chunk: ContentChunk) -> bool:
        if chunk.user_id != self.user_id:
            return False
        if self.course_id is not None and chunk.course_id != self.course_id:
            return False
        if self.source_ids is not None and chunk.source_id not in self.source_ids:
            return False
        return True


class ScoredChunk(NamedTuple):
    chunk: ContentChunk
    score: float


def rank(results: Iterable[ScoredChunk], k: int) -> list[ScoredChunk]:
    """Order by similarity descending, ties by ordinal then chunk id ascending."""
    ordered = sorted(results, key=lambda r: (-r.score, r.chunk.ordinal, r.chunk.chunk_id))
    return ordered[:k]


def validate_k(k) -> int:
    if isinstance(k, bool) or not isinstance(k, int) or k < 1:
        raise InvalidArgument(f'k must be a positive integer, got {k!r}')
    return k


class SourceLocks:
    """One mutex per source document, held only while some thread uses it.

    Entries are reference counted and dropped when the last holder leaves,
    so the map is bounded by the number of sources currently being written.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, list] = {}  # source_id -> [lock, holders]

    @contextmanager
    def hold(self, source_id: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(source_id, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[source_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class VectorStore(abc.ABC):
    """Persists chunk embeddings and answers cosine nearest-neighbour queries."""

    def __init__(self, dimensions: int) -> None:
        if dimensions < 1:
            raise InvalidArgument('Vector store dimensions must be positive.')
        self.dimensions = dimensions
        self._source_locks = SourceLocks()

    # ------------------------------------------------------------------
    # Contract
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def upsert(self, chunks: Sequence[ContentChunk]) -> None:
        """Insert or replace chunks by chunk id. Every chunk needs an embedding."""

    @abc.abstractmethod
    def query(self, embedding: Sequence[float], k: int, scope: RetrievalScope) -> list[ScoredChunk]:
        """Return up to *k* in-scope chunks ordered by cosine similarity."""

    @abc.abstractmethod
    def delete(self, source_id: str) -> None:
        """Remove every chunk belonging to *source_id*."""

    @abc.abstractmethod
    def replace_source(self, source_id: str, chunks: Sequence[ContentChunk]) -> None:
        """Retire all chunks of *source_id* and store *chunks* in their place."""

    @abc.abstractmethod
    def delete_user(self, user_id: str) -> None:
        """Remove every chunk owned by *user_id*."""

    @abc.abstractmethod
    def count(self) -> int:
        """Number of stored entries."""

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    def check_query_vector(self, embedding: Sequence[float]) -> None:
        if len(embedding) != self.dimensions:
            raise DimensionMismatch(
                f'Query vector has {len(embedding)} dimensions, store expects {self.dimensions}.'
            )

    def check_chunks(self, chunks: Sequence[ContentChunk], source_id: Optional[str] = None) -> None:
        for chunk in chunks:
            if chunk.embedding is None:
                raise InvalidArgument(f'Chunk {chunk.chunk_id} has no embedding.')
            if len(chunk.embedding) != self.dimensions:
                raise DimensionMismatch(
                    f'Chunk {chunk.chunk_id} has {len(chunk.embedding)} dimensions, '
                    f'store expects {self.dimensions}.'
                )
            if source_id is not None and chunk.source_id != source_id:
                raise InvalidArgument(
                    f'Chunk {chunk.chunk_id} belongs to {chunk.source_id}, not {source_id}.'
                )
