"""In-process vector store backed by numpy."""

import logging
from types import MappingProxyType
from typing import Mapping, NamedTuple, Sequence

import numpy as np

from study.services.content.schemas import ContentChunk

from .base import RetrievalScope, ScoredChunk, VectorStore, rank, validate_k

logger = logging.getLogger(__name__)


class _Entry(NamedTuple):
    chunk: ContentChunk
    unit: np.ndarray  # L2-normalised embedding (all zeros for a zero vector)


def _normalise(vector: Sequence[float]) -> np.ndarray:
    arr = np.asarray(vector, dtype=np.float64)
    norm = np.linalg.norm(arr)
    return arr / norm if norm > 0 else np.zeros_like(arr)


class InMemoryVectorStore(VectorStore):
    """Keeps one immutable ``chunk_id → entry`` mapping per source document.

    Writers build a new mapping under the source's lock and publish it with a
    single assignment, so a concurrent :meth:`query` sees either the old or
    the new version of a source and never a half-replaced one.
    """

    def __init__(self, dimensions: int) -> None:
        super().__init__(dimensions)
        self._sources: dict[str, Mapping[str, _Entry]] = {}

    def upsert(self, chunks: Sequence[ContentChunk]) -> None:
        self.check_chunks(chunks)
        by_source: dict[str, list[ContentChunk]] = {}
        for chunk in chunks:
            by_source.setdefault(chunk.source_id, []).append(chunk)

        for source_id, source_chunks in by_source.items():
            with self._source_locks.hold(source_id):
                updated = dict(self._sources.get(source_id, {}))
                for chunk in source_chunks:
                    updated[chunk.chunk_id] = _Entry(chunk, _normalise(chunk.embedding))
                self._sources[source_id] = MappingProxyType(updated)
        logger.debug('InMemoryVectorStore upsert: %d chunk(s) across %d source(s)', len(chunks), len(by_source))

    def replace_source(self, source_id: str, chunks: Sequence[ContentChunk]) -> None:
        self.check_chunks(chunks, source_id=source_id)
        entries = {chunk.chunk_id: _Entry(chunk, _normalise(chunk.embedding)) for chunk in chunks}
        with self._source_locks.hold(source_id):
            if entries:
                self._sources[source_id] = MappingProxyType(entries)
            else:
                self._sources.pop(source_id, None)
        logger.debug('InMemoryVectorStore replace_source: source_id=%s chunks=%d', source_id, len(entries))

    def delete(self, source_id: str) -> None:
        with self._source_locks.hold(source_id):
            self._sources.pop(source_id, None)
        logger.debug('InMemoryVectorStore delete: source_id=%s', source_id)

    def delete_user(self, user_id: str) -> None:
        owned = [
            source_id
            for source_id, entries in tuple(self._sources.items())
            if any(e.chunk.user_id == user_id for e in entries.values())
        ]
        for source_id in owned:
            self.delete(source_id)

    def query(self, embedding: Sequence[float], k: int, scope: RetrievalScope) -> list[ScoredChunk]:
        self.check_query_vector(embedding)
        validate_k(k)

        candidates = [
            entry
            for entries in tuple(self._sources.values())
            for entry in entries.values()
            if scope.allows(entry.chunk)
        ]
        if not candidates:
            return []

        matrix = np.vstack([entry.unit for entry in candidates])
        scores = matrix @ _normalise(embedding)
        return rank(
            (ScoredChunk(entry.chunk, float(score)) for entry, score in zip(candidates, scores)),
            k,
        )

    def count(self) -> int:
        return sum(len(entries) for entries in tuple(self._sources.values()))

    def stats(self, user_id: str | None = None) -> dict:
        """Chunk / source totals, optionally for one user."""
        per_source = {
            source_id: sum(1 for e in entries.values() if user_id is None or e.chunk.user_id == user_id)
            for source_id, entries in tuple(self._sources.items())
        }
        per_source = {s: n for s, n in per_source.items() if n}
        total_chunks = sum(per_source.values())
        total_sources = len(per_source)
        return {
            'total_chunks': total_chunks,
            'total_sources': total_sources,
            'avg_chunks_per_source': total_chunks / total_sources if total_sources else 0.0,
        }
