"""Dataclasses for study content moving through the write path."""

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence

from study.services.base import InvalidArgument


@dataclass(frozen=True)
class RawDocument:
    """Study material as uploaded by a user (notes, documents)."""

    source_id: str
    text: str
    user_id: str
    course_id: Optional[str] = None
    title: str = ''
    content_type: str = 'text/plain'

    def __post_init__(self) -> None:
        if not self.source_id:
            raise InvalidArgument('RawDocument.source_id is required.')
        if not self.user_id:
            raise InvalidArgument('RawDocument.user_id is required.')


@dataclass(frozen=True)
class ContentChunk:
    """A bounded span of a source document.

    Chunks are never mutated in place; :meth:`with_embedding` returns a copy.
    """

    chunk_id: str
    source_id: str
    ordinal: int
    text: str
    token_count: int
    user_id: str
    course_id: Optional[str] = None
    embedding: Optional[tuple[float, ...]] = None
    metadata: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def with_embedding(self, embedding: Sequence[float]) -> 'ContentChunk':
        return replace(self, embedding=tuple(float(x) for x in embedding))


@dataclass(frozen=True)
class ProcessedDocument:
    title: str
    chunks: list[ContentChunk]
    content_hash: str
    word_count: int
    estimated_reading_time: int  # minutes
