"""
Weaviate-backed :class:`~study.services.vectorstore.base.VectorStore` – Schema v1.

Object IDs:
    Chunk ids minted by the content processor are uuid strings and are used
    as Weaviate object ids directly. Any other id is mapped through
    ``uuid.uuid5(NAMESPACE_UUID, chunk_id)``.

NAMESPACE_UUID is a stable constant (never regenerated at runtime).

Replacing a source writes the new chunks under a fresh ``generation`` value
first and only then deletes the older generations, so queries never see a
source with some of its chunks missing.
"""

import logging
import uuid
from typing import Optional, Sequence, Union

import weaviate
from weaviate.classes.data import DataObject
from weaviate.classes.query import Filter, MetadataQuery
from weaviate.exceptions import ObjectAlreadyExistsError, UnexpectedStatusCodeError

from study.services.base import ServiceError
from study.services.content.schemas import ContentChunk
from study.services.vectorstore.base import RetrievalScope, ScoredChunk, VectorStore, rank, validate_k

from .client import get_client
from .schema import COLLECTION_NAME, ensure_schema

logger = logging.getLogger(__name__)

# Stable namespace UUID for deterministic object IDs.
# Must never be changed once objects have been written to Weaviate.
NAMESPACE_UUID = uuid.UUID("3b2f6f52-6c1e-4f0e-9a55-7d1c2f8e4b10")


def _make_uuid(chunk_id: Union[str, uuid.UUID]) -> uuid.UUID:
    """Return the Weaviate object id for *chunk_id*."""
    if isinstance(chunk_id, uuid.UUID):
        return chunk_id
    try:
        return uuid.UUID(chunk_id)
    except ValueError:
        return uuid.uuid5(NAMESPACE_UUID, chunk_id)


def _scope_filter(scope: RetrievalScope):
    flt = Filter.by_property("user_id").equal(scope.user_id)
    if scope.course_id is not None:
        flt = flt & Filter.by_property("course_id").equal(scope.course_id)
    if scope.source_ids is not None:
        flt = flt & Filter.by_property("source_id").contains_any(sorted(scope.source_ids))
    return flt


class WeaviateVectorStore(VectorStore):
    """
    Vector store on the Weaviate ``StudyChunk`` collection.

    Usage::

        with WeaviateVectorStore(dimensions=1536) as store:
            store.replace_source("note-1", chunks)
            hits = store.query(vector, k=5, scope=RetrievalScope(user_id="u1"))
    """

    def __init__(self, dimensions: int, client: Optional[weaviate.WeaviateClient] = None) -> None:
        """
        Args:
            dimensions: Embedding dimensionality enforced on insert and query.
            client: Optional pre-built Weaviate client (useful for testing).
                    If not provided, ``get_client()`` is called on first use.
        """
        super().__init__(dimensions)
        self._client: Optional[weaviate.WeaviateClient] = client
        self._owns_client = client is None

    # ------------------------------------------------------------------
    # Lifecycle helpers
    # ------------------------------------------------------------------

    def _get_client(self) -> weaviate.WeaviateClient:
        if self._client is None:
            self._client = get_client()
        return self._client

    def close(self) -> None:
        """Close the underlying Weaviate connection (if owned by this instance)."""
        if self._owns_client and self._client is not None:
            self._client.close()
            self._client = None

    def __enter__(self) -> "WeaviateVectorStore":
        return self

    def __exit__(self, *_) -> None:
        self.close()

    def _collection(self):
        client = self._get_client()
        ensure_schema(client)
        return client.collections.get(COLLECTION_NAME)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _to_object(chunk: ContentChunk, generation: str) -> DataObject:
        return DataObject(
            uuid=_make_uuid(chunk.chunk_id),
            vector=list(chunk.embedding),
            properties={
                "chunk_id": chunk.chunk_id,
                "source_id": chunk.source_id,
                "ordinal": chunk.ordinal,
                "text": chunk.text,
                "token_count": chunk.token_count,
                "user_id": chunk.user_id,
                "course_id": chunk.course_id or "",
                "title": chunk.metadata.get("title", ""),
                "generation": generation,
            },
        )

    @staticmethod
    def _to_chunk(obj) -> ContentChunk:
        props = obj.properties
        title = props.get("title") or ""
        return ContentChunk(
            chunk_id=props.get("chunk_id") or str(obj.uuid),
            source_id=props.get("source_id", ""),
            ordinal=int(props.get("ordinal") or 0),
            text=props.get("text", "") or "",
            token_count=int(props.get("token_count") or 0),
            user_id=props.get("user_id", ""),
            course_id=props.get("course_id") or None,
            metadata={"title": title} if title else {},
        )

    def _insert(self, collection, chunks: Sequence[ContentChunk], generation: str) -> None:
        if not chunks:
            return
        result = collection.data.insert_many([self._to_object(c, generation) for c in chunks])
        if getattr(result, "has_errors", False):
            errors = getattr(result, "errors", {})
            raise ServiceError(f"Weaviate insert failed for {len(errors)} chunk(s): {errors}")

    # ------------------------------------------------------------------
    # VectorStore API
    # ------------------------------------------------------------------

    def upsert(self, chunks: Sequence[ContentChunk]) -> None:
        """Insert chunks, replacing existing objects with the same chunk id."""
        self.check_chunks(chunks)
        collection = self._collection()
        generation = uuid.uuid4().hex
        for source_id in sorted({c.source_id for c in chunks}):
            with self._source_locks.hold(source_id):
                for chunk in (c for c in chunks if c.source_id == source_id):
                    obj = self._to_object(chunk, generation)
                    try:
                        collection.data.insert(properties=obj.properties, uuid=obj.uuid, vector=obj.vector)
                    except (ObjectAlreadyExistsError, UnexpectedStatusCodeError):
                        # Object already exists; replace it.
                        collection.data.replace(properties=obj.properties, uuid=obj.uuid, vector=obj.vector)
        logger.debug("Weaviate upsert: %d chunk(s)", len(chunks))

    def replace_source(self, source_id: str, chunks: Sequence[ContentChunk]) -> None:
        self.check_chunks(chunks, source_id=source_id)
        collection = self._collection()
        generation = uuid.uuid4().hex
        with self._source_locks.hold(source_id):
            self._insert(collection, chunks, generation)
            collection.data.delete_many(
                where=Filter.by_property("source_id").equal(source_id)
                & Filter.by_property("generation").not_equal(generation)
            )
        logger.debug("Weaviate replace_source: source_id=%s chunks=%d", source_id, len(chunks))

    def delete(self, source_id: str) -> None:
        collection = self._collection()
        with self._source_locks.hold(source_id):
            collection.data.delete_many(where=Filter.by_property("source_id").equal(source_id))
        logger.debug("Weaviate delete: source_id=%s", source_id)

    def delete_user(self, user_id: str) -> None:
        collection = self._collection()
        collection.data.delete_many(where=Filter.by_property("user_id").equal(user_id))
        logger.debug("Weaviate delete_user: user_id=%s", user_id)

    def query(self, embedding: Sequence[float], k: int, scope: RetrievalScope) -> list[ScoredChunk]:
        self.check_query_vector(embedding)
        validate_k(k)

        response = self._collection().query.near_vector(
            near_vector=[float(x) for x in embedding],
            limit=k,
            filters=_scope_filter(scope),
            return_metadata=MetadataQuery(distance=True),
        )

        results = []
        for obj in response.objects:
            distance = obj.metadata.distance if obj.metadata and obj.metadata.distance is not None else 1.0
            # Cosine distance is 1 - cosine similarity.
            results.append(ScoredChunk(self._to_chunk(obj), 1.0 - float(distance)))
        return rank(results, k)

    def count(self) -> int:
        return int(self._collection().aggregate.over_all(total_count=True).total_count or 0)
