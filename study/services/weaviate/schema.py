"""
Weaviate schema management – Schema v1.

Defines the ``StudyChunk`` collection and ensures it exists before first use.
Vectors are supplied by the AI router (no server-side vectorizer) and
indexed with cosine distance.

Schema version: 1
Collection: StudyChunk

Upgrade strategy (v2+):
    Increment SCHEMA_VERSION and add a ``migrate_v1_to_v2(client)`` step.
    Changing the embedding model changes the vector dimensionality, which
    requires re-indexing every source document into a fresh collection.
"""

import logging

import weaviate
import weaviate.classes.config as wc

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
COLLECTION_NAME = "StudyChunk"

_schema_ensured = False

_STUDY_CHUNK_PROPERTIES = [
    wc.Property(name="chunk_id", data_type=wc.DataType.TEXT),
    wc.Property(name="source_id", data_type=wc.DataType.TEXT),
    wc.Property(name="ordinal", data_type=wc.DataType.INT),
    wc.Property(name="text", data_type=wc.DataType.TEXT),
    wc.Property(name="token_count", data_type=wc.DataType.INT),
    wc.Property(name="user_id", data_type=wc.DataType.TEXT),
    wc.Property(name="course_id", data_type=wc.DataType.TEXT),
    wc.Property(name="title", data_type=wc.DataType.TEXT),
    # Batch marker used to retire the previous version of a source.
    wc.Property(name="generation", data_type=wc.DataType.TEXT),
]


def ensure_schema(client: weaviate.WeaviateClient) -> None:
    """
    Ensure the ``StudyChunk`` collection exists in Weaviate.

    Lazy: called only on first store use.
    Cached: runs only once per process (module-level flag).
    """
    global _schema_ensured
    if _schema_ensured:
        return

    if client.collections.exists(COLLECTION_NAME):
        logger.debug("Weaviate schema v%d: collection '%s' already exists.", SCHEMA_VERSION, COLLECTION_NAME)
    else:
        client.collections.create(
            name=COLLECTION_NAME,
            properties=_STUDY_CHUNK_PROPERTIES,
            vectorizer_config=wc.Configure.Vectorizer.none(),
            vector_index_config=wc.Configure.VectorIndex.hnsw(
                distance_metric=wc.VectorDistances.COSINE,
            ),
        )
        logger.debug("Weaviate schema v%d: collection '%s' created.", SCHEMA_VERSION, COLLECTION_NAME)

    _schema_ensured = True


def reset_schema_cache() -> None:
    """Reset the in-process schema cache. Intended for use in tests only."""
    global _schema_ensured
    _schema_ensured = False
