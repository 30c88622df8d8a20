"""
Content processor – normalises raw study material into embeddable chunks.

Chunking:
    The text is split into sentences, and sentences are packed into chunks of
    at most ``max_chunk_tokens`` estimated tokens. Each new chunk starts with
    the last ``chunk_overlap`` words of the previous one so context carries
    across boundaries. Sentences longer than a whole chunk are split on word
    boundaries.

Boundaries and ordinals depend only on the text and the configuration;
chunk ids are minted fresh (uuid4) on every run.
"""

import hashlib
import logging
import math
import re
import uuid
from collections import Counter

from study.services.base import InvalidArgument

from .schemas import ContentChunk, ProcessedDocument, RawDocument

logger = logging.getLogger(__name__)

SUPPORTED_CONTENT_TYPES = ('text/plain', 'text/markdown')
MAX_DOCUMENT_BYTES = 50 * 1024 * 1024  # 50MB
WORDS_PER_MINUTE = 250
TOKENS_PER_WORD = 1.33

_SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+')
_NON_WORD = re.compile(r'\W+')

_STOP_WORDS = frozenset({
    'the', 'a', 'an', 'and', 'or', 'but', 'in', 'on', 'at', 'to', 'for', 'of', 'with', 'by',
    'this', 'that', 'these', 'those', 'from', 'are', 'was', 'were', 'have', 'has', 'been',
    'which', 'their', 'there', 'will', 'would', 'into', 'also', 'than', 'then',
})


def estimate_token_count(word_count: int) -> int:
    """Rough estimate: one word is about 1.33 tokens."""
    return math.ceil(word_count * TOKENS_PER_WORD)


class ContentProcessor:
    """Turns a :class:`RawDocument` into an ordered list of :class:`ContentChunk`."""

    def __init__(self, max_chunk_tokens: int = 512, chunk_overlap: int = 50) -> None:
        if max_chunk_tokens < 2:
            raise InvalidArgument('max_chunk_tokens must be at least 2.')
        if chunk_overlap < 0:
            raise InvalidArgument('chunk_overlap must not be negative.')
        self.max_chunk_tokens = max_chunk_tokens
        self.chunk_overlap = chunk_overlap

        max_words = int(max_chunk_tokens / TOKENS_PER_WORD)
        while max_words > 1 and estimate_token_count(max_words) > max_chunk_tokens:
            max_words -= 1
        self._max_words = max(1, max_words)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def process(self, document: RawDocument) -> list[ContentChunk]:
        """Split *document* into chunks.

        Raises:
            InvalidArgument: Empty, oversized or unsupported documents.
        """
        return self.process_document(document).chunks

    def process_document(self, document: RawDocument) -> ProcessedDocument:
        """Like :meth:`process`, plus hash and reading statistics."""
        text = self._validate(document)
        words_per_chunk = self._chunk_words(self._split_sentences(text))

        chunks = [
            ContentChunk(
                chunk_id=str(uuid.uuid4()),
                source_id=document.source_id,
                ordinal=ordinal,
                text=' '.join(words),
                token_count=estimate_token_count(len(words)),
                user_id=document.user_id,
                course_id=document.course_id,
                metadata={'title': document.title} if document.title else {},
            )
            for ordinal, words in enumerate(words_per_chunk)
        ]

        word_count = len(text.split())
        logger.debug(
            'Processed source_id=%s into %d chunk(s) (%d words)',
            document.source_id, len(chunks), word_count,
        )
        return ProcessedDocument(
            title=document.title or document.source_id,
            chunks=chunks,
            content_hash=self.content_hash(document),
            word_count=word_count,
            estimated_reading_time=math.ceil(word_count / WORDS_PER_MINUTE),
        )

    def content_hash(self, document: RawDocument) -> str:
        """Stable fingerprint of the text, its owner and course, and the chunking configuration.

        Chunks carry the owner, course and title, so moving a document to
        another course or user changes the hash and forces a reindex.
        """
        normalized = ' '.join(document.text.split())
        digest = hashlib.sha256()
        digest.update(f'{self.max_chunk_tokens}:{self.chunk_overlap}:'.encode('utf-8'))
        for value in (document.user_id, document.course_id or '', document.title, document.content_type):
            digest.update(value.encode('utf-8') + b'\x00')
        digest.update(normalized.encode('utf-8'))
        return digest.hexdigest()

    @staticmethod
    def extract_key_terms(text: str, limit: int = 10) -> list[str]:
        """Most frequent non-stop-words longer than three characters."""
        words = [w for w in _NON_WORD.split(text.lower()) if len(w) > 3 and w not in _STOP_WORDS]
        return [word for word, _ in Counter(words).most_common(limit)]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(document: RawDocument) -> str:
        if document.content_type not in SUPPORTED_CONTENT_TYPES:
            raise InvalidArgument(f'Unsupported content type: {document.content_type}')
        size = len(document.text.encode('utf-8'))
        if size > MAX_DOCUMENT_BYTES:
            raise InvalidArgument(f'Document too large: {size} bytes (max: {MAX_DOCUMENT_BYTES})')
        text = document.text.strip()
        if not text:
            raise InvalidArgument(f'Document {document.source_id} is empty.')
        return text

    @staticmethod
    def _split_sentences(text: str) -> list[str]:
        return [s.strip() for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]

    def _chunk_words(self, sentences: list[str]) -> list[list[str]]:
        chunks: list[list[str]] = []
        current: list[str] = []

        for sentence in sentences:
            words = sentence.split()
            # Oversized sentences are cut into pieces that fit a chunk on their own.
            pieces = [words[i:i + self._max_words] for i in range(0, len(words), self._max_words)]
            for piece in pieces:
                if current and len(current) + len(piece) > self._max_words:
                    chunks.append(current)
                    keep = min(self.chunk_overlap, self._max_words - len(piece), len(current))
                    current = current[-keep:] if keep > 0 else []
                current = current + piece

        if current:
            chunks.append(current)
        return chunks
