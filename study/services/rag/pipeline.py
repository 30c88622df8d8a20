"""Retrieval-augmented answering over a user's own study material."""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Optional

from study.services.agents import AgentService
from study.services.ai.router import AIRouter
from study.services.ai.schemas import ChatOptions, ChatResponse
from study.services.base import InvalidArgument, NoContentAvailable
from study.services.content.processor import estimate_token_count
from study.services.vectorstore.base import RetrievalScope, ScoredChunk, VectorStore, validate_k

logger = logging.getLogger(__name__)

ANSWER_AGENT = 'rag-answer'
QUESTION_AGENT = 'question-generator'
SUMMARY_AGENT = 'summarizer'

DEFAULT_MAX_CHUNKS = 5
DEFAULT_MAX_CONTEXT_TOKENS = 3000
QUESTION_CONTENT_CHARS = 2000
MAX_QUESTIONS = 5

_LIST_PREFIX = re.compile(r'^\s*(?:\d+[.)]|[-*•])\s*')


@dataclass
class RAGAnswer:
    """An answer together with the passages it was grounded on."""

    response: ChatResponse
    chunks: list[ScoredChunk]
    sources: list[str] = field(default_factory=list)
    confidence: float = 0.0

    @property
    def answer(self) -> str:
        return self.response.content


class RAGPipeline:
    """Embed the query, retrieve in scope, fit the context and ask the router.

    Retrieved passages are numbered ``[Source n]`` in similarity order and
    placed ahead of the user's question. When the passages exceed
    ``max_context_tokens`` the least similar ones are dropped first; if even
    the best passage is too long it is cut to the budget.
    """

    def __init__(
        self,
        router: AIRouter,
        store: VectorStore,
        agents: AgentService,
        *,
        max_context_tokens: int = DEFAULT_MAX_CONTEXT_TOKENS,
    ) -> None:
        if max_context_tokens < 1:
            raise InvalidArgument('max_context_tokens must be positive.')
        self.router = router
        self.store = store
        self.agents = agents
        self.max_context_tokens = max_context_tokens

    def answer(
        self,
        query: str,
        scope: RetrievalScope,
        *,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        options: Optional[ChatOptions] = None,
    ) -> ChatResponse:
        """Answer *query* from the material visible to *scope*.

        Raises:
            InvalidArgument: Empty query or bad ``max_chunks``.
            NoContentAvailable: Nothing in scope matched.
            BudgetExceeded / AllProvidersExhausted: From the router.
        """
        return self.answer_with_sources(query, scope, max_chunks=max_chunks, options=options).response

    def answer_with_sources(
        self,
        query: str,
        scope: RetrievalScope,
        *,
        max_chunks: int = DEFAULT_MAX_CHUNKS,
        options: Optional[ChatOptions] = None,
    ) -> RAGAnswer:
        if not isinstance(query, str) or not query.strip():
            raise InvalidArgument('Query must be a non-empty string.')
        validate_k(max_chunks)

        hits = self.retrieve(query, scope, max_chunks)
        if not hits:
            raise NoContentAvailable(f'No study material matched the query for user {scope.user_id}.')

        fitted = self.fit_context(hits)
        logger.debug(
            'RAG context for user %s: %d of %d chunk(s) kept', scope.user_id, len(fitted), len(hits),
        )

        result = self.agents.run_agent(
            ANSWER_AGENT,
            task_input=query.strip(),
            context=self.format_context(fitted),
            options=options,
            user_id=scope.user_id,
        )
        return RAGAnswer(
            response=result.response,
            chunks=fitted,
            sources=_unique(hit.chunk.source_id for hit in fitted),
            confidence=self.confidence(fitted),
        )

    def retrieve(self, query: str, scope: RetrievalScope, k: int) -> list[ScoredChunk]:
        embedded = self.router.embed([query], agent='study.rag.embed', user_id=scope.user_id)
        return self.store.query(embedded.embeddings[0], k, scope)

    def fit_context(self, hits: list[ScoredChunk]) -> list[ScoredChunk]:
        """Keep the most similar chunks whose combined size fits the context budget."""
        kept = sorted(hits, key=lambda h: (-h.score, h.chunk.ordinal, h.chunk.chunk_id))
        while kept and sum(h.chunk.token_count for h in kept) > self.max_context_tokens:
            kept.pop()
        if kept:
            return kept

        best = min(hits, key=lambda h: (-h.score, h.chunk.ordinal, h.chunk.chunk_id))
        return [ScoredChunk(self._truncate(best.chunk), best.score)]

    def _truncate(self, chunk):
        words = chunk.text.split()
        keep = len(words)
        while keep > 1 and estimate_token_count(keep) > self.max_context_tokens:
            keep -= 1
        return replace(chunk, text=' '.join(words[:keep]), token_count=estimate_token_count(keep))

    @staticmethod
    def format_context(hits: list[ScoredChunk]) -> str:
        return '\n\n'.join(
            f'[Source {index}]: {hit.chunk.text}' for index, hit in enumerate(hits, start=1)
        )

    @staticmethod
    def confidence(hits: list[ScoredChunk]) -> float:
        if not hits:
            return 0.0
        mean_similarity = sum(h.score for h in hits) / len(hits)
        coverage = min(len(hits) / 3, 1.0)
        return round(mean_similarity * 0.7 + coverage * 0.3, 2)

    def generate_questions(self, content: str, *, user_id: Optional[str] = None) -> list[str]:
        """Return up to five self-study questions about *content*."""
        if not content or not content.strip():
            raise InvalidArgument('Content must be a non-empty string.')

        result = self.agents.run_agent(
            QUESTION_AGENT,
            task_input=content.strip()[:QUESTION_CONTENT_CHARS],
            user_id=user_id,
        )
        questions = []
        for line in result.output_text.splitlines():
            line = _LIST_PREFIX.sub('', line).strip()
            if line:
                questions.append(line)
        return questions[:MAX_QUESTIONS]

    def summarize(self, content: str, max_words: int = 200, *, user_id: Optional[str] = None) -> str:
        if not content or not content.strip():
            raise InvalidArgument('Content must be a non-empty string.')
        if max_words < 1:
            raise InvalidArgument('max_words must be positive.')

        result = self.agents.run_agent(
            SUMMARY_AGENT,
            task_input={'max_words': max_words, 'content': content.strip()},
            options=ChatOptions(temperature=0.3, max_tokens=int(max_words * 1.5)),
            user_id=user_id,
        )
        return result.output_text


def _unique(values) -> list[str]:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen
