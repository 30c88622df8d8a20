"""
Unit tests for the RAG pipeline.
"""

import unittest

from django.conf import settings

from study.services.agents import AgentRegistry, AgentService
from study.services.ai.config import AIConfig, ModelSelection
from study.services.ai.router import AIRouter
from study.services.ai.schemas import ChatOptions
from study.services.base import InvalidArgument, NoContentAvailable
from study.services.content.schemas import ContentChunk
from study.services.rag import RAGPipeline
from study.services.vectorstore import InMemoryVectorStore, RetrievalScope
from study.services.vectorstore.base import ScoredChunk

from .fakes import FakeProvider, bag_of_words_vector


def make_chunk(chunk_id, text, *, source_id='notes-1', ordinal=0, user_id='alice', token_count=None):
    return ContentChunk(
        chunk_id=chunk_id,
        source_id=source_id,
        ordinal=ordinal,
        text=text,
        token_count=token_count if token_count is not None else len(text.split()),
        user_id=user_id,
        course_id='bio',
        embedding=tuple(bag_of_words_vector(text)),
    )


def make_pipeline(reply='Answer from notes [Source 1].', max_context_tokens=3000):
    provider = FakeProvider('primary', reply=reply)
    router = AIRouter(
        AIConfig(primary_provider='primary', models=ModelSelection(chat='chat-model', embedding='embed-model')),
        {'primary': provider},
    )
    store = InMemoryVectorStore(dimensions=8)
    agents = AgentService(router, AgentRegistry(settings.AGENTS_DIR))
    pipeline = RAGPipeline(router, store, agents, max_context_tokens=max_context_tokens)
    return pipeline, provider, store


ALICE = RetrievalScope('alice', course_id='bio')


class TestAnswer(unittest.TestCase):
    def setUp(self):
        self.pipeline, self.provider, self.store = make_pipeline()
        self.store.upsert([
            make_chunk('c1', 'Mitochondria produce ATP through cellular respiration.'),
            make_chunk('c2', 'Ribosomes assemble proteins from amino acids.', ordinal=1),
            make_chunk('b1', 'Secret notes belonging to another student.', source_id='bob-notes', user_id='bob'),
        ])

    def test_answer_returns_router_response(self):
        response = self.pipeline.answer('What do mitochondria produce?', ALICE)
        self.assertEqual(response.content, 'Answer from notes [Source 1].')
        self.assertEqual(response.provider, 'primary')

    def test_context_precedes_query_in_user_message(self):
        self.pipeline.answer('What do mitochondria produce?', ALICE)
        messages, options = self.provider.chat_calls[0]
        self.assertEqual(messages[0].role, 'system')
        user_message = messages[1].content
        self.assertIn('Context:\n[Source 1]: ', user_message)
        self.assertLess(user_message.index('[Source 1]'), user_message.index('Input:\nWhat do mitochondria produce?'))
        self.assertEqual(options.temperature, 0.3)
        self.assertEqual(options.max_tokens, 500)

    def test_retrieval_is_scoped_to_the_user(self):
        result = self.pipeline.answer_with_sources('Whose notes are these?', ALICE)
        self.assertEqual(result.sources, ['notes-1'])
        self.assertNotIn('Secret notes', self.provider.chat_calls[0][0][1].content)

    def test_max_chunks_limits_context(self):
        result = self.pipeline.answer_with_sources('cells', ALICE, max_chunks=1)
        self.assertEqual(len(result.chunks), 1)
        self.assertNotIn('[Source 2]', self.provider.chat_calls[0][0][1].content)

    def test_query_embedded_through_router(self):
        self.pipeline.answer('What do ribosomes do?', ALICE)
        texts, model = self.provider.embed_calls[0]
        self.assertEqual(texts, ['What do ribosomes do?'])
        self.assertEqual(model, 'embed-model')

    def test_options_override_agent_defaults(self):
        self.pipeline.answer('ATP?', ALICE, options=ChatOptions(max_tokens=64))
        options = self.provider.chat_calls[0][1]
        self.assertEqual(options.max_tokens, 64)
        self.assertEqual(options.temperature, 0.3)

    def test_no_content_raises_without_chat_call(self):
        with self.assertRaises(NoContentAvailable):
            self.pipeline.answer('anything', RetrievalScope('carol'))
        self.assertEqual(self.provider.chat_calls, [])

    def test_empty_query_rejected(self):
        for query in ('', '   '):
            with self.assertRaises(InvalidArgument):
                self.pipeline.answer(query, ALICE)
        self.assertEqual(self.provider.embed_calls, [])

    def test_invalid_max_chunks_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.pipeline.answer('ATP?', ALICE, max_chunks=0)


class TestContextFitting(unittest.TestCase):
    def setUp(self):
        self.pipeline, _, _ = make_pipeline(max_context_tokens=8)

    def test_lowest_similarity_chunks_dropped_first(self):
        hits = [
            ScoredChunk(make_chunk('a', 'one two three four', token_count=4), 0.9),
            ScoredChunk(make_chunk('b', 'five six seven eight', token_count=4), 0.5),
            ScoredChunk(make_chunk('c', 'nine ten eleven twelve', token_count=4), 0.7),
        ]
        fitted = self.pipeline.fit_context(hits)
        self.assertEqual([h.chunk.chunk_id for h in fitted], ['a', 'c'])

    def test_oversized_best_chunk_is_truncated(self):
        text = ' '.join(f'w{i}' for i in range(20))
        hits = [
            ScoredChunk(make_chunk('big', text, token_count=27), 0.9),
            ScoredChunk(make_chunk('other', text, token_count=27), 0.4),
        ]
        fitted = self.pipeline.fit_context(hits)
        self.assertEqual(len(fitted), 1)
        self.assertEqual(fitted[0].chunk.chunk_id, 'big')
        self.assertEqual(fitted[0].chunk.text, 'w0 w1 w2 w3 w4 w5 w6')
        self.assertLessEqual(fitted[0].chunk.token_count, 8)
        self.assertEqual(fitted[0].score, 0.9)

    def test_format_context_numbers_sources(self):
        hits = [
            ScoredChunk(make_chunk('a', 'first passage'), 0.9),
            ScoredChunk(make_chunk('b', 'second passage'), 0.8),
        ]
        self.assertEqual(
            RAGPipeline.format_context(hits),
            '[Source 1]: first passage\n\n[Source 2]: second passage',
        )

    def test_confidence(self):
        hits = [
            ScoredChunk(make_chunk('a', 'x'), 0.9),
            ScoredChunk(make_chunk('b', 'y'), 0.7),
        ]
        self.assertAlmostEqual(RAGPipeline.confidence(hits), 0.76)
        self.assertEqual(RAGPipeline.confidence([]), 0.0)

    def test_invalid_budget(self):
        with self.assertRaises(InvalidArgument):
            make_pipeline(max_context_tokens=0)


class TestQuestionsAndSummaries(unittest.TestCase):
    def test_generate_questions_strips_list_markers(self):
        reply = '1. What is ATP?\n2) Where are ribosomes?\n\n- Why do cells divide?\n* What is osmosis?\n5. A?\n6. B?'
        pipeline, provider, _ = make_pipeline(reply=reply)
        questions = pipeline.generate_questions('Cell biology notes.', user_id='alice')
        self.assertEqual(questions, [
            'What is ATP?',
            'Where are ribosomes?',
            'Why do cells divide?',
            'What is osmosis?',
            'A?',
        ])
        options = provider.chat_calls[0][1]
        self.assertEqual((options.temperature, options.max_tokens), (0.5, 300))

    def test_generate_questions_truncates_long_content(self):
        pipeline, provider, _ = make_pipeline(reply='1. Q?')
        pipeline.generate_questions('x' * 5000)
        user_message = provider.chat_calls[0][0][1].content
        self.assertIn('x' * 2000, user_message)
        self.assertNotIn('x' * 2001, user_message)

    def test_summarize_sets_token_limit_from_word_limit(self):
        pipeline, provider, _ = make_pipeline(reply='  Short summary.  ')
        summary = pipeline.summarize('Long study notes about cells.', max_words=100)
        self.assertEqual(summary, 'Short summary.')
        messages, options = provider.chat_calls[0]
        self.assertEqual((options.temperature, options.max_tokens), (0.3, 150))
        self.assertIn('max_words: 100', messages[1].content)

    def test_empty_content_rejected(self):
        pipeline, _, _ = make_pipeline()
        with self.assertRaises(InvalidArgument):
            pipeline.generate_questions(' ')
        with self.assertRaises(InvalidArgument):
            pipeline.summarize('')
