"""
Unit tests for ContentIndexer (in-memory store, fake provider).
"""

import unittest
from unittest.mock import MagicMock

from study.services.ai.config import AIConfig, ModelSelection
from study.services.ai.router import AIRouter
from study.services.content import ContentIndexer, ContentProcessor, RawDocument
from study.services.content.indexer import InMemoryIndexRegistry
from study.services.vectorstore import InMemoryVectorStore, RetrievalScope

from .fakes import FakeProvider, bag_of_words_vector

TEXT = (
    'Mitochondria produce ATP through cellular respiration. '
    'Ribosomes assemble proteins from amino acids. '
    'The nucleus stores the genetic material of the cell.'
)


def make_document(text=TEXT, source_id='notes-1'):
    return RawDocument(source_id=source_id, text=text, user_id='alice', course_id='bio', title='Cells')


class TestContentIndexer(unittest.TestCase):
    def setUp(self):
        self.provider = FakeProvider('primary')
        config = AIConfig(primary_provider='primary', models=ModelSelection(chat='c', embedding='e'))
        self.router = AIRouter(config, {'primary': self.provider})
        self.store = InMemoryVectorStore(dimensions=8)
        self.registry = InMemoryIndexRegistry()
        self.indexer = ContentIndexer(
            ContentProcessor(max_chunk_tokens=20, chunk_overlap=2),
            self.router,
            self.store,
            self.registry,
            batch_size=2,
        )

    def test_index_embeds_and_stores_every_chunk(self):
        result = self.indexer.index(make_document())
        self.assertFalse(result.skipped)
        self.assertGreater(result.chunk_count, 1)
        self.assertEqual(self.store.count(), result.chunk_count)
        self.assertEqual(self.registry.get_hash('notes-1'), result.content_hash)

    def test_embedding_requests_are_batched(self):
        result = self.indexer.index(make_document())
        sizes = [len(texts) for texts, _ in self.provider.embed_calls]
        self.assertTrue(all(size <= 2 for size in sizes))
        self.assertEqual(sum(sizes), result.chunk_count)

    def test_indexed_chunks_are_retrievable(self):
        self.indexer.index(make_document())
        expected = self.indexer.processor.process(make_document())[0].text
        hits = self.store.query(bag_of_words_vector(expected), 1, RetrievalScope('alice', course_id='bio'))
        self.assertEqual(hits[0].chunk.text, expected)

    def test_unchanged_document_is_skipped(self):
        self.indexer.index(make_document())
        calls = len(self.provider.embed_calls)
        result = self.indexer.index(make_document())
        self.assertTrue(result.skipped)
        self.assertEqual(result.chunk_count, 0)
        self.assertEqual(len(self.provider.embed_calls), calls)

    def test_force_reindexes_unchanged_document(self):
        first = self.indexer.index(make_document())
        second = self.indexer.index(make_document(), force=True)
        self.assertFalse(second.skipped)
        self.assertEqual(self.store.count(), first.chunk_count)

    def test_changed_document_retires_previous_chunks(self):
        self.indexer.index(make_document())
        result = self.indexer.index(make_document('Osmosis moves water across membranes.'))
        self.assertEqual(result.chunk_count, 1)
        self.assertEqual(self.store.count(), 1)
        hits = self.store.query(bag_of_words_vector('osmosis'), 5, RetrievalScope('alice'))
        self.assertEqual([h.chunk.text for h in hits], ['Osmosis moves water across membranes.'])

    def test_remove_clears_store_and_registry(self):
        self.indexer.index(make_document())
        self.indexer.index(make_document('Other notes.', source_id='notes-2'))
        self.indexer.remove('notes-1')
        self.assertIsNone(self.registry.get_hash('notes-1'))
        self.assertEqual(self.store.count(), 1)
        # Removed documents are indexed again on the next call.
        self.assertFalse(self.indexer.index(make_document()).skipped)

    def test_embed_calls_are_attributed_to_the_user(self):
        history = MagicMock()
        self.router = AIRouter(
            AIConfig(primary_provider='primary'), {'primary': self.provider}, history=history,
        )
        indexer = ContentIndexer(ContentProcessor(), self.router, self.store)
        indexer.index(make_document())
        kwargs = history.start.call_args.kwargs
        self.assertEqual(kwargs['user_id'], 'alice')
        self.assertEqual(kwargs['agent'], 'study.indexer')
        self.assertEqual(kwargs['operation'], 'embed')

    def test_course_move_reindexes_under_new_scope(self):
        self.indexer.index(make_document())
        moved = RawDocument(source_id='notes-1', text=TEXT, user_id='alice', course_id='chem', title='Cells')
        result = self.indexer.index(moved)

        self.assertFalse(result.skipped)
        query = bag_of_words_vector(TEXT)
        self.assertTrue(self.store.query(query, 5, RetrievalScope('alice', course_id='chem')))
        self.assertEqual(self.store.query(query, 5, RetrievalScope('alice', course_id='bio')), [])

    def test_owner_change_revokes_previous_owner(self):
        self.indexer.index(make_document())
        transferred = RawDocument(source_id='notes-1', text=TEXT, user_id='bob', course_id='bio', title='Cells')
        self.assertFalse(self.indexer.index(transferred).skipped)
        query = bag_of_words_vector(TEXT)
        self.assertEqual(self.store.query(query, 5, RetrievalScope('alice')), [])
        self.assertTrue(self.store.query(query, 5, RetrievalScope('bob')))
