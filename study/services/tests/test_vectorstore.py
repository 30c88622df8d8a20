"""
Unit tests for the in-memory vector store and retrieval helpers.
"""

import threading
import unittest

from study.services.base import DimensionMismatch, InvalidArgument
from study.services.content.schemas import ContentChunk
from study.services.vectorstore import InMemoryVectorStore, RetrievalScope
from study.services.vectorstore.base import ScoredChunk, SourceLocks, rank, validate_k


def chunk(chunk_id, embedding, *, source_id='src-1', ordinal=0, user_id='alice', course_id='bio', text=None):
    return ContentChunk(
        chunk_id=chunk_id,
        source_id=source_id,
        ordinal=ordinal,
        text=text or f'text of {chunk_id}',
        token_count=3,
        user_id=user_id,
        course_id=course_id,
        embedding=tuple(embedding) if embedding is not None else None,
    )


ALICE = RetrievalScope(user_id='alice')


class TestRankingHelpers(unittest.TestCase):
    def test_rank_orders_by_score_then_ordinal_then_id(self):
        results = [
            ScoredChunk(chunk('b', [1, 0], ordinal=2), 0.5),
            ScoredChunk(chunk('a', [1, 0], ordinal=2), 0.5),
            ScoredChunk(chunk('c', [1, 0], ordinal=1), 0.5),
            ScoredChunk(chunk('d', [1, 0], ordinal=9), 0.9),
        ]
        self.assertEqual([r.chunk.chunk_id for r in rank(results, 10)], ['d', 'c', 'a', 'b'])
        self.assertEqual(len(rank(results, 2)), 2)

    def test_validate_k(self):
        self.assertEqual(validate_k(3), 3)
        for bad in (0, -1, 2.5, '3', True, None):
            with self.assertRaises(InvalidArgument):
                validate_k(bad)

    def test_scope_requires_user(self):
        with self.assertRaises(InvalidArgument):
            RetrievalScope(user_id='')

    def test_scope_source_ids_frozen(self):
        scope = RetrievalScope(user_id='alice', source_ids=['a', 'b'])
        self.assertEqual(scope.source_ids, frozenset({'a', 'b'}))


class TestInMemoryVectorStore(unittest.TestCase):
    def setUp(self):
        self.store = InMemoryVectorStore(dimensions=3)

    def test_round_trip_returns_same_chunk_first(self):
        self.store.upsert([
            chunk('c1', [1.0, 0.0, 0.0], ordinal=0),
            chunk('c2', [0.0, 1.0, 0.0], ordinal=1),
            chunk('c3', [0.6, 0.8, 0.0], ordinal=2),
        ])
        results = self.store.query([0.0, 2.0, 0.0], 3, ALICE)
        self.assertEqual(results[0].chunk.chunk_id, 'c2')
        self.assertAlmostEqual(results[0].score, 1.0, places=6)
        self.assertAlmostEqual(results[1].score, 0.8, places=6)
        self.assertEqual([r.chunk.chunk_id for r in results], ['c2', 'c3', 'c1'])

    def test_fewer_results_than_k(self):
        self.store.upsert([chunk('c1', [1, 0, 0])])
        self.assertEqual(len(self.store.query([1, 0, 0], 5, ALICE)), 1)

    def test_empty_store_returns_nothing(self):
        self.assertEqual(self.store.query([1, 0, 0], 5, ALICE), [])

    def test_ties_broken_by_ordinal(self):
        self.store.upsert([
            chunk('z', [1, 0, 0], ordinal=4),
            chunk('y', [1, 0, 0], ordinal=1),
        ])
        self.assertEqual([r.chunk.chunk_id for r in self.store.query([1, 0, 0], 2, ALICE)], ['y', 'z'])

    def test_scope_isolation_between_users(self):
        self.store.upsert([
            chunk('a1', [1, 0, 0], user_id='alice', source_id='a-doc'),
            chunk('b1', [1, 0, 0], user_id='bob', source_id='b-doc'),
        ])
        results = self.store.query([1, 0, 0], 10, ALICE)
        self.assertEqual([r.chunk.chunk_id for r in results], ['a1'])

    def test_scope_course_and_source_filters(self):
        self.store.upsert([
            chunk('bio1', [1, 0, 0], course_id='bio', source_id='s1'),
            chunk('chem1', [1, 0, 0], course_id='chem', source_id='s2'),
            chunk('bio2', [0.9, 0.1, 0], course_id='bio', source_id='s3'),
        ])
        by_course = self.store.query([1, 0, 0], 10, RetrievalScope('alice', course_id='bio'))
        self.assertEqual({r.chunk.chunk_id for r in by_course}, {'bio1', 'bio2'})
        by_source = self.store.query([1, 0, 0], 10, RetrievalScope('alice', source_ids={'s3'}))
        self.assertEqual([r.chunk.chunk_id for r in by_source], ['bio2'])

    def test_dimension_mismatch_on_insert_and_query(self):
        with self.assertRaises(DimensionMismatch):
            self.store.upsert([chunk('c1', [1.0, 0.0])])
        with self.assertRaises(DimensionMismatch):
            self.store.query([1.0, 0.0], 1, ALICE)
        self.assertEqual(self.store.count(), 0)

    def test_missing_embedding_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.store.upsert([chunk('c1', None)])

    def test_invalid_k_rejected(self):
        with self.assertRaises(InvalidArgument):
            self.store.query([1, 0, 0], 0, ALICE)

    def test_upsert_replaces_by_chunk_id(self):
        self.store.upsert([chunk('c1', [1, 0, 0], text='old')])
        self.store.upsert([chunk('c1', [0, 1, 0], text='new')])
        self.assertEqual(self.store.count(), 1)
        self.assertEqual(self.store.query([0, 1, 0], 1, ALICE)[0].chunk.text, 'new')

    def test_zero_vector_scores_zero(self):
        self.store.upsert([chunk('zero', [0, 0, 0])])
        self.assertEqual(self.store.query([1, 0, 0], 1, ALICE)[0].score, 0.0)

    def test_delete_source(self):
        self.store.upsert([chunk('c1', [1, 0, 0], source_id='s1'), chunk('c2', [1, 0, 0], source_id='s2')])
        self.store.delete('s1')
        self.assertEqual([r.chunk.chunk_id for r in self.store.query([1, 0, 0], 5, ALICE)], ['c2'])
        self.store.delete('missing')  # no error

    def test_replace_source_retires_old_chunks(self):
        self.store.upsert([chunk('old1', [1, 0, 0]), chunk('old2', [0, 1, 0], ordinal=1)])
        self.store.replace_source('src-1', [chunk('new1', [1, 0, 0])])
        ids = {r.chunk.chunk_id for r in self.store.query([1, 0, 0], 10, ALICE)}
        self.assertEqual(ids, {'new1'})

    def test_replace_source_rejects_foreign_chunks(self):
        with self.assertRaises(InvalidArgument):
            self.store.replace_source('src-1', [chunk('x', [1, 0, 0], source_id='other')])

    def test_replace_with_empty_list_removes_source(self):
        self.store.upsert([chunk('c1', [1, 0, 0])])
        self.store.replace_source('src-1', [])
        self.assertEqual(self.store.count(), 0)

    def test_delete_user(self):
        self.store.upsert([
            chunk('a1', [1, 0, 0], user_id='alice', source_id='a-doc'),
            chunk('b1', [1, 0, 0], user_id='bob', source_id='b-doc'),
        ])
        self.store.delete_user('alice')
        self.assertEqual(self.store.count(), 1)
        self.assertEqual(self.store.query([1, 0, 0], 5, ALICE), [])

    def test_stats(self):
        self.store.upsert([
            chunk('a1', [1, 0, 0], source_id='a-doc'),
            chunk('a2', [1, 0, 0], source_id='a-doc', ordinal=1),
            chunk('b1', [1, 0, 0], user_id='bob', source_id='b-doc'),
        ])
        self.assertEqual(self.store.stats(), {
            'total_chunks': 3, 'total_sources': 2, 'avg_chunks_per_source': 1.5,
        })
        self.assertEqual(self.store.stats('bob')['total_chunks'], 1)
        self.assertEqual(self.store.stats('nobody')['avg_chunks_per_source'], 0.0)

    def test_invalid_dimensions(self):
        with self.assertRaises(InvalidArgument):
            InMemoryVectorStore(dimensions=0)


class TestConcurrentReplace(unittest.TestCase):
    def test_queries_never_see_partial_replacement(self):
        store = InMemoryVectorStore(dimensions=2)
        generations = [
            [chunk(f'g{g}-{i}', [1, 0], ordinal=i, text=f'gen{g}') for i in range(5)]
            for g in range(20)
        ]
        store.replace_source('src-1', generations[0])
        errors = []
        done = threading.Event()

        def reader():
            while not done.is_set():
                texts = {r.chunk.text for r in store.query([1, 0], 10, ALICE)}
                if len(texts) != 1:
                    errors.append(texts)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for generation in generations[1:]:
            store.replace_source('src-1', generation)
        done.set()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual({r.chunk.text for r in store.query([1, 0], 10, ALICE)}, {'gen19'})


class TestSourceLocks(unittest.TestCase):
    def test_lock_dropped_after_last_holder(self):
        locks = SourceLocks()
        with locks.hold('src-1'):
            self.assertEqual(len(locks), 1)
        self.assertEqual(len(locks), 0)

    def test_lock_dropped_when_body_raises(self):
        locks = SourceLocks()
        with self.assertRaises(RuntimeError):
            with locks.hold('src-1'):
                raise RuntimeError('boom')
        self.assertEqual(len(locks), 0)

    def test_waiting_holder_shares_the_same_lock(self):
        locks = SourceLocks()
        entered = threading.Event()
        inside = []

        def writer():
            with locks.hold('src-1'):
                inside.append('second')

        with locks.hold('src-1'):
            thread = threading.Thread(target=lambda: (entered.set(), writer()))
            thread.start()
            entered.wait()
            inside.append('first')
        thread.join()

        self.assertEqual(inside, ['first', 'second'])
        self.assertEqual(len(locks), 0)

    def test_store_does_not_accumulate_locks(self):
        store = InMemoryVectorStore(dimensions=2)
        for i in range(50):
            store.replace_source(f'src-{i}', [chunk(f'c{i}', [1, 0], source_id=f'src-{i}')])
            store.delete(f'src-{i}')
        store.delete_user('alice')
        self.assertEqual(len(store._source_locks), 0)
