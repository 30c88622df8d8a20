from datetime import datetime, timedelta, timezone as dt_timezone
from decimal import Decimal

from django.contrib import admin
from django.test import RequestFactory, TestCase, override_settings

from study.models import AIJobsHistory, BudgetPeriod, IndexedDocument
from study.services.ai import AIConfig, AIRouter, BudgetLedger, DatabaseLedgerStore
from study.services.ai.history import DatabaseJobRecorder
from study.services.base import BudgetExceeded, ServiceNotConfigured
from study.services.content import ContentIndexer, ContentProcessor, RawDocument
from study.services.content.indexer import DatabaseIndexRegistry
from study.services.factory import build_study_services, build_vector_store
from study.services.tests.fakes import FakeProvider, unavailable
from study.services.vectorstore import InMemoryVectorStore


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


DAY = datetime(2026, 3, 2, tzinfo=dt_timezone.utc)


class BudgetPeriodModelTest(TestCase):
    def test_store_round_trip(self):
        store = DatabaseLedgerStore()
        self.assertIsNone(store.load(DAY))
        self.assertEqual(store.add(DAY, Decimal('0.125')), Decimal('0.125'))
        self.assertEqual(store.add(DAY, Decimal('0.25')), Decimal('0.375'))
        self.assertEqual(store.load(DAY), Decimal('0.375'))
        self.assertEqual(BudgetPeriod.objects.count(), 1)

    def test_spend_survives_ledger_restart(self):
        clock = FixedClock(DAY + timedelta(hours=9))
        ledger = BudgetLedger(Decimal('1.00'), clock=clock, store=DatabaseLedgerStore())
        admission = ledger.reserve(Decimal('0.40'))
        ledger.commit(Decimal('0.30'), admission.reservation)

        restarted = BudgetLedger(Decimal('1.00'), clock=clock, store=DatabaseLedgerStore())
        self.assertEqual(restarted.current_spend(), Decimal('0.30'))

    def test_workers_sharing_the_store_do_not_overwrite_each_other(self):
        clock = FixedClock(DAY + timedelta(hours=9))
        first = BudgetLedger(Decimal('1.00'), clock=clock, store=DatabaseLedgerStore())
        second = BudgetLedger(Decimal('1.00'), clock=clock, store=DatabaseLedgerStore())

        first.commit(Decimal('0.30'))
        second.commit(Decimal('0.20'))
        first.commit(Decimal('0.10'))

        self.assertEqual(BudgetPeriod.objects.get(period_start=DAY).spend, Decimal('0.60'))
        self.assertEqual(first.current_spend(), Decimal('0.60'))
        self.assertEqual(second.current_spend(), Decimal('0.50'))

    def test_new_period_starts_from_zero(self):
        clock = FixedClock(DAY + timedelta(hours=9))
        ledger = BudgetLedger(Decimal('1.00'), clock=clock, store=DatabaseLedgerStore())
        ledger.commit(Decimal('0.50'))
        clock.now += timedelta(days=1)
        self.assertEqual(ledger.current_spend(), Decimal('0'))
        self.assertEqual(
            BudgetPeriod.objects.get(period_start=DAY).spend,
            Decimal('0.50'),
        )


class AIJobsHistoryTest(TestCase):
    def make_router(self, primary, budget='5.00'):
        config = AIConfig(primary_provider='primary', fallback_provider='fallback', daily_budget=Decimal(budget))
        providers = {'primary': primary, 'fallback': FakeProvider('fallback')}
        return AIRouter(config, providers, history=DatabaseJobRecorder())

    def test_completed_job_recorded(self):
        router = self.make_router(FakeProvider('primary'))
        router.chat(['hello'], agent='rag-answer', user_id='alice')

        job = AIJobsHistory.objects.get()
        self.assertEqual(job.status, AIJobsHistory.Status.COMPLETED)
        self.assertEqual(job.agent, 'rag-answer')
        self.assertEqual(job.operation, 'chat')
        self.assertEqual(job.user_id, 'alice')
        self.assertEqual(job.provider, 'primary')
        self.assertEqual(job.input_tokens, 100)
        self.assertEqual(job.output_tokens, 50)
        self.assertEqual(job.costs, Decimal('0.0002'))
        self.assertIsNotNone(job.duration_ms)

    def test_failed_attempt_recorded_before_fallback(self):
        router = self.make_router(FakeProvider('primary', error=unavailable('primary')))
        router.chat(['hello'])

        statuses = dict(AIJobsHistory.objects.values_list('provider', 'status'))
        self.assertEqual(statuses, {
            'primary': AIJobsHistory.Status.ERROR,
            'fallback': AIJobsHistory.Status.COMPLETED,
        })
        self.assertIn('primary is down', AIJobsHistory.objects.get(provider='primary').error_message)

    def test_budget_denial_recorded(self):
        router = self.make_router(FakeProvider('primary'), budget='0')
        with self.assertRaises(BudgetExceeded):
            router.embed(['alpha'])
        self.assertEqual(
            set(AIJobsHistory.objects.values_list('status', 'operation')),
            {(AIJobsHistory.Status.DENIED, 'embed')},
        )


class IndexedDocumentTest(TestCase):
    def setUp(self):
        router = AIRouter(AIConfig(primary_provider='primary'), {'primary': FakeProvider('primary')})
        self.store = InMemoryVectorStore(dimensions=8)
        self.indexer = ContentIndexer(ContentProcessor(), router, self.store, DatabaseIndexRegistry())
        self.document = RawDocument(
            source_id='notes-1', text='Enzymes lower activation energy.', user_id='alice',
            course_id='bio', title='Enzymes',
        )

    def test_index_records_document(self):
        result = self.indexer.index(self.document)
        row = IndexedDocument.objects.get(source_id='notes-1')
        self.assertEqual(row.content_hash, result.content_hash)
        self.assertEqual(row.chunk_count, 1)
        self.assertEqual(row.user_id, 'alice')
        self.assertEqual(row.title, 'Enzymes')

    def test_unchanged_document_skipped_across_indexers(self):
        self.indexer.index(self.document)
        router = AIRouter(AIConfig(primary_provider='primary'), {'primary': FakeProvider('primary')})
        fresh = ContentIndexer(ContentProcessor(), router, self.store, DatabaseIndexRegistry())
        self.assertTrue(fresh.index(self.document).skipped)

    def test_remove_deletes_row(self):
        self.indexer.index(self.document)
        self.indexer.remove('notes-1')
        self.assertFalse(IndexedDocument.objects.exists())
        self.assertEqual(self.store.count(), 0)


class AdminTest(TestCase):
    def test_models_registered(self):
        for model in (BudgetPeriod, AIJobsHistory, IndexedDocument):
            self.assertIn(model, admin.site._registry)

    def test_job_history_is_read_only(self):
        request = RequestFactory().get('/admin/')
        model_admin = admin.site._registry[AIJobsHistory]
        self.assertFalse(model_admin.has_add_permission(request))
        self.assertFalse(model_admin.has_change_permission(request))
        self.assertFalse(model_admin.has_delete_permission(request))


@override_settings(
    AI_PRIMARY_PROVIDER='ollama',
    AI_FALLBACK_PROVIDER='',
    AI_DAILY_BUDGET='2.50',
    VECTOR_STORE_BACKEND='memory',
    EMBEDDING_DIMENSIONS=768,
)
class ServiceFactoryTest(TestCase):
    def test_build_study_services(self):
        services = build_study_services()
        self.assertEqual(services.config.provider_order, ('ollama',))
        self.assertEqual(services.router.ledger.ceiling, Decimal('2.50'))
        self.assertIsInstance(services.store, InMemoryVectorStore)
        self.assertEqual(services.store.dimensions, 768)
        self.assertIs(services.rag.store, services.store)
        self.assertIs(services.planner.rag, services.rag)
        self.assertIn('rag-answer', services.agents.registry.list_agents())

    def test_injected_store_is_used(self):
        store = InMemoryVectorStore(dimensions=8)
        self.assertIs(build_study_services(store=store).indexer.store, store)

    @override_settings(VECTOR_STORE_BACKEND='pinecone')
    def test_unknown_backend(self):
        with self.assertRaises(ServiceNotConfigured):
            build_vector_store()
