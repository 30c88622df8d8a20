"""Wiring: build every study service once from Django settings.

Callers receive the constructed objects and pass them on explicitly; nothing
here is cached at module level.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from django.conf import settings as django_settings

from study.services.agents import AgentRegistry, AgentService
from study.services.ai import AIConfig, AIRouter, BudgetLedger, DatabaseLedgerStore, build_provider
from study.services.ai.base_provider import BaseProvider
from study.services.ai.history import DatabaseJobRecorder
from study.services.base import ServiceNotConfigured
from study.services.content import ContentProcessor
from study.services.content.indexer import ContentIndexer, DatabaseIndexRegistry
from study.services.planner import StudyPlanner
from study.services.rag import RAGPipeline
from study.services.vectorstore import InMemoryVectorStore, VectorStore

logger = logging.getLogger(__name__)


def _provider_kwargs(name: str, settings_obj, timeout: float) -> dict:
    kwargs = {'timeout': timeout}
    if name == 'openai':
        kwargs.update(
            api_key=getattr(settings_obj, 'OPENAI_API_KEY', ''),
            organization_id=getattr(settings_obj, 'OPENAI_ORGANIZATION_ID', ''),
        )
    elif name == 'openrouter':
        kwargs.update(api_key=getattr(settings_obj, 'OPENROUTER_API_KEY', ''))
    elif name == 'gemini':
        kwargs.update(api_key=getattr(settings_obj, 'GEMINI_API_KEY', ''))
    elif name == 'ollama':
        kwargs.update(
            base_url=getattr(settings_obj, 'OLLAMA_BASE_URL', 'http://localhost:11434'),
            chat_model=getattr(settings_obj, 'OLLAMA_CHAT_MODEL', 'llama3.1:8b'),
            embedding_model=getattr(settings_obj, 'OLLAMA_EMBEDDING_MODEL', 'nomic-embed-text'),
        )
    return kwargs


def build_providers(config: AIConfig, settings_obj=None) -> dict[str, BaseProvider]:
    """Instantiate the providers named in ``config.provider_order``."""
    settings_obj = settings_obj or django_settings
    return {
        name: build_provider(name, **_provider_kwargs(name, settings_obj, config.request_timeout))
        for name in config.provider_order
    }


def build_vector_store(settings_obj=None) -> VectorStore:
    settings_obj = settings_obj or django_settings
    backend = getattr(settings_obj, 'VECTOR_STORE_BACKEND', 'memory')
    dimensions = int(getattr(settings_obj, 'EMBEDDING_DIMENSIONS', 1536))

    if backend == 'memory':
        return InMemoryVectorStore(dimensions)
    if backend == 'weaviate':
        from study.services.weaviate import WeaviateVectorStore

        return WeaviateVectorStore(dimensions)
    raise ServiceNotConfigured(f'Unknown VECTOR_STORE_BACKEND "{backend}" (expected memory or weaviate).')


@dataclass
class StudyServices:
    config: AIConfig
    router: AIRouter
    store: VectorStore
    agents: AgentService
    indexer: ContentIndexer
    rag: RAGPipeline
    planner: StudyPlanner


def build_study_services(settings_obj=None, *, store: Optional[VectorStore] = None) -> StudyServices:
    """Construct the full service graph with durable (ORM-backed) ledger and history."""
    settings_obj = settings_obj or django_settings
    config = AIConfig.from_settings(settings_obj)

    ledger = BudgetLedger(config.daily_budget, period=config.budget_period, store=DatabaseLedgerStore())
    router = AIRouter(
        config,
        providers=build_providers(config, settings_obj),
        ledger=ledger,
        history=DatabaseJobRecorder(),
    )
    store = store if store is not None else build_vector_store(settings_obj)
    agents = AgentService(router, AgentRegistry(getattr(settings_obj, 'AGENTS_DIR', None)))
    rag = RAGPipeline(
        router,
        store,
        agents,
        max_context_tokens=int(getattr(settings_obj, 'AI_MAX_CONTEXT_TOKENS', 3000)),
    )

    logger.info(
        'Study services ready: providers=%s, budget=%s, vector store=%s',
        '/'.join(config.provider_order),
        config.daily_budget if config.daily_budget is not None else 'unmetered',
        type(store).__name__,
    )
    return StudyServices(
        config=config,
        router=router,
        store=store,
        agents=agents,
        indexer=ContentIndexer(
            ContentProcessor(
                max_chunk_tokens=int(getattr(settings_obj, 'CONTENT_MAX_CHUNK_TOKENS', 512)),
                chunk_overlap=int(getattr(settings_obj, 'CONTENT_CHUNK_OVERLAP', 50)),
            ),
            router,
            store,
            registry=DatabaseIndexRegistry(),
        ),
        rag=rag,
        planner=StudyPlanner(rag, agents),
    )
