"""
Service Wiring
==============

Builds the object graph shared by the API process and the indexing worker.
Both call ``build_container()`` after ``init_database()`` and ``close()``
on shutdown.
"""

from dataclasses import dataclass
from typing import Optional

from src.assist.application import AssistService, PreviewCache
from src.assist.domain import AssistPromptBuilder
from src.assist.infrastructure import AssistRulesManager, SQLAlchemyTicketStore
from src.config import Settings, settings as default_settings
from src.infrastructure.database import get_session_maker
from src.infrastructure.llm import ModelServiceClient, OllamaChatClient, OllamaEmbeddingClient
from src.infrastructure.queue import RedisJobQueue
from src.infrastructure.storage import LocalSourceFileStore
from src.infrastructure.tenancy import SQLAlchemyEntitlementGate, SQLAlchemyUsageSink
from src.infrastructure.vectorstore import MilvusChunkIndex
from src.knowledge.application import (
    KnowledgeService,
    KnowledgeStore,
    RetrievalService,
    SourceIndexer,
    StaleJobReconciler,
)
from src.knowledge.infrastructure import (
    SQLAlchemyChunkRepository,
    SQLAlchemyJobRepository,
    SQLAlchemySourceRepository,
    SourceTextExtractor,
)
from src.shared.infrastructure.effects import BackgroundEffects
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class ServiceContainer:
    """Long-lived services for one process."""
    model_pool: ModelServiceClient
    effects: BackgroundEffects
    queue: RedisJobQueue
    vector_index: MilvusChunkIndex
    job_repository: SQLAlchemyJobRepository
    knowledge_service: KnowledgeService
    retrieval_service: RetrievalService
    indexer: SourceIndexer
    rules_manager: AssistRulesManager
    assist_service: AssistService
    reconciler: Optional[StaleJobReconciler] = None

    async def close(self) -> None:
        self.rules_manager.stop_watching()
        await self.effects.drain(timeout=5)
        await self.model_pool.close()
        await self.queue.close()
        await self.vector_index.close()


def build_container(config: Optional[Settings] = None, watch_rules: bool = False) -> ServiceContainer:
    """Wire repositories, clients and services from settings."""
    config = config or default_settings
    session_factory = get_session_maker()

    effects = BackgroundEffects()
    usage_sink = SQLAlchemyUsageSink(session_factory)
    entitlements = SQLAlchemyEntitlementGate(session_factory)

    model_pool = ModelServiceClient(config.model_hosts, config.model_timeout_seconds)
    embedder = OllamaEmbeddingClient(
        model_pool,
        model=config.embed_model,
        retries=config.embed_retries,
        usage_sink=usage_sink,
        effects=effects,
    )
    chat_client = OllamaChatClient(model_pool, model=config.chat_model, retries=config.chat_retries)

    vector_index = MilvusChunkIndex(
        uri=config.milvus_uri,
        token=config.milvus_token,
        collection_name=config.milvus_collection_name,
        dimension=config.embedding_dimension,
    )
    queue = RedisJobQueue(url=config.redis_url)
    file_store = LocalSourceFileStore(config.kb_storage_dir)

    source_repository = SQLAlchemySourceRepository(session_factory)
    job_repository = SQLAlchemyJobRepository(session_factory)
    chunk_repository = SQLAlchemyChunkRepository(session_factory)

    store = KnowledgeStore(chunk_repository, vector_index, embedder)
    retrieval = RetrievalService(store)
    knowledge_service = KnowledgeService(
        source_repository,
        job_repository,
        file_store,
        queue,
        vector_index,
        entitlements,
        retrieval,
    )
    indexer = SourceIndexer(
        source_repository,
        job_repository,
        file_store,
        SourceTextExtractor(),
        store,
        usage_sink=usage_sink,
        chunk_size=config.kb_chunk_size,
        chunk_overlap=config.kb_chunk_overlap,
        min_text_length=config.kb_min_text_length,
    )

    rules_manager = AssistRulesManager()
    rules_manager.load(config.assist_rules_path)
    if watch_rules:
        rules_manager.start_watching()

    assist_service = AssistService(
        ticket_store=SQLAlchemyTicketStore(session_factory),
        retrieval=retrieval,
        chat_client=chat_client,
        entitlements=entitlements,
        usage_sink=usage_sink,
        preview_cache=PreviewCache(
            ttl_seconds=config.assist_dedupe_window_seconds,
            max_items=config.assist_preview_cache_max_items,
        ),
        rules_provider=rules_manager,
        prompt_builder=AssistPromptBuilder(
            max_comments=config.assist_max_comments_for_prompt,
            max_comment_chars=config.assist_max_comment_chars,
            max_source_chars=config.assist_max_source_chars,
        ),
        system_author_id=config.ai_system_user_id,
        dedupe_window_seconds=config.assist_dedupe_window_seconds,
        similarity_threshold=config.assist_similarity_threshold,
        max_comment_length=config.assist_max_comment_length,
    )

    reconciler = None
    if config.reconcile_stale_after_seconds:
        reconciler = StaleJobReconciler(job_repository, config.reconcile_stale_after_seconds)

    if not config.ai_system_user_id:
        logger.warning("AI_SYSTEM_USER_ID not set; assist results will not be saved as comments")

    return ServiceContainer(
        model_pool=model_pool,
        effects=effects,
        queue=queue,
        vector_index=vector_index,
        job_repository=job_repository,
        knowledge_service=knowledge_service,
        retrieval_service=retrieval,
        indexer=indexer,
        rules_manager=rules_manager,
        assist_service=assist_service,
        reconciler=reconciler,
    )
