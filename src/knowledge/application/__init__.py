"""
Knowledge Application Layer
===========================

Application layer for the knowledge module.

Contains:
- Services: source lifecycle, vector store access, retrieval
- Worker: indexing state machine, worker pool, stale job reconciler
- DTOs: Data transfer objects for API serialization
"""

from src.knowledge.application.services import (
    ISourceRepository,
    IJobRepository,
    IChunkRepository,
    ITextExtractor,
    KnowledgeStore,
    KnowledgeService,
    RetrievalService,
    SourceDetail,
    CreatedSource,
    clamp_top_k,
)
from src.knowledge.application.worker import SourceIndexer, WorkerPool, StaleJobReconciler
from src.knowledge.application.dto import (
    CreateTextSourceRequest,
    QueryRequest,
    JobResponse,
    SourceResponse,
    SourceListResponse,
    SourcesSummaryResponse,
    CreatedSourceResponse,
    RetryResponse,
    DeleteSourceResponse,
    QueryHitResponse,
    ALLOWED_UPLOAD_MIME_TYPES,
    ALLOWED_UPLOAD_EXTENSIONS,
)

__all__ = [
    "ISourceRepository",
    "IJobRepository",
    "IChunkRepository",
    "ITextExtractor",
    "KnowledgeStore",
    "KnowledgeService",
    "RetrievalService",
    "SourceDetail",
    "CreatedSource",
    "clamp_top_k",
    "SourceIndexer",
    "WorkerPool",
    "StaleJobReconciler",
    "CreateTextSourceRequest",
    "QueryRequest",
    "JobResponse",
    "SourceResponse",
    "SourceListResponse",
    "SourcesSummaryResponse",
    "CreatedSourceResponse",
    "RetryResponse",
    "DeleteSourceResponse",
    "QueryHitResponse",
    "ALLOWED_UPLOAD_MIME_TYPES",
    "ALLOWED_UPLOAD_EXTENSIONS",
]
