"""
Knowledge Application DTOs
==========================

Data Transfer Objects for the knowledge API layer.

Pydantic models for request/response validation. Wire names are
camelCase; Python attributes stay snake_case.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.knowledge.domain import Job, KnowledgeSource, QueryHit, SourcePage


KnowledgeSourceStatusStr = Literal["QUEUED", "INDEXING", "READY", "FAILED"]

ALLOWED_UPLOAD_MIME_TYPES = {"text/plain", "text/markdown", "application/pdf"}
ALLOWED_UPLOAD_EXTENSIONS = {".txt", ".md", ".markdown", ".pdf"}


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ========== Request DTOs ==========

class CreateTextSourceRequest(CamelModel):
    """Request model for creating a source from raw text."""
    filename: str = Field(..., min_length=1, max_length=200, description="Display filename")
    content: str = Field(..., min_length=1, max_length=200_000, description="Source text")
    mime_type: Optional[str] = Field(None, min_length=1, max_length=200, description="Defaults to text/plain")


class QueryRequest(CamelModel):
    """Request model for knowledge base similarity search."""
    query: str = Field(..., min_length=1, max_length=10_000, description="Free text to search for")
    top_k: Optional[int] = Field(None, ge=1, le=20, description="Number of chunks (default 5)")


# ========== Response DTOs ==========

class JobResponse(CamelModel):
    """Indexing job state."""
    id: str
    tenant_id: str
    type: str
    status: str
    source_id: Optional[str] = None
    last_error: Optional[str] = None
    progress: int = 0
    payload: dict = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, job: Job) -> "JobResponse":
        return cls(
            id=job.id,
            tenant_id=job.tenant_id,
            type=job.type.value,
            status=job.status.value,
            source_id=job.source_id,
            last_error=job.last_error,
            progress=job.progress,
            payload=job.payload,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class LatestJobInfo(CamelModel):
    """Summary of a source's most recent job."""
    id: str
    status: str
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class SourceResponse(CamelModel):
    """Knowledge source as returned by the API."""
    id: str
    filename: str
    mime_type: str
    size_bytes: int
    status: KnowledgeSourceStatusStr
    error: Optional[str] = None
    storage_path: Optional[str] = None
    indexed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    latest_job: Optional[LatestJobInfo] = None

    @classmethod
    def from_domain(cls, source: KnowledgeSource, latest_job: Optional[Job] = None) -> "SourceResponse":
        job_info = None
        if latest_job is not None:
            job_info = LatestJobInfo(
                id=latest_job.id,
                status=latest_job.status.value,
                last_error=latest_job.last_error,
                created_at=latest_job.created_at,
                updated_at=latest_job.updated_at,
            )
        return cls(
            id=source.id,
            filename=source.filename,
            mime_type=source.mime_type,
            size_bytes=source.size_bytes,
            status=source.status.value,
            error=source.error,
            storage_path=source.storage_path,
            indexed_at=source.indexed_at,
            created_at=source.created_at,
            updated_at=source.updated_at,
            latest_job=job_info,
        )


class SourceListItem(CamelModel):
    """Row of a source listing (no storage pointer)."""
    id: str
    filename: str
    mime_type: str
    size_bytes: int
    status: KnowledgeSourceStatusStr
    error: Optional[str] = None
    indexed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, source: KnowledgeSource) -> "SourceListItem":
        return cls(
            id=source.id,
            filename=source.filename,
            mime_type=source.mime_type,
            size_bytes=source.size_bytes,
            status=source.status.value,
            error=source.error,
            indexed_at=source.indexed_at,
            created_at=source.created_at,
            updated_at=source.updated_at,
        )


class SourceListResponse(CamelModel):
    """Offset page (total/page/pageSize) or keyset page (nextCursor/limit)."""
    items: List[SourceListItem]
    total: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    next_cursor: Optional[str] = None
    limit: Optional[int] = None

    @classmethod
    def from_page(cls, page: SourcePage) -> "SourceListResponse":
        return cls(
            items=[SourceListItem.from_domain(s) for s in page.items],
            total=page.total,
            page=page.page,
            page_size=page.page_size,
            next_cursor=page.next_cursor,
            limit=page.limit,
        )


class SourcesSummaryResponse(SourceListResponse):
    """Status counts plus the newest sources."""
    counts: Dict[str, int]


class CreatedSourceResponse(CamelModel):
    """Identifiers of a newly created source and its indexing job."""
    source_id: str
    job_id: str


class RetryResponse(CamelModel):
    """Identifier of the job created by a retry."""
    job_id: str


class DeleteSourceResponse(CamelModel):
    """Deletion acknowledgement."""
    deleted: bool
    source_id: str


class QueryHitResponse(CamelModel):
    """A retrieved chunk with its parent source metadata."""
    chunk_id: str
    source_id: str
    filename: str
    mime_type: str
    idx: int
    similarity: float
    snippet: str
    content: str

    @classmethod
    def from_domain(cls, hit: QueryHit) -> "QueryHitResponse":
        return cls(
            chunk_id=hit.chunk_id,
            source_id=hit.source_id,
            filename=hit.filename,
            mime_type=hit.mime_type,
            idx=hit.ordinal,
            similarity=hit.similarity,
            snippet=hit.snippet,
            content=hit.content,
        )
