"""
Knowledge Controllers (API Routes)
==================================

FastAPI routes for knowledge sources, retrieval and job status.

Controllers validate input and delegate to application services.
"""

import os
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile, status

from src.config import KnowledgeSourceStatus, settings
from src.core import ValidationException
from src.knowledge.application import (
    ALLOWED_UPLOAD_EXTENSIONS,
    ALLOWED_UPLOAD_MIME_TYPES,
    CreatedSourceResponse,
    CreateTextSourceRequest,
    DeleteSourceResponse,
    JobResponse,
    KnowledgeService,
    QueryHitResponse,
    QueryRequest,
    RetryResponse,
    SourceListResponse,
    SourceResponse,
    SourcesSummaryResponse,
)
from src.shared.api.tenant import TenantContext, get_tenant_context
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/kb", tags=["Knowledge Base"])
jobs_router = APIRouter(prefix="/jobs", tags=["Jobs"])


# ========== Example payloads for Swagger ==========

QUERY_RESPONSE_EXAMPLE = [
    {
        "chunkId": "6f1c2d7e-1a44-4a0b-9d7c-0d8c1c3e9a10",
        "sourceId": "1b9e6f7a-5c3d-4e2f-8a1b-2c3d4e5f6a7b",
        "filename": "password-reset.md",
        "mimeType": "text/markdown",
        "idx": 0,
        "similarity": 0.83,
        "snippet": "To reset your password, open the login page and choose 'Forgot password'...",
        "content": "To reset your password, open the login page and choose 'Forgot password'..."
    }
]


# ========== Dependencies ==========

def get_knowledge_service(request: Request) -> KnowledgeService:
    """Get knowledge service from app state."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Knowledge service not initialized"
        )
    return container.knowledge_service


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


async def _read_upload(file: Optional[UploadFile]) -> bytes:
    """Validate an uploaded file's type and size and return its bytes."""
    if file is None:
        raise ValidationException("Missing file")

    ext = os.path.splitext(file.filename or "")[1].lower()
    if file.content_type not in ALLOWED_UPLOAD_MIME_TYPES and ext not in ALLOWED_UPLOAD_EXTENSIONS:
        raise ValidationException(
            "Unsupported file type",
            {"content_type": file.content_type, "extension": ext}
        )

    data = await file.read(settings.kb_max_upload_bytes + 1)
    if not data:
        raise ValidationException("Empty file")
    if len(data) > settings.kb_max_upload_bytes:
        raise ValidationException(
            "File too large",
            {"max_bytes": settings.kb_max_upload_bytes}
        )
    return data


# ========== Sources ==========

@router.post(
    "/sources",
    response_model=CreatedSourceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a knowledge source file",
    description="""
    Store an uploaded file (text, markdown or PDF) as a new knowledge source
    and enqueue it for indexing.

    The source starts QUEUED; poll `GET /jobs/{jobId}` or
    `GET /kb/sources/{sourceId}` for progress.
    """,
)
async def upload_source(
    request: Request,
    file: UploadFile = File(...),
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> CreatedSourceResponse:
    data = await _read_upload(file)
    created = await service.create_source_from_upload(
        tenant.tenant_id,
        tenant.user_id,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        data,
    )
    logger.info(
        "Source uploaded",
        extra={
            "correlation_id": _correlation_id(request),
            "tenant_id": tenant.tenant_id,
            "source_id": created.source.id,
            "job_id": created.job.id,
        }
    )
    return CreatedSourceResponse(source_id=created.source.id, job_id=created.job.id)


@router.post(
    "/sources/text",
    response_model=CreatedSourceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a knowledge source from text",
)
async def create_text_source(
    request: Request,
    body: CreateTextSourceRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> CreatedSourceResponse:
    created = await service.create_source_from_text(
        tenant.tenant_id,
        tenant.user_id,
        body.filename,
        body.content,
        body.mime_type,
    )
    logger.info(
        "Text source created",
        extra={
            "correlation_id": _correlation_id(request),
            "tenant_id": tenant.tenant_id,
            "source_id": created.source.id,
        }
    )
    return CreatedSourceResponse(source_id=created.source.id, job_id=created.job.id)


@router.get(
    "/sources",
    response_model=SourceListResponse,
    response_model_exclude_none=True,
    summary="List knowledge sources",
    description="""
    Newest first. Offset paging with `page`/`pageSize` returns `total`;
    passing `cursor` switches to keyset paging and returns `nextCursor`.
    """,
)
async def list_sources(
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
    status_filter: Optional[KnowledgeSourceStatus] = Query(None, alias="status"),
    q: Optional[str] = Query(None, min_length=1, max_length=200),
    page: int = Query(1, ge=1, le=1000),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    cursor: Optional[str] = Query(None, min_length=1, max_length=500),
    limit: Optional[int] = Query(None, ge=1, le=100),
) -> SourceListResponse:
    if cursor and limit:
        page_size = limit
    result = await service.list_sources(
        tenant.tenant_id,
        status=status_filter,
        q=q,
        page=page,
        page_size=page_size,
        cursor=cursor,
    )
    return SourceListResponse.from_page(result)


@router.get(
    "/sources/status-counts",
    response_model=dict,
    summary="Count sources per status",
)
async def status_counts(
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> dict:
    return await service.get_status_counts(tenant.tenant_id)


@router.get(
    "/sources/summary",
    response_model=SourcesSummaryResponse,
    response_model_exclude_none=True,
    summary="Status counts and newest sources",
)
async def sources_summary(
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
    limit: int = Query(5, ge=1, le=20),
) -> SourcesSummaryResponse:
    counts, recent = await service.get_sources_summary(tenant.tenant_id, limit)
    listing = SourceListResponse.from_page(recent)
    return SourcesSummaryResponse(counts=counts, **listing.model_dump())


@router.get(
    "/sources/{source_id}",
    response_model=SourceResponse,
    summary="Get a knowledge source with its latest job",
)
async def get_source(
    source_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> SourceResponse:
    detail = await service.get_source(tenant.tenant_id, tenant.role, source_id)
    return SourceResponse.from_domain(detail.source, detail.latest_job)


@router.post(
    "/sources/{source_id}/retry",
    response_model=RetryResponse,
    summary="Re-enqueue indexing of a source",
)
async def retry_source(
    request: Request,
    source_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> RetryResponse:
    job = await service.retry_source(tenant.tenant_id, tenant.user_id, source_id)
    logger.info(
        "Source retry requested",
        extra={"correlation_id": _correlation_id(request), "source_id": source_id, "job_id": job.id}
    )
    return RetryResponse(job_id=job.id)


@router.post(
    "/sources/{source_id}/repair",
    response_model=CreatedSourceResponse,
    summary="Replace a source's stored file and re-index it",
)
async def repair_source(
    request: Request,
    source_id: str,
    file: UploadFile = File(...),
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> CreatedSourceResponse:
    data = await _read_upload(file)
    job = await service.repair_source(
        tenant.tenant_id,
        tenant.user_id,
        source_id,
        file.filename or "upload",
        file.content_type or "application/octet-stream",
        data,
    )
    logger.info(
        "Source repaired",
        extra={"correlation_id": _correlation_id(request), "source_id": source_id, "job_id": job.id}
    )
    return CreatedSourceResponse(source_id=source_id, job_id=job.id)


@router.delete(
    "/sources/{source_id}",
    response_model=DeleteSourceResponse,
    summary="Delete a knowledge source (OWNER/ADMIN)",
)
async def delete_source(
    source_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> DeleteSourceResponse:
    result = await service.delete_source(tenant.tenant_id, tenant.role, source_id)
    if result is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="KnowledgeSource not found")
    return DeleteSourceResponse(deleted=result["deleted"], source_id=result["sourceId"])


# ========== Retrieval ==========

@router.post(
    "/query",
    response_model=List[QueryHitResponse],
    summary="Similarity search over the tenant's knowledge base",
    responses={200: {"content": {"application/json": {"example": QUERY_RESPONSE_EXAMPLE}}}},
)
async def query_knowledge(
    body: QueryRequest,
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> List[QueryHitResponse]:
    hits = await service.query(tenant.tenant_id, body.query, body.top_k, user_id=tenant.user_id)
    return [QueryHitResponse.from_domain(h) for h in hits]


# ========== Jobs ==========

@jobs_router.get(
    "/{job_id}",
    response_model=JobResponse,
    summary="Get indexing job status",
)
async def get_job(
    job_id: str,
    tenant: TenantContext = Depends(get_tenant_context),
    service: KnowledgeService = Depends(get_knowledge_service),
) -> JobResponse:
    job = await service.get_job(tenant.tenant_id, job_id)
    return JobResponse.from_domain(job)


# Export router for inclusion in main app
knowledge_router = router
