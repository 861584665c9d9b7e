"""
Assist Controllers (API Routes)
===============================

FastAPI routes for ticket suggestions, draft replies and the full assist
pipeline.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status

from src.assist.application import (
    AssistRequest,
    AssistResponse,
    AssistService,
    DraftReplyRequest,
    DraftReplyResponse,
    SuggestRequest,
    SuggestResponse,
)
from src.knowledge.application import QueryHitResponse
from src.shared.api.tenant import TenantContext, get_tenant_context
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/tickets", tags=["Ticket Assist"])


# ========== Dependencies ==========

def get_assist_service(request: Request) -> AssistService:
    """Get assist service from app state."""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Assist service not initialized"
        )
    return container.assist_service


# ========== Routes ==========

@router.post(
    "/{ticket_id}/suggest",
    response_model=SuggestResponse,
    summary="Retrieve KB chunks relevant to a ticket",
)
async def suggest(
    ticket_id: str,
    body: Optional[SuggestRequest] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    service: AssistService = Depends(get_assist_service),
) -> SuggestResponse:
    body = body or SuggestRequest()
    hits = await service.suggest(tenant.tenant_id, ticket_id, body.top_k, body.query, user_id=tenant.user_id)
    return SuggestResponse(
        ticket_id=ticket_id,
        suggestions=[QueryHitResponse.from_domain(h) for h in hits],
    )


@router.post(
    "/{ticket_id}/draft-reply",
    response_model=DraftReplyResponse,
    summary="Draft a customer reply grounded on the knowledge base",
)
async def draft_reply(
    ticket_id: str,
    body: Optional[DraftReplyRequest] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    service: AssistService = Depends(get_assist_service),
) -> DraftReplyResponse:
    body = body or DraftReplyRequest()
    draft = await service.draft_reply(tenant.tenant_id, tenant.user_id, ticket_id, body.top_k, body.query)
    return DraftReplyResponse.from_domain(draft)


@router.post(
    "/{ticket_id}/assist",
    response_model=AssistResponse,
    summary="Generate a cited structured reply for a ticket",
    description="""
    Retrieve KB context, generate a structured reply and, unless `dryRun`
    is set, save it on the ticket as an AI comment.

    Identical requests within the dedupe window are answered from the
    recent AI comment or, for dry runs, from the preview cache
    (`cached=true`, `cacheType` tells which).
    """,
)
async def assist(
    request: Request,
    ticket_id: str,
    body: Optional[AssistRequest] = None,
    tenant: TenantContext = Depends(get_tenant_context),
    service: AssistService = Depends(get_assist_service),
) -> AssistResponse:
    body = body or AssistRequest()
    result = await service.assist(
        tenant.tenant_id,
        tenant.user_id,
        ticket_id,
        top_k=body.top_k,
        tone=body.tone,
        dry_run=body.dry_run,
        query=body.query,
    )
    logger.info(
        "Assist completed",
        extra={
            "correlation_id": getattr(request.state, "correlation_id", "unknown"),
            "tenant_id": tenant.tenant_id,
            "ticket_id": ticket_id,
            "cached": result.cached,
            "cache_type": result.cache_type.value if result.cache_type else None,
            "kb_hits": result.kb_hits,
            "comment_saved": result.comment_saved,
        }
    )
    return AssistResponse.from_domain(result)


# Export router for inclusion in main app
assist_router = router
