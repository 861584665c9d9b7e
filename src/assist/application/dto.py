"""
Assist Application DTOs
=======================

Request and response models for the ticket assist endpoints. Envelope
fields are camelCase; the structured reply fields keep their snake_case
names on the wire, matching the JSON the model is asked to produce.
"""

from typing import Any, Dict, List, Optional

from pydantic import Field

from src.assist.domain import AssistResult, DraftReply
from src.config import AssistTone
from src.knowledge.application.dto import CamelModel, QueryHitResponse


# ========== Request DTOs ==========

class SuggestRequest(CamelModel):
    """Retrieval-only request; the query defaults to the ticket text."""
    query: Optional[str] = Field(None, min_length=1, max_length=10_000)
    top_k: Optional[int] = Field(None, ge=1, le=20)


class DraftReplyRequest(CamelModel):
    """Request model for a draft reply."""
    query: Optional[str] = Field(None, min_length=1, max_length=10_000)
    top_k: Optional[int] = Field(None, ge=1, le=20)


class AssistRequest(CamelModel):
    """Request model for the full assist pipeline."""
    top_k: Optional[int] = Field(None, ge=1, le=20, description="Retrieval depth (default 5)")
    tone: AssistTone = Field(AssistTone.NEUTRAL, description="Tone of the customer reply")
    dry_run: bool = Field(False, description="Preview only; nothing is written to the ticket")
    query: Optional[str] = Field(None, min_length=1, max_length=10_000, description="Overrides the ticket text")


# ========== Response DTOs ==========

class SuggestResponse(CamelModel):
    ticket_id: str
    suggestions: List[QueryHitResponse]


class CitationResponse(CamelModel):
    source: str
    filename: str
    chunk_id: str


class AssistResponse(CamelModel):
    """Assist outcome with cache and persistence flags."""
    ticket_id: str
    kb_top_k: int
    kb_hits: int
    comment_saved: bool = False
    comment_skipped: bool = False
    comment_error: Optional[str] = None
    cached: bool = False
    cache_type: Optional[str] = None
    parse_failed: bool = False
    customer_reply: str = Field("", alias="customer_reply")
    internal_notes: str = Field("", alias="internal_notes")
    next_steps: List[str] = Field(default_factory=list, alias="next_steps")
    questions_for_customer: List[str] = Field(default_factory=list, alias="questions_for_customer")
    citations: List[CitationResponse] = Field(default_factory=list)
    debug: Optional[Dict[str, Any]] = None

    @classmethod
    def from_domain(cls, result: AssistResult) -> "AssistResponse":
        reply = result.reply
        return cls(
            ticket_id=result.ticket_id,
            kb_top_k=result.kb_top_k,
            kb_hits=result.kb_hits,
            comment_saved=result.comment_saved,
            comment_skipped=result.comment_skipped,
            comment_error=result.comment_error,
            cached=result.cached,
            cache_type=result.cache_type.value if result.cache_type else None,
            parse_failed=result.parse_failed,
            customer_reply=reply.customer_reply,
            internal_notes=reply.internal_notes,
            next_steps=reply.next_steps,
            questions_for_customer=reply.questions_for_customer,
            citations=[
                CitationResponse(source=c.source, filename=c.filename, chunk_id=c.chunk_id)
                for c in reply.citations
            ],
            debug=result.debug,
        )


class UsedCitationResponse(CamelModel):
    label: str
    reason: str
    filename: Optional[str] = None


class DraftReplyResponse(CamelModel):
    """Draft reply with the retrieved context it was grounded on."""
    ticket_id: str
    reply_draft: str
    next_questions: List[str] = Field(default_factory=list)
    used_citations: List[UsedCitationResponse] = Field(default_factory=list)
    suggestions: List[QueryHitResponse] = Field(default_factory=list)
    warning: Optional[str] = None

    @classmethod
    def from_domain(cls, draft: DraftReply) -> "DraftReplyResponse":
        return cls(
            ticket_id=draft.ticket_id,
            reply_draft=draft.reply_draft,
            next_questions=draft.next_questions,
            used_citations=[
                UsedCitationResponse(label=c.label, reason=c.reason, filename=c.filename)
                for c in draft.used_citations
            ],
            suggestions=[QueryHitResponse.from_domain(h) for h in draft.suggestions],
            warning=draft.warning,
        )
