"""
Assist Domain Entities
======================

Tickets as seen by the assist pipeline, and the structured reply it
produces.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from src.assist.domain.questions import normalize_questions
from src.config import CacheTier


def as_text(value: Any) -> str:
    """Strings pass through; anything else becomes empty."""
    return value if isinstance(value, str) else ""


def to_epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


@dataclass
class TicketComment:
    """A comment on a ticket."""
    id: str
    author_id: Optional[str]
    body: str
    created_at: Optional[datetime] = None


@dataclass
class Ticket:
    """Ticket fields the assist pipeline reads; comments oldest first."""
    id: str
    tenant_id: str
    title: str
    description: str
    comments: List[TicketComment] = field(default_factory=list)

    def state_signature(self) -> "TicketStateSignature":
        newest = 0
        for comment in self.comments:
            ms = to_epoch_ms(comment.created_at) or 0
            if ms > newest:
                newest = ms
        return TicketStateSignature(comment_count=len(self.comments), newest_comment_ms=newest)

    def comments_newest_first(self) -> List[TicketComment]:
        return sorted(self.comments, key=lambda c: to_epoch_ms(c.created_at) or 0, reverse=True)


@dataclass(frozen=True)
class TicketStateSignature:
    """Cheap fingerprint that changes whenever a comment is added."""
    comment_count: int
    newest_comment_ms: int


@dataclass
class Citation:
    """A KB source the model says it used."""
    source: str
    filename: str
    chunk_id: str

    def to_dict(self) -> Dict[str, str]:
        return {"source": self.source, "filename": self.filename, "chunkId": self.chunk_id}

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["Citation"]:
        if not isinstance(raw, dict):
            return None
        return cls(
            source=str(raw.get("source") or ""),
            filename=str(raw.get("filename") or ""),
            chunk_id=str(raw.get("chunkId") or raw.get("chunk_id") or ""),
        )


@dataclass
class AssistReply:
    """The four structured reply fields plus citations."""
    customer_reply: str = ""
    internal_notes: str = ""
    next_steps: List[str] = field(default_factory=list)
    questions_for_customer: List[str] = field(default_factory=list)
    citations: List[Citation] = field(default_factory=list)

    @classmethod
    def from_model_output(cls, data: Dict[str, Any]) -> "AssistReply":
        """Coerce a parsed model (or cached) object into a reply."""
        next_steps = data.get("next_steps")
        questions = data.get("questions_for_customer")
        citations = data.get("citations")
        return cls(
            customer_reply=as_text(data.get("customer_reply")),
            internal_notes=as_text(data.get("internal_notes")),
            next_steps=[s for s in (as_text(x) for x in next_steps) if s] if isinstance(next_steps, list) else [],
            questions_for_customer=normalize_questions(questions),
            citations=[c for c in (Citation.from_raw(x) for x in citations) if c] if isinstance(citations, list) else [],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "customer_reply": self.customer_reply,
            "internal_notes": self.internal_notes,
            "next_steps": list(self.next_steps),
            "questions_for_customer": list(self.questions_for_customer),
            "citations": [c.to_dict() for c in self.citations],
        }


@dataclass
class AssistResult:
    """Outcome of one assist call."""
    ticket_id: str
    kb_top_k: int
    kb_hits: int
    reply: AssistReply
    comment_saved: bool = False
    comment_skipped: bool = False
    comment_error: Optional[str] = None
    cached: bool = False
    cache_type: Optional[CacheTier] = None
    parse_failed: bool = False
    debug: Optional[Dict[str, Any]] = None

    def cache_payload(self) -> Dict[str, Any]:
        """What the comment marker and the preview cache store."""
        return {"kbTopK": self.kb_top_k, "kbHits": self.kb_hits, **self.reply.to_dict()}


@dataclass
class UsedCitation:
    """Citation entry of a draft reply."""
    label: str
    reason: str
    filename: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: Any) -> Optional["UsedCitation"]:
        if not isinstance(raw, dict):
            return None
        filename = raw.get("filename")
        return cls(
            label=str(raw.get("label") or ""),
            reason=str(raw.get("reason") or ""),
            filename=str(filename) if filename else None,
        )


@dataclass
class DraftReply:
    """Agent-ready draft reply."""
    ticket_id: str
    reply_draft: str
    next_questions: List[str] = field(default_factory=list)
    used_citations: List[UsedCitation] = field(default_factory=list)
    suggestions: List[Any] = field(default_factory=list)
    warning: Optional[str] = None
