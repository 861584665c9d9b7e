"""
Knowledge Domain Entities
=========================

Domain entities for knowledge ingestion and retrieval.

Contains pure Python business objects for sources, chunks, indexing jobs
and retrieval hits.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.config import JobStatus, JobType, KnowledgeSourceStatus, TERMINAL_JOB_STATUSES

SNIPPET_LENGTH = 240


@dataclass
class KnowledgeSource:
    """
    One ingested document.

    READY implies an indexed timestamp and no error; FAILED implies an error.
    """
    id: str
    tenant_id: str
    filename: str
    mime_type: str
    size_bytes: int
    status: KnowledgeSourceStatus
    storage_path: Optional[str] = None
    error: Optional[str] = None
    indexed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.status = KnowledgeSourceStatus(self.status)
        if self.status == KnowledgeSourceStatus.READY and (self.indexed_at is None or self.error):
            raise ValueError("READY source requires indexed_at and no error")
        if self.status == KnowledgeSourceStatus.FAILED and not self.error:
            raise ValueError("FAILED source requires an error")

    @property
    def has_file(self) -> bool:
        return bool(self.storage_path)


@dataclass
class KnowledgeChunk:
    """One embeddable text segment of a source."""
    id: str
    tenant_id: str
    source_id: str
    ordinal: int
    content: str
    embedded: bool = False
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class ChunkInput:
    """A chunk to be written by ``replace_chunks``."""
    content: str
    ordinal: int
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class ReplaceResult:
    """Outcome of replacing a source's chunk set."""
    inserted: int
    embedded: int


@dataclass
class IndexJobPayload:
    """What the worker needs to index one source."""
    tenant_id: str
    source_id: str
    requested_by: Optional[str]
    mode: str = "full"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenantId": self.tenant_id,
            "sourceId": self.source_id,
            "requestedBy": self.requested_by,
            "mode": self.mode,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IndexJobPayload":
        tenant_id = data.get("tenantId")
        source_id = data.get("sourceId")
        if not tenant_id or not source_id:
            raise ValueError("Job payload requires tenantId and sourceId")
        if "requestedBy" not in data:
            raise ValueError("Job payload requires requestedBy (null for system-triggered jobs)")
        requested_by = data["requestedBy"]
        return cls(
            tenant_id=str(tenant_id),
            source_id=str(source_id),
            requested_by=str(requested_by) if requested_by is not None else None,
            mode=data.get("mode") or "full",
        )


@dataclass
class Job:
    """One indexing attempt."""
    id: str
    tenant_id: str
    type: JobType
    status: JobStatus
    source_id: Optional[str] = None
    last_error: Optional[str] = None
    progress: int = 0
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.type = JobType(self.type)
        self.status = JobStatus(self.status)
        if not 0 <= self.progress <= 100:
            raise ValueError("progress must be between 0 and 100")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


@dataclass
class QueryHit:
    """A retrieved chunk joined with its parent source."""
    chunk_id: str
    source_id: str
    filename: str
    mime_type: str
    ordinal: int
    similarity: float
    content: str

    @property
    def snippet(self) -> str:
        return self.content[:SNIPPET_LENGTH]

    def search_text(self) -> str:
        """Lowercased filename, content and snippet used for keyword checks."""
        return f"{self.filename}\n{self.content}\n{self.snippet}".lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chunkId": self.chunk_id,
            "sourceId": self.source_id,
            "filename": self.filename,
            "mimeType": self.mime_type,
            "idx": self.ordinal,
            "similarity": self.similarity,
            "snippet": self.snippet,
            "content": self.content,
        }


@dataclass
class SourcePage:
    """One page of a source listing."""
    items: List[KnowledgeSource]
    total: Optional[int] = None
    page: Optional[int] = None
    page_size: Optional[int] = None
    next_cursor: Optional[str] = None
    limit: Optional[int] = None
