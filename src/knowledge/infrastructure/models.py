"""
Knowledge Infrastructure Models
===============================

SQLAlchemy ORM models for knowledge sources, chunks and indexing jobs.

Embedding vectors are not stored here; ``embedded`` records whether the
chunk's vector was written to the vector index.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.config import JobStatus, JobType, KnowledgeSourceStatus
from src.infrastructure.database import Base, ensure_utc, utcnow
from src.knowledge.domain import Job, KnowledgeChunk, KnowledgeSource


class KnowledgeSourceModel(Base):
    """
    Database model for KnowledgeSource entity.

    Status transitions are written only by the indexing worker and the
    enqueue path.
    """
    __tablename__ = "knowledge_sources"
    __table_args__ = (
        Index("ix_knowledge_sources_tenant_created", "tenant_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=KnowledgeSourceStatus.QUEUED.value, index=True
    )
    storage_path: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    indexed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def to_domain(self) -> KnowledgeSource:
        return KnowledgeSource(
            id=str(self.id),
            tenant_id=self.tenant_id,
            filename=self.filename,
            mime_type=self.mime_type,
            size_bytes=self.size_bytes,
            status=KnowledgeSourceStatus(self.status),
            storage_path=self.storage_path,
            error=self.error,
            indexed_at=ensure_utc(self.indexed_at),
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
        )


class KnowledgeChunkModel(Base):
    """Database model for KnowledgeChunk entity."""
    __tablename__ = "knowledge_chunks"
    __table_args__ = (
        UniqueConstraint("source_id", "ordinal", name="uq_knowledge_chunks_source_ordinal"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    source_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("knowledge_sources.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    ordinal: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    embedded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    meta: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    def to_domain(self) -> KnowledgeChunk:
        return KnowledgeChunk(
            id=str(self.id),
            tenant_id=self.tenant_id,
            source_id=str(self.source_id),
            ordinal=self.ordinal,
            content=self.content,
            embedded=self.embedded,
            metadata=self.meta,
        )


class JobModel(Base):
    """Database model for Job entity (one row per indexing attempt)."""
    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_tenant_source_created", "tenant_id", "source_id", "created_at"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default=JobType.INDEX_KB_SOURCE.value)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.QUEUED.value, index=True
    )
    source_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("knowledge_sources.id", ondelete="CASCADE"),
        nullable=True
    )
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def to_domain(self) -> Job:
        return Job(
            id=str(self.id),
            tenant_id=self.tenant_id,
            type=JobType(self.type),
            status=JobStatus(self.status),
            source_id=str(self.source_id) if self.source_id else None,
            last_error=self.last_error,
            progress=self.progress,
            payload=dict(self.payload or {}),
            created_at=ensure_utc(self.created_at),
            updated_at=ensure_utc(self.updated_at),
        )
