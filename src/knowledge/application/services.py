"""
Knowledge Application Services
==============================

Application services for knowledge ingestion and retrieval.

Orchestrates repositories, file storage, the vector index, the embedding
client and the job queue. Enqueueing a source commits the source reset and
the new job together; a failed queue submission is compensated by marking
both FAILED.
"""

import dataclasses
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from src.config import ADMIN_ROLES, KnowledgeSourceStatus, Role, settings
from src.core import (
    PermissionDeniedException,
    ResourceNotFoundException,
    ValidationException,
)
from src.infrastructure.llm import EmbeddingUsage, IEmbeddingClient
from src.infrastructure.queue import IJobQueue
from src.infrastructure.storage import ISourceFileStore
from src.infrastructure.tenancy import IEntitlementGate
from src.infrastructure.vectorstore import IChunkVectorIndex
from src.knowledge.domain import (
    ChunkInput,
    IndexJobPayload,
    Job,
    KnowledgeChunk,
    KnowledgeSource,
    QueryHit,
    ReplaceResult,
    SourcePage,
)
from src.shared.infrastructure.effects import run_non_critical
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

ProgressCallback = Callable[[float], Awaitable[None]]

MISSING_FILE_ERROR = "KnowledgeSource missing storage file (repair required)"


# ========== Repository Interfaces ==========

class ISourceRepository(ABC):
    """Interface for knowledge source data access."""

    @abstractmethod
    async def create(self, tenant_id: str, filename: str, mime_type: str, size_bytes: int) -> KnowledgeSource:
        """Create a QUEUED source without a stored file."""

    @abstractmethod
    async def get(self, tenant_id: str, source_id: str) -> Optional[KnowledgeSource]:
        """Get a source scoped to its tenant."""

    @abstractmethod
    async def set_storage_path(self, tenant_id: str, source_id: str, storage_path: str) -> None:
        """Attach the stored file pointer."""

    @abstractmethod
    async def update_file(
        self,
        tenant_id: str,
        source_id: str,
        filename: str,
        mime_type: str,
        size_bytes: int,
        storage_path: str,
    ) -> None:
        """Replace the stored file and its metadata."""

    @abstractmethod
    async def mark_failed(self, tenant_id: str, source_id: str, error: str) -> None:
        """Mark a source FAILED outside of any job."""

    @abstractmethod
    async def mark_indexing(self, tenant_id: str, source_id: str) -> None:
        """Mark a source INDEXING."""

    @abstractmethod
    async def list_page(
        self,
        tenant_id: str,
        status: Optional[KnowledgeSourceStatus] = None,
        q: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> SourcePage:
        """Offset page, newest first, with total count."""

    @abstractmethod
    async def list_after_cursor(
        self,
        tenant_id: str,
        cursor: str,
        limit: int = 20,
        status: Optional[KnowledgeSourceStatus] = None,
        q: Optional[str] = None,
    ) -> SourcePage:
        """Keyset page following an opaque cursor."""

    @abstractmethod
    async def status_counts(self, tenant_id: str) -> Dict[str, int]:
        """Count of sources per status, every status present."""

    @abstractmethod
    async def delete_cascade(self, tenant_id: str, source_id: str) -> bool:
        """Delete chunks, jobs and the source in one transaction."""


class IJobRepository(ABC):
    """Interface for jobs and the job/source transitions that change together."""

    @abstractmethod
    async def create_with_source_reset(self, tenant_id: str, source_id: str, payload: dict) -> Job:
        """Reset the source to QUEUED and create a QUEUED job atomically."""

    @abstractmethod
    async def mark_running(self, job_id: str) -> bool:
        """Claim a QUEUED job as RUNNING; False when it was not QUEUED."""

    @abstractmethod
    async def update_progress(self, job_id: str, progress: int) -> None:
        """Store job progress (0-100)."""

    @abstractmethod
    async def complete(self, job_id: str, tenant_id: str, source_id: str) -> bool:
        """RUNNING job SUCCEEDED and source READY atomically; False when the job was not RUNNING."""

    @abstractmethod
    async def fail(self, job_id: str, tenant_id: str, source_id: Optional[str], error: str) -> bool:
        """Non-terminal job FAILED and source FAILED atomically; terminal jobs are left untouched."""

    @abstractmethod
    async def get(self, tenant_id: str, job_id: str) -> Optional[Job]:
        """Get a job scoped to its tenant."""

    @abstractmethod
    async def latest_for_source(self, tenant_id: str, source_id: str) -> Optional[Job]:
        """Most recently created job of a source."""

    @abstractmethod
    async def fail_stale_running(self, older_than_seconds: int, error: str) -> List[Job]:
        """Fail RUNNING jobs not updated within the threshold, with their INDEXING sources."""


class IChunkRepository(ABC):
    """Interface for chunk rows."""

    @abstractmethod
    async def delete_for_source(self, tenant_id: str, source_id: str) -> int:
        """Delete every chunk row of a source."""

    @abstractmethod
    async def create(
        self,
        tenant_id: str,
        source_id: str,
        ordinal: int,
        content: str,
        metadata: Optional[dict] = None,
    ) -> KnowledgeChunk:
        """Insert one chunk row."""

    @abstractmethod
    async def mark_embedded(self, chunk_id: str) -> None:
        """Record that the chunk's vector is stored."""

    @abstractmethod
    async def get_with_sources(
        self,
        tenant_id: str,
        chunk_ids: Sequence[str],
    ) -> Dict[str, Tuple[KnowledgeChunk, KnowledgeSource]]:
        """Embedded chunks by id, joined with their parent source."""


class ITextExtractor(ABC):
    """Interface for turning stored bytes into plain text."""

    @abstractmethod
    def extract(self, data: bytes, mime_type: Optional[str], filename: Optional[str]) -> str:
        """Extract text; raise ValidationException when the file cannot be read."""


# ========== Vector Store Access ==========

class KnowledgeStore:
    """
    Chunk persistence and similarity search.

    Chunk rows live in the relational store, vectors in the vector index,
    joined by chunk id.
    """

    def __init__(
        self,
        chunk_repository: IChunkRepository,
        vector_index: IChunkVectorIndex,
        embedder: IEmbeddingClient,
    ):
        self._chunks = chunk_repository
        self._index = vector_index
        self._embedder = embedder

    async def replace_chunks(
        self,
        tenant_id: str,
        source_id: str,
        chunks: Sequence[ChunkInput],
        on_progress: Optional[ProgressCallback] = None,
    ) -> ReplaceResult:
        """
        Replace every chunk of a source.

        Existing vectors and rows are deleted first; then each chunk is
        written, embedded and, when the vector is non-empty, indexed.
        Embedding errors propagate to the caller.

        Args:
            tenant_id: Owning tenant
            source_id: Source whose chunks are replaced
            chunks: New chunks in ordinal order
            on_progress: Awaited with the completed fraction after each chunk

        Returns:
            ReplaceResult with inserted and embedded counts
        """
        await self._index.delete_source(tenant_id, source_id)
        removed = await self._chunks.delete_for_source(tenant_id, source_id)
        logger.info(
            "Existing chunks removed",
            extra={"tenant_id": tenant_id, "source_id": source_id, "removed": removed}
        )

        total = max(1, len(chunks))
        inserted = 0
        embedded = 0
        for i, chunk in enumerate(chunks):
            row = await self._chunks.create(
                tenant_id, source_id, chunk.ordinal, chunk.content, chunk.metadata
            )
            inserted += 1

            vector = await self._embedder.embed(chunk.content)
            if vector:
                await self._index.upsert(tenant_id, source_id, row.id, vector)
                await self._chunks.mark_embedded(row.id)
                embedded += 1

            if on_progress is not None:
                await on_progress((i + 1) / total)

        return ReplaceResult(inserted=inserted, embedded=embedded)

    async def query(
        self,
        tenant_id: str,
        text: str,
        top_k: int,
        usage: Optional[EmbeddingUsage] = None,
    ) -> List[QueryHit]:
        """
        Top-k chunks of the tenant for a text, most similar first.

        An empty embedding returns no hits without touching the index.
        """
        vector = await self._embedder.embed(text, usage=usage)
        if not vector:
            return []

        hits = await self._index.search(tenant_id, vector, top_k)
        if not hits:
            return []

        rows = await self._chunks.get_with_sources(tenant_id, [h.chunk_id for h in hits])
        results: List[QueryHit] = []
        for hit in hits:
            row = rows.get(hit.chunk_id)
            # Vectors of chunks deleted mid re-index have no row
            if row is None:
                continue
            chunk, source = row
            results.append(QueryHit(
                chunk_id=chunk.id,
                source_id=source.id,
                filename=source.filename,
                mime_type=source.mime_type,
                ordinal=chunk.ordinal,
                similarity=hit.similarity,
                content=chunk.content,
            ))
        return results


# ========== Application Services ==========

def clamp_top_k(top_k: Optional[int]) -> int:
    """Default and bound a caller-supplied topK."""
    if top_k is None:
        return settings.kb_top_k_default
    return max(1, min(settings.kb_top_k_max, int(top_k)))


class RetrievalService:
    """Thin retrieval pass-through with topK defaulting and bounding."""

    def __init__(self, store: KnowledgeStore):
        self._store = store

    async def query(
        self,
        tenant_id: str,
        text: str,
        top_k: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> List[QueryHit]:
        usage = EmbeddingUsage(tenant_id=tenant_id, user_id=user_id, mode="query")
        return await self._store.query(tenant_id, text, clamp_top_k(top_k), usage=usage)


@dataclass
class SourceDetail:
    """A source with its most recent job."""
    source: KnowledgeSource
    latest_job: Optional[Job] = None


@dataclass
class CreatedSource:
    """A newly created source and the job indexing it."""
    source: KnowledgeSource
    job: Job


class KnowledgeService:
    """
    Service for knowledge source lifecycle.

    Creation, listing, retry, repair and deletion of sources; every
    enqueue goes through ``enqueue_source_index``.
    """

    def __init__(
        self,
        source_repository: ISourceRepository,
        job_repository: IJobRepository,
        file_store: ISourceFileStore,
        queue: IJobQueue,
        vector_index: IChunkVectorIndex,
        entitlements: IEntitlementGate,
        retrieval: RetrievalService,
    ):
        self._sources = source_repository
        self._jobs = job_repository
        self._files = file_store
        self._queue = queue
        self._index = vector_index
        self._entitlements = entitlements
        self._retrieval = retrieval

    # ----- creation -----

    async def create_source_from_upload(
        self,
        tenant_id: str,
        user_id: Optional[str],
        filename: str,
        mime_type: str,
        data: bytes,
    ) -> CreatedSource:
        """Store an uploaded file as a new source and enqueue its indexing."""
        if not data:
            raise ValidationException("Uploaded file is empty")

        await self._entitlements.assert_can_add_kb_source(tenant_id)

        source = await self._sources.create(tenant_id, filename, mime_type, len(data))
        try:
            storage_path = await self._files.save_upload(tenant_id, source.id, filename, data)
        except Exception as e:
            await self._sources.mark_failed(tenant_id, source.id, f"Failed to store file: {e}")
            raise
        await self._sources.set_storage_path(tenant_id, source.id, storage_path)

        job = await self.enqueue_source_index(tenant_id, source.id, requested_by=user_id, mode="upload")
        return CreatedSource(source=await self._require_source(tenant_id, source.id), job=job)

    async def create_source_from_text(
        self,
        tenant_id: str,
        user_id: Optional[str],
        filename: str,
        content: str,
        mime_type: Optional[str] = None,
    ) -> CreatedSource:
        """Store raw text as a new source and enqueue its indexing."""
        if not (content or "").strip():
            raise ValidationException("Text content is empty")

        await self._entitlements.assert_can_add_kb_source(tenant_id)

        mime_type = mime_type or "text/plain"
        size_bytes = len(content.encode("utf-8"))
        source = await self._sources.create(tenant_id, filename, mime_type, size_bytes)
        try:
            storage_path = await self._files.save_text(tenant_id, source.id, filename, content)
        except Exception as e:
            await self._sources.mark_failed(tenant_id, source.id, f"Failed to store file: {e}")
            raise
        await self._sources.set_storage_path(tenant_id, source.id, storage_path)

        job = await self.enqueue_source_index(tenant_id, source.id, requested_by=user_id, mode="text")
        return CreatedSource(source=await self._require_source(tenant_id, source.id), job=job)

    # ----- indexing -----

    async def enqueue_source_index(
        self,
        tenant_id: str,
        source_id: str,
        requested_by: Optional[str],
        mode: str = "full",
    ) -> Job:
        """
        Reset the source and submit a fresh indexing job.

        Raises:
            ResourceNotFoundException: Unknown source for this tenant
            ValidationException: Source has no stored file
            QueueException: Submission failed (job and source marked FAILED)
        """
        source = await self._require_source(tenant_id, source_id)
        if not source.has_file:
            raise ValidationException(MISSING_FILE_ERROR, {"source_id": source_id})

        payload = IndexJobPayload(
            tenant_id=tenant_id,
            source_id=source_id,
            requested_by=requested_by,
            mode=mode,
        )
        job = await self._jobs.create_with_source_reset(tenant_id, source_id, payload.to_dict())

        try:
            await self._queue.submit(job.id, payload.to_dict())
        except Exception as e:
            logger.error(
                "Queue submission failed, marking job and source FAILED",
                extra={"tenant_id": tenant_id, "source_id": source_id, "job_id": job.id, "error": str(e)}
            )
            await self._jobs.fail(job.id, tenant_id, source_id, f"Failed to enqueue job: {e}")
            raise

        logger.info(
            "Source indexing enqueued",
            extra={"tenant_id": tenant_id, "source_id": source_id, "job_id": job.id, "mode": mode}
        )
        return job

    async def retry_source(self, tenant_id: str, user_id: Optional[str], source_id: str) -> Job:
        """Re-enqueue indexing of a source that still has its stored file."""
        return await self.enqueue_source_index(tenant_id, source_id, requested_by=user_id, mode="retry")

    async def repair_source(
        self,
        tenant_id: str,
        user_id: Optional[str],
        source_id: str,
        filename: str,
        mime_type: str,
        data: bytes,
    ) -> Job:
        """Replace a source's stored file, then re-enqueue indexing."""
        if not data:
            raise ValidationException("Uploaded file is empty")

        await self._require_source(tenant_id, source_id)
        storage_path = await self._files.save_upload(tenant_id, source_id, filename, data)
        await self._sources.update_file(
            tenant_id, source_id, filename, mime_type, len(data), storage_path
        )
        return await self.enqueue_source_index(tenant_id, source_id, requested_by=user_id, mode="repair")

    # ----- reads -----

    async def list_sources(
        self,
        tenant_id: str,
        status: Optional[KnowledgeSourceStatus] = None,
        q: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
        cursor: Optional[str] = None,
    ) -> SourcePage:
        """Offset page by default; keyset page when a cursor is given."""
        page = max(1, page)
        page_size = max(1, min(100, page_size))
        if cursor:
            return await self._sources.list_after_cursor(tenant_id, cursor, page_size, status, q)
        return await self._sources.list_page(tenant_id, status, q, page, page_size)

    async def get_status_counts(self, tenant_id: str) -> Dict[str, int]:
        return await self._sources.status_counts(tenant_id)

    async def get_sources_summary(self, tenant_id: str, limit: int = 5) -> Tuple[Dict[str, int], SourcePage]:
        counts = await self._sources.status_counts(tenant_id)
        recent = await self._sources.list_page(tenant_id, page=1, page_size=max(1, limit))
        return counts, recent

    async def get_source(self, tenant_id: str, role: Optional[Role], source_id: str) -> SourceDetail:
        """Source with its latest job; the storage pointer is only shown to admins."""
        source = await self._require_source(tenant_id, source_id)
        if role not in ADMIN_ROLES:
            source = dataclasses.replace(source, storage_path=None)
        latest_job = await self._jobs.latest_for_source(tenant_id, source_id)
        return SourceDetail(source=source, latest_job=latest_job)

    async def get_job(self, tenant_id: str, job_id: str) -> Job:
        job = await self._jobs.get(tenant_id, job_id)
        if job is None:
            raise ResourceNotFoundException("Job", job_id)
        return job

    async def query(
        self,
        tenant_id: str,
        text: str,
        top_k: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> List[QueryHit]:
        return await self._retrieval.query(tenant_id, text, top_k, user_id=user_id)

    # ----- deletion -----

    async def delete_source(self, tenant_id: str, role: Optional[Role], source_id: str) -> Optional[dict]:
        """
        Delete a source with its chunks, jobs, vectors and files.

        Returns:
            ``{"deleted": True, "sourceId": ...}`` or None when not found
        """
        if role not in ADMIN_ROLES:
            raise PermissionDeniedException(
                "Only OWNER or ADMIN can delete knowledge sources",
                {"role": role.value if role else None}
            )

        deleted = await self._sources.delete_cascade(tenant_id, source_id)
        if not deleted:
            return None

        # Rows are gone, so stray vectors can no longer surface in queries
        await run_non_critical("delete_source_vectors", self._index.delete_source, tenant_id, source_id)
        await run_non_critical("remove_source_dir", self._files.remove_source_dir, tenant_id, source_id)

        logger.info("Knowledge source deleted", extra={"tenant_id": tenant_id, "source_id": source_id})
        return {"deleted": True, "sourceId": source_id}

    async def _require_source(self, tenant_id: str, source_id: str) -> KnowledgeSource:
        source = await self._sources.get(tenant_id, source_id)
        if source is None:
            raise ResourceNotFoundException("KnowledgeSource", source_id)
        return source
