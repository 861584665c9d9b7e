"""
Knowledge Indexing Worker
=========================

Drives one indexing job from QUEUED to a terminal state, and runs a
bounded pool of consumers over the job queue.

Every path through ``SourceIndexer.process`` ends with the job SUCCEEDED
and the source READY, or both FAILED with the same error message.
"""

import asyncio
import math
from typing import List, Optional

from src.config import UsageEventType, settings, MIN_WORKER_CONCURRENCY, MAX_WORKER_CONCURRENCY
from src.core import DomainException, ValidationException
from src.infrastructure.queue import IJobQueue, QueueMessage
from src.infrastructure.storage import ISourceFileStore
from src.infrastructure.tenancy import IUsageSink
from src.knowledge.application.services import (
    IJobRepository,
    ISourceRepository,
    ITextExtractor,
    KnowledgeStore,
)
from src.knowledge.domain import ChunkInput, IndexJobPayload, chunk_paragraphs
from src.shared.infrastructure.effects import run_non_critical
from src.shared.infrastructure.logging import get_logger, log_latency

logger = get_logger(__name__)

SOURCE_NOT_FOUND_ERROR = "KnowledgeSource not found (or tenant mismatch)"
NO_TEXT_ERROR = "No text found in source file."
STALE_JOB_ERROR = "Indexing interrupted before completion; retry required"

PROGRESS_EXTRACTED = 10
PROGRESS_CHUNKED = 25
PROGRESS_EMBED_SPAN = 70


class SourceIndexer:
    """Runs the indexing state machine for one job."""

    def __init__(
        self,
        source_repository: ISourceRepository,
        job_repository: IJobRepository,
        file_store: ISourceFileStore,
        extractor: ITextExtractor,
        store: KnowledgeStore,
        usage_sink: Optional[IUsageSink] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        min_text_length: Optional[int] = None,
    ):
        self._sources = source_repository
        self._jobs = job_repository
        self._files = file_store
        self._extractor = extractor
        self._store = store
        self._usage_sink = usage_sink
        self._chunk_size = chunk_size or settings.kb_chunk_size
        self._chunk_overlap = settings.kb_chunk_overlap if chunk_overlap is None else chunk_overlap
        self._min_text_length = settings.kb_min_text_length if min_text_length is None else min_text_length

    async def process(self, job_id: str, payload: dict) -> int:
        """
        Index the source named by a job payload.

        Only a QUEUED job is claimed. A delivery whose job is already
        RUNNING or terminal (a redelivered or reclaimed message) is skipped
        and leaves the job and source untouched.

        Returns:
            Number of chunks written (0 when the delivery was skipped)

        Raises:
            Whatever failed; the job and source are marked FAILED first
        """
        if not await self._jobs.mark_running(job_id):
            logger.warning("Skipping delivery of a job that is not QUEUED", extra={"job_id": job_id})
            return 0

        try:
            job_payload = IndexJobPayload.from_dict(payload)
        except ValueError as e:
            logger.error("Rejecting job with invalid payload", extra={"job_id": job_id, "error": str(e)})
            await self._jobs.fail(job_id, "", None, str(e))
            raise

        tenant_id = job_payload.tenant_id
        source_id = job_payload.source_id
        log_extra = {"job_id": job_id, "tenant_id": tenant_id, "source_id": source_id}

        try:
            logger.info("Indexing job started", extra=log_extra)

            source = await self._sources.get(tenant_id, source_id)
            if source is None:
                raise DomainException(SOURCE_NOT_FOUND_ERROR, {"source_id": source_id})

            await self._sources.mark_indexing(tenant_id, source_id)

            if not source.storage_path:
                raise ValidationException("KnowledgeSource missing storage file (repair required)")
            data = await self._files.read_file(source.storage_path)
            text = self._extractor.extract(data, source.mime_type, source.filename)
            if len(text.strip()) < self._min_text_length:
                raise ValidationException(NO_TEXT_ERROR, {"source_id": source_id})
            await self._jobs.update_progress(job_id, PROGRESS_EXTRACTED)

            pieces = chunk_paragraphs(text, self._chunk_size, self._chunk_overlap)
            chunks = [
                ChunkInput(content=piece, ordinal=i, metadata={"sourceId": source_id})
                for i, piece in enumerate(pieces)
            ]
            await self._jobs.update_progress(job_id, PROGRESS_CHUNKED)

            async def on_progress(fraction: float) -> None:
                await self._jobs.update_progress(
                    job_id, PROGRESS_CHUNKED + math.floor(fraction * PROGRESS_EMBED_SPAN)
                )

            with log_latency(logger, "replace_chunks", **log_extra, chunks=len(chunks)):
                result = await self._store.replace_chunks(tenant_id, source_id, chunks, on_progress)
            await self._jobs.update_progress(job_id, 100)

            if not await self._jobs.complete(job_id, tenant_id, source_id):
                logger.warning("Job left RUNNING before completion; result discarded", extra=log_extra)
                return 0
        except Exception as e:
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            logger.error("Indexing job failed", extra={**log_extra, "error": message})
            await self._jobs.fail(job_id, tenant_id, source_id, message)
            raise

        logger.info(
            "Indexing job succeeded",
            extra={**log_extra, "chunks": result.inserted, "embedded": result.embedded}
        )

        if self._usage_sink is not None:
            await run_non_critical(
                "kb_embedding_usage",
                self._usage_sink.log_event,
                tenant_id,
                job_payload.requested_by,
                UsageEventType.KB_EMBEDDING,
                len(chunks),
                {"sourceId": source_id, "jobId": job_id, "mode": job_payload.mode},
            )
        return result.inserted


class WorkerPool:
    """
    Fixed-size pool of queue consumers.

    Each consumer holds at most one reserved message at a time, so at most
    ``concurrency`` jobs run concurrently in this process.
    """

    def __init__(
        self,
        queue: IJobQueue,
        indexer: SourceIndexer,
        concurrency: Optional[int] = None,
        poll_timeout_seconds: Optional[float] = None,
    ):
        self._queue = queue
        self._indexer = indexer
        requested = settings.worker_concurrency if concurrency is None else concurrency
        self.concurrency = max(MIN_WORKER_CONCURRENCY, min(MAX_WORKER_CONCURRENCY, requested))
        self._poll_timeout = (
            settings.queue_poll_timeout_seconds if poll_timeout_seconds is None else poll_timeout_seconds
        )
        self._stopping = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._stopping.clear()
        self._tasks = [
            asyncio.create_task(self._consume(i), name=f"kb-worker-{i}")
            for i in range(self.concurrency)
        ]
        logger.info("Worker pool started", extra={"concurrency": self.concurrency})

    async def stop(self) -> None:
        """Stop reserving new messages and wait for in-flight jobs to finish."""
        self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Worker pool stopped")

    async def run(self) -> None:
        """Start the pool and block until it is stopped."""
        self.start()
        await self._stopping.wait()
        await self.stop()

    def request_stop(self) -> None:
        self._stopping.set()

    async def _consume(self, worker_index: int) -> None:
        while not self._stopping.is_set():
            try:
                message = await self._queue.reserve(self._poll_timeout)
            except Exception as e:
                logger.error("Queue reserve failed", extra={"worker": worker_index, "error": str(e)})
                await asyncio.sleep(min(5.0, self._poll_timeout))
                continue

            if message is None:
                continue
            await self.handle(message, worker_index)

    async def handle(self, message: QueueMessage, worker_index: int = 0) -> bool:
        """Process one message and settle it with the queue; True on success."""
        try:
            await self._indexer.process(message.job_id, message.payload)
        except Exception as e:
            try:
                redelivered = await self._queue.fail(message, str(e))
            except Exception as settle_error:
                logger.error(
                    "Queue fail settlement failed",
                    extra={"worker": worker_index, "job_id": message.job_id, "error": str(settle_error)},
                )
                return False
            logger.warning(
                "Job delivery failed",
                extra={
                    "worker": worker_index,
                    "job_id": message.job_id,
                    "attempt": message.attempt,
                    "redelivered": redelivered,
                },
            )
            return False

        try:
            await self._queue.ack(message)
        except Exception as e:
            logger.error(
                "Queue ack failed",
                extra={"worker": worker_index, "job_id": message.job_id, "error": str(e)},
            )
        return True


class StaleJobReconciler:
    """
    Fails jobs left RUNNING by a crashed worker.

    Sources become FAILED with an "interrupted" error so a human retry can
    recover them; nothing is re-enqueued.
    """

    def __init__(self, job_repository: IJobRepository, stale_after_seconds: int):
        self._jobs = job_repository
        self._stale_after = stale_after_seconds

    async def sweep(self) -> int:
        stale = await self._jobs.fail_stale_running(self._stale_after, STALE_JOB_ERROR)
        for job in stale:
            logger.warning(
                "Stale indexing job marked FAILED",
                extra={"job_id": job.id, "tenant_id": job.tenant_id, "source_id": job.source_id}
            )
        return len(stale)
