"""
Knowledge Infrastructure Repositories
=====================================

SQLAlchemy implementations of the knowledge repositories.

Each public method runs in its own session. Where a job and its source
must change together, both writes happen inside one ``session.begin()``
block so they commit or roll back as a pair.
"""

import base64
import binascii
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID, uuid4

from sqlalchemy import delete, func, or_, and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import JobStatus, JobType, KnowledgeSourceStatus
from src.core import ValidationException
from src.infrastructure.database import utcnow
from src.knowledge.application.services import (
    IChunkRepository,
    IJobRepository,
    ISourceRepository,
)
from src.knowledge.domain import Job, KnowledgeChunk, KnowledgeSource, SourcePage
from src.knowledge.infrastructure.models import JobModel, KnowledgeChunkModel, KnowledgeSourceModel


def _as_uuid(value: Optional[str]) -> Optional[UUID]:
    if value is None:
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def encode_cursor(created_at: datetime, source_id: str) -> str:
    """Opaque cursor for keyset pagination (newest first)."""
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    raw = f"{created_at.isoformat()}|{source_id}"
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> Tuple[datetime, UUID]:
    try:
        raw = base64.b64decode(cursor.encode("ascii"), validate=True).decode("utf-8")
        created_raw, id_raw = raw.split("|", 1)
        created_at = datetime.fromisoformat(created_raw)
        return created_at, UUID(id_raw)
    except (ValueError, binascii.Error, UnicodeDecodeError):
        raise ValidationException("Invalid cursor", {"cursor": cursor})


class SQLAlchemySourceRepository(ISourceRepository):
    """SQLAlchemy implementation for knowledge sources."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(
        self,
        tenant_id: str,
        filename: str,
        mime_type: str,
        size_bytes: int,
    ) -> KnowledgeSource:
        async with self._session_factory() as session, session.begin():
            model = KnowledgeSourceModel(
                id=uuid4(),
                tenant_id=tenant_id,
                filename=filename,
                mime_type=mime_type,
                size_bytes=size_bytes,
                status=KnowledgeSourceStatus.QUEUED.value,
            )
            session.add(model)
            await session.flush()
            return model.to_domain()

    async def get(self, tenant_id: str, source_id: str) -> Optional[KnowledgeSource]:
        source_uuid = _as_uuid(source_id)
        if source_uuid is None:
            return None
        async with self._session_factory() as session:
            stmt = select(KnowledgeSourceModel).where(
                KnowledgeSourceModel.id == source_uuid,
                KnowledgeSourceModel.tenant_id == tenant_id,
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return model.to_domain() if model else None

    async def get_many(self, tenant_id: str, source_ids: Sequence[str]) -> Dict[str, KnowledgeSource]:
        ids = [u for u in (_as_uuid(s) for s in source_ids) if u is not None]
        if not ids:
            return {}
        async with self._session_factory() as session:
            stmt = select(KnowledgeSourceModel).where(
                KnowledgeSourceModel.tenant_id == tenant_id,
                KnowledgeSourceModel.id.in_(ids),
            )
            rows = (await session.execute(stmt)).scalars().all()
            return {str(m.id): m.to_domain() for m in rows}

    async def set_storage_path(self, tenant_id: str, source_id: str, storage_path: str) -> None:
        await self._update(tenant_id, source_id, storage_path=storage_path)

    async def update_file(
        self,
        tenant_id: str,
        source_id: str,
        filename: str,
        mime_type: str,
        size_bytes: int,
        storage_path: str,
    ) -> None:
        await self._update(
            tenant_id,
            source_id,
            filename=filename,
            mime_type=mime_type,
            size_bytes=size_bytes,
            storage_path=storage_path,
            status=KnowledgeSourceStatus.QUEUED.value,
            error=None,
            indexed_at=None,
        )

    async def mark_failed(self, tenant_id: str, source_id: str, error: str) -> None:
        await self._update(tenant_id, source_id, status=KnowledgeSourceStatus.FAILED.value, error=error)

    async def mark_indexing(self, tenant_id: str, source_id: str) -> None:
        await self._update(tenant_id, source_id, status=KnowledgeSourceStatus.INDEXING.value, error=None)

    async def _update(self, tenant_id: str, source_id: str, **values) -> None:
        source_uuid = _as_uuid(source_id)
        if source_uuid is None:
            return
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(KnowledgeSourceModel)
                .where(
                    KnowledgeSourceModel.id == source_uuid,
                    KnowledgeSourceModel.tenant_id == tenant_id,
                )
                .values(updated_at=utcnow(), **values)
            )

    def _filtered(self, tenant_id: str, status: Optional[KnowledgeSourceStatus], q: Optional[str]):
        conditions = [KnowledgeSourceModel.tenant_id == tenant_id]
        if status:
            conditions.append(KnowledgeSourceModel.status == KnowledgeSourceStatus(status).value)
        if q:
            conditions.append(KnowledgeSourceModel.filename.icontains(q, autoescape=True))
        return conditions

    async def list_page(
        self,
        tenant_id: str,
        status: Optional[KnowledgeSourceStatus] = None,
        q: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> SourcePage:
        conditions = self._filtered(tenant_id, status, q)
        async with self._session_factory() as session:
            total = (await session.execute(
                select(func.count()).select_from(KnowledgeSourceModel).where(*conditions)
            )).scalar_one()
            stmt = (
                select(KnowledgeSourceModel)
                .where(*conditions)
                .order_by(KnowledgeSourceModel.created_at.desc(), KnowledgeSourceModel.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
            rows = (await session.execute(stmt)).scalars().all()
        return SourcePage(
            items=[m.to_domain() for m in rows],
            total=int(total),
            page=page,
            page_size=page_size,
        )

    async def list_after_cursor(
        self,
        tenant_id: str,
        cursor: str,
        limit: int = 20,
        status: Optional[KnowledgeSourceStatus] = None,
        q: Optional[str] = None,
    ) -> SourcePage:
        created_at, last_id = decode_cursor(cursor)
        conditions = self._filtered(tenant_id, status, q)
        conditions.append(or_(
            KnowledgeSourceModel.created_at < created_at,
            and_(KnowledgeSourceModel.created_at == created_at, KnowledgeSourceModel.id < last_id),
        ))
        async with self._session_factory() as session:
            stmt = (
                select(KnowledgeSourceModel)
                .where(*conditions)
                .order_by(KnowledgeSourceModel.created_at.desc(), KnowledgeSourceModel.id.desc())
                .limit(limit)
            )
            rows = (await session.execute(stmt)).scalars().all()

        items = [m.to_domain() for m in rows]
        next_cursor = None
        if len(items) == limit and items:
            next_cursor = encode_cursor(items[-1].created_at, items[-1].id)
        return SourcePage(items=items, next_cursor=next_cursor, limit=limit)

    async def status_counts(self, tenant_id: str) -> Dict[str, int]:
        counts = {status.value: 0 for status in KnowledgeSourceStatus}
        async with self._session_factory() as session:
            stmt = (
                select(KnowledgeSourceModel.status, func.count())
                .where(KnowledgeSourceModel.tenant_id == tenant_id)
                .group_by(KnowledgeSourceModel.status)
            )
            for status, count in (await session.execute(stmt)).all():
                counts[status] = int(count)
        return counts

    async def delete_cascade(self, tenant_id: str, source_id: str) -> bool:
        source_uuid = _as_uuid(source_id)
        if source_uuid is None:
            return False
        async with self._session_factory() as session, session.begin():
            exists = (await session.execute(
                select(KnowledgeSourceModel.id).where(
                    KnowledgeSourceModel.id == source_uuid,
                    KnowledgeSourceModel.tenant_id == tenant_id,
                )
            )).scalar_one_or_none()
            if exists is None:
                return False
            await session.execute(delete(KnowledgeChunkModel).where(
                KnowledgeChunkModel.tenant_id == tenant_id,
                KnowledgeChunkModel.source_id == source_uuid,
            ))
            await session.execute(delete(JobModel).where(
                JobModel.tenant_id == tenant_id,
                JobModel.source_id == source_uuid,
            ))
            await session.execute(delete(KnowledgeSourceModel).where(
                KnowledgeSourceModel.id == source_uuid,
            ))
        return True


class SQLAlchemyJobRepository(IJobRepository):
    """SQLAlchemy implementation for indexing jobs and their paired source transitions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create_with_source_reset(
        self,
        tenant_id: str,
        source_id: str,
        payload: dict,
    ) -> Job:
        source_uuid = _as_uuid(source_id)
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(KnowledgeSourceModel)
                .where(
                    KnowledgeSourceModel.id == source_uuid,
                    KnowledgeSourceModel.tenant_id == tenant_id,
                )
                .values(
                    status=KnowledgeSourceStatus.QUEUED.value,
                    error=None,
                    indexed_at=None,
                    updated_at=utcnow(),
                )
            )
            job = JobModel(
                id=uuid4(),
                tenant_id=tenant_id,
                type=JobType.INDEX_KB_SOURCE.value,
                status=JobStatus.QUEUED.value,
                source_id=source_uuid,
                progress=0,
                payload=payload,
            )
            session.add(job)
            await session.flush()
            return job.to_domain()

    async def mark_running(self, job_id: str) -> bool:
        job_uuid = _as_uuid(job_id)
        if job_uuid is None:
            return False
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(JobModel)
                .where(JobModel.id == job_uuid, JobModel.status == JobStatus.QUEUED.value)
                .values(status=JobStatus.RUNNING.value, last_error=None, updated_at=utcnow())
            )
            return result.rowcount == 1

    async def update_progress(self, job_id: str, progress: int) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(JobModel)
                .where(JobModel.id == _as_uuid(job_id))
                .values(progress=max(0, min(100, int(progress))), updated_at=utcnow())
            )

    async def complete(self, job_id: str, tenant_id: str, source_id: str) -> bool:
        now = utcnow()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(JobModel)
                .where(JobModel.id == _as_uuid(job_id), JobModel.status == JobStatus.RUNNING.value)
                .values(status=JobStatus.SUCCEEDED.value, last_error=None, progress=100, updated_at=now)
            )
            if result.rowcount != 1:
                return False
            await session.execute(
                update(KnowledgeSourceModel)
                .where(
                    KnowledgeSourceModel.id == _as_uuid(source_id),
                    KnowledgeSourceModel.tenant_id == tenant_id,
                )
                .values(
                    status=KnowledgeSourceStatus.READY.value,
                    indexed_at=now,
                    error=None,
                    updated_at=now,
                )
            )
            return True

    async def fail(self, job_id: str, tenant_id: str, source_id: Optional[str], error: str) -> bool:
        now = utcnow()
        async with self._session_factory() as session, session.begin():
            result = await session.execute(
                update(JobModel)
                .where(
                    JobModel.id == _as_uuid(job_id),
                    JobModel.status.in_([JobStatus.QUEUED.value, JobStatus.RUNNING.value]),
                )
                .values(status=JobStatus.FAILED.value, last_error=error, updated_at=now)
            )
            if result.rowcount != 1:
                return False
            source_uuid = _as_uuid(source_id)
            if source_uuid is not None:
                await session.execute(
                    update(KnowledgeSourceModel)
                    .where(
                        KnowledgeSourceModel.id == source_uuid,
                        KnowledgeSourceModel.tenant_id == tenant_id,
                    )
                    .values(status=KnowledgeSourceStatus.FAILED.value, error=error, updated_at=now)
                )
            return True

    async def get(self, tenant_id: str, job_id: str) -> Optional[Job]:
        job_uuid = _as_uuid(job_id)
        if job_uuid is None:
            return None
        async with self._session_factory() as session:
            stmt = select(JobModel).where(JobModel.id == job_uuid, JobModel.tenant_id == tenant_id)
            model = (await session.execute(stmt)).scalar_one_or_none()
            return model.to_domain() if model else None

    async def get_by_id(self, job_id: str) -> Optional[Job]:
        job_uuid = _as_uuid(job_id)
        if job_uuid is None:
            return None
        async with self._session_factory() as session:
            model = await session.get(JobModel, job_uuid)
            return model.to_domain() if model else None

    async def latest_for_source(self, tenant_id: str, source_id: str) -> Optional[Job]:
        source_uuid = _as_uuid(source_id)
        if source_uuid is None:
            return None
        async with self._session_factory() as session:
            stmt = (
                select(JobModel)
                .where(JobModel.tenant_id == tenant_id, JobModel.source_id == source_uuid)
                .order_by(JobModel.created_at.desc())
                .limit(1)
            )
            model = (await session.execute(stmt)).scalar_one_or_none()
            return model.to_domain() if model else None

    async def fail_stale_running(self, older_than_seconds: int, error: str) -> List[Job]:
        cutoff = utcnow() - timedelta(seconds=older_than_seconds)
        now = utcnow()
        async with self._session_factory() as session, session.begin():
            stmt = select(JobModel).where(
                JobModel.status == JobStatus.RUNNING.value,
                JobModel.updated_at < cutoff,
            ).with_for_update(skip_locked=True)
            stale = (await session.execute(stmt)).scalars().all()
            for job in stale:
                job.status = JobStatus.FAILED.value
                job.last_error = error
                job.updated_at = now
                if job.source_id is not None:
                    await session.execute(
                        update(KnowledgeSourceModel)
                        .where(
                            KnowledgeSourceModel.id == job.source_id,
                            KnowledgeSourceModel.tenant_id == job.tenant_id,
                            KnowledgeSourceModel.status == KnowledgeSourceStatus.INDEXING.value,
                        )
                        .values(status=KnowledgeSourceStatus.FAILED.value, error=error, updated_at=now)
                    )
            await session.flush()
            return [job.to_domain() for job in stale]


class SQLAlchemyChunkRepository(IChunkRepository):
    """SQLAlchemy implementation for chunk rows."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def delete_for_source(self, tenant_id: str, source_id: str) -> int:
        async with self._session_factory() as session, session.begin():
            result = await session.execute(delete(KnowledgeChunkModel).where(
                KnowledgeChunkModel.tenant_id == tenant_id,
                KnowledgeChunkModel.source_id == _as_uuid(source_id),
            ))
            return result.rowcount or 0

    async def create(
        self,
        tenant_id: str,
        source_id: str,
        ordinal: int,
        content: str,
        metadata: Optional[dict] = None,
    ) -> KnowledgeChunk:
        async with self._session_factory() as session, session.begin():
            model = KnowledgeChunkModel(
                id=uuid4(),
                tenant_id=tenant_id,
                source_id=_as_uuid(source_id),
                ordinal=ordinal,
                content=content,
                embedded=False,
                meta=metadata,
            )
            session.add(model)
            await session.flush()
            return model.to_domain()

    async def mark_embedded(self, chunk_id: str) -> None:
        async with self._session_factory() as session, session.begin():
            await session.execute(
                update(KnowledgeChunkModel)
                .where(KnowledgeChunkModel.id == _as_uuid(chunk_id))
                .values(embedded=True)
            )

    async def list_for_source(self, tenant_id: str, source_id: str) -> List[KnowledgeChunk]:
        async with self._session_factory() as session:
            stmt = (
                select(KnowledgeChunkModel)
                .where(
                    KnowledgeChunkModel.tenant_id == tenant_id,
                    KnowledgeChunkModel.source_id == _as_uuid(source_id),
                )
                .order_by(KnowledgeChunkModel.ordinal)
            )
            return [m.to_domain() for m in (await session.execute(stmt)).scalars().all()]

    async def get_with_sources(
        self,
        tenant_id: str,
        chunk_ids: Sequence[str],
    ) -> Dict[str, Tuple[KnowledgeChunk, KnowledgeSource]]:
        ids = [u for u in (_as_uuid(c) for c in chunk_ids) if u is not None]
        if not ids:
            return {}
        async with self._session_factory() as session:
            stmt = (
                select(KnowledgeChunkModel, KnowledgeSourceModel)
                .join(KnowledgeSourceModel, KnowledgeSourceModel.id == KnowledgeChunkModel.source_id)
                .where(
                    KnowledgeChunkModel.tenant_id == tenant_id,
                    KnowledgeChunkModel.id.in_(ids),
                    KnowledgeChunkModel.embedded.is_(True),
                )
            )
            rows = (await session.execute(stmt)).all()
            return {str(chunk.id): (chunk.to_domain(), source.to_domain()) for chunk, source in rows}
