"""Tests for the knowledge source lifecycle service."""

import asyncio

import pytest

from src.config import JobStatus, KnowledgeSourceStatus, Role
from src.core import (
    PermissionDeniedException,
    QuotaExceededException,
    ResourceNotFoundException,
    ValidationException,
)
from src.knowledge.application import KnowledgeService
from tests.fakes import AllowAllGate, InMemoryFileStore, InMemoryQueue


def make_service(sources, jobs, vector_index, retrieval, queue=None, files=None, gate=None):
    return KnowledgeService(
        source_repository=sources,
        job_repository=jobs,
        file_store=files or InMemoryFileStore(),
        queue=queue or InMemoryQueue(),
        vector_index=vector_index,
        entitlements=gate or AllowAllGate(),
        retrieval=retrieval,
    )


# --- creation ---

def test_upload_stores_file_and_enqueues_job(sources, jobs, vector_index, retrieval):
    queue = InMemoryQueue()
    files = InMemoryFileStore()
    service = make_service(sources, jobs, vector_index, retrieval, queue=queue, files=files)

    created = asyncio.run(service.create_source_from_upload("t1", "u1", "faq.md", "text/markdown", b"# FAQ"))

    assert created.source.status == KnowledgeSourceStatus.QUEUED
    assert created.source.storage_path in files.files
    assert created.job.status == JobStatus.QUEUED
    assert [m.job_id for m in queue.pending] == [created.job.id]
    assert queue.pending[0].payload == {
        "tenantId": "t1", "sourceId": created.source.id, "requestedBy": "u1", "mode": "upload",
    }


def test_text_source_defaults_to_plain_text(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)

    created = asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "Grüße"))

    assert created.source.mime_type == "text/plain"
    assert created.source.size_bytes == len("Grüße".encode("utf-8"))


@pytest.mark.parametrize("content", ["", "   \n"])
def test_blank_text_rejected(sources, jobs, vector_index, retrieval, content):
    service = make_service(sources, jobs, vector_index, retrieval)

    with pytest.raises(ValidationException):
        asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", content))


def test_empty_upload_rejected(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)

    with pytest.raises(ValidationException):
        asyncio.run(service.create_source_from_upload("t1", "u1", "a.txt", "text/plain", b""))


def test_source_quota_blocks_creation(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval, gate=AllowAllGate(sources_allowed=False))

    with pytest.raises(QuotaExceededException):
        asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "hello"))
    assert asyncio.run(sources.status_counts("t1"))["QUEUED"] == 0


def test_storage_failure_marks_source_failed(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval, files=InMemoryFileStore(fail_save=True))

    with pytest.raises(OSError):
        asyncio.run(service.create_source_from_upload("t1", "u1", "a.txt", "text/plain", b"data"))

    page = asyncio.run(sources.list_page("t1"))
    assert page.items[0].status == KnowledgeSourceStatus.FAILED
    assert "Failed to store file" in page.items[0].error


# --- enqueue ---

def test_queue_failure_marks_job_and_source_failed(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval, queue=InMemoryQueue(fail_submit=True))

    with pytest.raises(RuntimeError):
        asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "hello"))

    source = asyncio.run(sources.list_page("t1")).items[0]
    job = asyncio.run(jobs.latest_for_source("t1", source.id))
    assert source.status == KnowledgeSourceStatus.FAILED
    assert job.status == JobStatus.FAILED
    assert job.last_error == source.error
    assert source.error.startswith("Failed to enqueue job")


def test_retry_creates_new_job_and_resets_source(sources, jobs, vector_index, retrieval):
    queue = InMemoryQueue()
    service = make_service(sources, jobs, vector_index, retrieval, queue=queue)

    async def scenario():
        created = await service.create_source_from_text("t1", "u1", "note.txt", "hello")
        await jobs.fail(created.job.id, "t1", created.source.id, "No text found in source file.")
        retry = await service.retry_source("t1", "u2", created.source.id)
        return created, retry, await sources.get("t1", created.source.id)

    created, retry, source = asyncio.run(scenario())
    assert retry.id != created.job.id
    assert source.status == KnowledgeSourceStatus.QUEUED
    assert source.error is None
    assert queue.pending[-1].payload["mode"] == "retry"


def test_retry_without_stored_file_requires_repair(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)
    source = asyncio.run(sources.create("t1", "lost.txt", "text/plain", 3))

    with pytest.raises(ValidationException) as exc_info:
        asyncio.run(service.retry_source("t1", "u1", source.id))
    assert "repair required" in exc_info.value.message


def test_retry_unknown_source_not_found(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)

    with pytest.raises(ResourceNotFoundException):
        asyncio.run(service.retry_source("t1", "u1", "6f1c1d56-7d6a-4d39-9d5e-1f0f4c8a9b10"))


def test_repair_replaces_file_and_enqueues(sources, jobs, vector_index, retrieval):
    files = InMemoryFileStore()
    queue = InMemoryQueue()
    service = make_service(sources, jobs, vector_index, retrieval, queue=queue, files=files)
    source = asyncio.run(sources.create("t1", "lost.txt", "text/plain", 3))

    job = asyncio.run(service.repair_source("t1", "u1", source.id, "found.pdf", "application/pdf", b"%PDF"))

    repaired = asyncio.run(sources.get("t1", source.id))
    assert repaired.filename == "found.pdf"
    assert repaired.storage_path in files.files
    assert queue.pending[-1].job_id == job.id
    assert queue.pending[-1].payload["mode"] == "repair"


# --- reads ---

def test_storage_path_hidden_from_non_admins(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)
    created = asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "hello"))

    agent_view = asyncio.run(service.get_source("t1", Role.AGENT, created.source.id))
    admin_view = asyncio.run(service.get_source("t1", Role.ADMIN, created.source.id))

    assert agent_view.source.storage_path is None
    assert admin_view.source.storage_path == created.source.storage_path
    assert admin_view.latest_job.id == created.job.id


def test_get_job_other_tenant_not_found(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)
    created = asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "hello"))

    with pytest.raises(ResourceNotFoundException):
        asyncio.run(service.get_job("t2", created.job.id))


def test_list_sources_bounds_page_size(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)
    asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "hello"))

    page = asyncio.run(service.list_sources("t1", page=0, page_size=1000))

    assert (page.page, page.page_size, page.total) == (1, 100, 1)


# --- deletion ---

@pytest.mark.parametrize("role", [Role.AGENT, Role.VIEWER, None])
def test_only_admins_delete(sources, jobs, vector_index, retrieval, role):
    service = make_service(sources, jobs, vector_index, retrieval)

    with pytest.raises(PermissionDeniedException):
        asyncio.run(service.delete_source("t1", role, "any"))


def test_delete_removes_rows_vectors_and_files(sources, jobs, vector_index, retrieval):
    files = InMemoryFileStore()
    service = make_service(sources, jobs, vector_index, retrieval, files=files)
    created = asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "hello"))
    vector_index.vectors["c1"] = ("t1", created.source.id, [1.0])

    result = asyncio.run(service.delete_source("t1", Role.OWNER, created.source.id))

    assert result == {"deleted": True, "sourceId": created.source.id}
    assert asyncio.run(sources.get("t1", created.source.id)) is None
    assert vector_index.vectors == {}
    assert files.removed == [("t1", created.source.id)]


def test_delete_survives_vector_index_failure(sources, jobs, vector_index, retrieval):
    files = InMemoryFileStore()
    service = make_service(sources, jobs, vector_index, retrieval, files=files)
    created = asyncio.run(service.create_source_from_text("t1", "u1", "note.txt", "hello"))
    vector_index.fail_delete = True

    result = asyncio.run(service.delete_source("t1", Role.ADMIN, created.source.id))

    assert result["deleted"] is True
    assert files.removed == [("t1", created.source.id)]


def test_delete_unknown_source_returns_none(sources, jobs, vector_index, retrieval):
    service = make_service(sources, jobs, vector_index, retrieval)

    assert asyncio.run(service.delete_source("t1", Role.ADMIN, "6f1c1d56-7d6a-4d39-9d5e-1f0f4c8a9b10")) is None
