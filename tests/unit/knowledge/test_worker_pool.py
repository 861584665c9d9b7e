"""Tests for the queue consumer pool and the stale job reconciler."""

import asyncio
from datetime import timedelta
from uuid import UUID

from sqlalchemy import update

from src.config import JobStatus, KnowledgeSourceStatus
from src.core import QueueException
from src.infrastructure.database import utcnow
from src.infrastructure.queue import QueueMessage
from src.knowledge.application import StaleJobReconciler, WorkerPool
from src.knowledge.infrastructure.models import JobModel
from tests.fakes import InMemoryQueue


class RecordingIndexer:
    """Stands in for SourceIndexer; tracks how many jobs run at once."""

    def __init__(self, fail_ids=(), delay=0.02):
        self.fail_ids = set(fail_ids)
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self.processed = []

    async def process(self, job_id, payload):
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if job_id in self.fail_ids:
                raise RuntimeError(f"job {job_id} failed")
            self.processed.append(job_id)
            return 1
        finally:
            self.active -= 1


async def run_until_settled(pool, queue, expected, timeout=5.0):
    pool.start()
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while len(queue.acked) + len(queue.failed) < expected and loop.time() < deadline:
        await asyncio.sleep(0.01)
    await pool.stop()


# --- concurrency ---

def test_concurrency_is_clamped():
    queue, indexer = InMemoryQueue(), RecordingIndexer()

    assert WorkerPool(queue, indexer, concurrency=0).concurrency == 1
    assert WorkerPool(queue, indexer, concurrency=500).concurrency == 32
    assert WorkerPool(queue, indexer, concurrency=3).concurrency == 3


def test_pool_never_exceeds_concurrency():
    queue = InMemoryQueue()
    for i in range(8):
        queue.pending.append(QueueMessage(job_id=f"j{i}", payload={}))
    indexer = RecordingIndexer()
    pool = WorkerPool(queue, indexer, concurrency=2, poll_timeout_seconds=0.01)

    asyncio.run(run_until_settled(pool, queue, expected=8))

    assert sorted(queue.acked) == sorted(f"j{i}" for i in range(8))
    assert indexer.max_active == 2
    assert not pool.is_running


# --- settlement ---

def test_failed_job_is_released_not_acked():
    queue = InMemoryQueue()
    queue.pending.extend([QueueMessage(job_id="ok", payload={}), QueueMessage(job_id="bad", payload={})])
    pool = WorkerPool(queue, RecordingIndexer(fail_ids={"bad"}), concurrency=1, poll_timeout_seconds=0.01)

    asyncio.run(run_until_settled(pool, queue, expected=2))

    assert queue.acked == ["ok"]
    assert queue.failed == [("bad", "job bad failed")]


def test_handle_reports_outcome():
    queue = InMemoryQueue()
    pool = WorkerPool(queue, RecordingIndexer(fail_ids={"bad"}, delay=0), concurrency=1)

    async def scenario():
        good = await pool.handle(QueueMessage(job_id="good", payload={}))
        bad = await pool.handle(QueueMessage(job_id="bad", payload={}))
        return good, bad

    assert asyncio.run(scenario()) == (True, False)


def test_reserve_errors_do_not_kill_consumers():
    class FlakyQueue(InMemoryQueue):
        def __init__(self):
            super().__init__()
            self.errors = 1

        async def reserve(self, timeout_seconds=None):
            if self.errors:
                self.errors -= 1
                raise ConnectionError("redis went away")
            return await super().reserve(timeout_seconds)

    queue = FlakyQueue()
    queue.pending.append(QueueMessage(job_id="j1", payload={}))
    pool = WorkerPool(queue, RecordingIndexer(delay=0), concurrency=1, poll_timeout_seconds=0.01)

    asyncio.run(run_until_settled(pool, queue, expected=1))

    assert queue.acked == ["j1"]


def test_ack_errors_do_not_kill_consumers():
    class AckFailsOnceQueue(InMemoryQueue):
        def __init__(self):
            super().__init__()
            self.errors = 1

        async def ack(self, message):
            if self.errors:
                self.errors -= 1
                raise QueueException("redis down")
            await super().ack(message)

    queue = AckFailsOnceQueue()
    queue.pending.extend([QueueMessage(job_id="a", payload={}), QueueMessage(job_id="b", payload={})])
    indexer = RecordingIndexer(delay=0)
    pool = WorkerPool(queue, indexer, concurrency=1, poll_timeout_seconds=0.01)

    asyncio.run(run_until_settled(pool, queue, expected=1))

    assert indexer.processed == ["a", "b"]
    assert queue.acked == ["b"]


def test_fail_settlement_errors_do_not_kill_consumers():
    class FailSettleBrokenQueue(InMemoryQueue):
        async def fail(self, message, error):
            raise QueueException("redis down")

    queue = FailSettleBrokenQueue()
    queue.pending.extend([QueueMessage(job_id="bad", payload={}), QueueMessage(job_id="ok", payload={})])
    indexer = RecordingIndexer(fail_ids={"bad"}, delay=0)
    pool = WorkerPool(queue, indexer, concurrency=1, poll_timeout_seconds=0.01)

    asyncio.run(run_until_settled(pool, queue, expected=1))

    assert queue.acked == ["ok"]


def test_handle_reports_outcome_when_settlement_fails():
    class BrokenQueue(InMemoryQueue):
        async def ack(self, message):
            raise QueueException("redis down")

        async def fail(self, message, error):
            raise QueueException("redis down")

    pool = WorkerPool(BrokenQueue(), RecordingIndexer(fail_ids={"bad"}, delay=0), concurrency=1)

    async def scenario():
        good = await pool.handle(QueueMessage(job_id="good", payload={}))
        bad = await pool.handle(QueueMessage(job_id="bad", payload={}))
        return good, bad

    assert asyncio.run(scenario()) == (True, False)


# --- reconciler ---

def test_reconciler_fails_stale_running_jobs(session_factory, sources, jobs):
    async def scenario():
        source = await sources.create("t1", "a.txt", "text/plain", 1)
        job = await jobs.create_with_source_reset("t1", source.id, {})
        await jobs.mark_running(job.id)
        await sources.mark_indexing("t1", source.id)
        async with session_factory() as session, session.begin():
            await session.execute(
                update(JobModel)
                .where(JobModel.id == UUID(job.id))
                .values(updated_at=utcnow() - timedelta(hours=1))
            )
        swept = await StaleJobReconciler(jobs, stale_after_seconds=600).sweep()
        return swept, await jobs.get("t1", job.id), await sources.get("t1", source.id)

    swept, job, source = asyncio.run(scenario())
    assert swept == 1
    assert job.status == JobStatus.FAILED
    assert "retry required" in job.last_error
    assert source.status == KnowledgeSourceStatus.FAILED


def test_reconciler_ignores_recent_jobs(sources, jobs):
    async def scenario():
        source = await sources.create("t1", "a.txt", "text/plain", 1)
        job = await jobs.create_with_source_reset("t1", source.id, {})
        await jobs.mark_running(job.id)
        return await StaleJobReconciler(jobs, stale_after_seconds=600).sweep()

    assert asyncio.run(scenario()) == 0
