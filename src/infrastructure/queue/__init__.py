"""
Job Queue Infrastructure
========================

Durable, at-least-once job dispatch on Redis.

Reliable-queue layout under ``{prefix}:{queue}:``:

- ``pending``    list, producers LPUSH, consumers move from the right
- ``processing`` list, holds reserved messages until ack/fail
- ``delayed``    sorted set of messages waiting for a backoff redelivery
- ``completed``  capped list of finished job ids
- ``failed``     capped list of permanently failed messages

A message is reserved with an atomic BLMOVE from pending to processing, so
exactly one consumer holds it at a time. Messages stranded in processing
by a crashed worker are returned to pending by ``reclaim_processing``.
"""

import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from src.config import settings
from src.core import QueueException
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


@dataclass
class QueueMessage:
    """One delivery of a job."""
    job_id: str
    payload: dict
    attempt: int = 1
    enqueued_at: float = field(default_factory=time.time)
    raw: Optional[str] = None

    def encode(self) -> str:
        return json.dumps(
            {
                "id": self.job_id,
                "payload": self.payload,
                "attempt": self.attempt,
                "enqueued_at": self.enqueued_at,
            },
            separators=(",", ":"),
        )

    @classmethod
    def decode(cls, raw: str) -> "QueueMessage":
        data = json.loads(raw)
        return cls(
            job_id=str(data["id"]),
            payload=dict(data.get("payload") or {}),
            attempt=int(data.get("attempt", 1)),
            enqueued_at=float(data.get("enqueued_at", 0.0)),
            raw=raw,
        )


class IJobQueue(ABC):
    """Interface for job dispatch."""

    @abstractmethod
    async def submit(self, job_id: str, payload: dict) -> None:
        """Make a job available to consumers."""

    @abstractmethod
    async def reserve(self, timeout_seconds: Optional[float] = None) -> Optional[QueueMessage]:
        """Take the next message, or None when nothing arrived within the timeout."""

    @abstractmethod
    async def ack(self, message: QueueMessage) -> None:
        """Mark a reserved message as completed."""

    @abstractmethod
    async def fail(self, message: QueueMessage, error: str) -> bool:
        """Release a reserved message after a failure; True if it will be redelivered."""


class RedisJobQueue(IJobQueue):
    """
    Redis implementation of the job queue.

    Redelivery only happens when ``attempts`` is greater than one; each
    retry waits ``backoff_seconds * 2 ** (attempt - 1)``.
    """

    def __init__(
        self,
        redis: Optional[Redis] = None,
        url: Optional[str] = None,
        prefix: Optional[str] = None,
        name: Optional[str] = None,
        attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        keep_completed: Optional[int] = None,
        keep_failed: Optional[int] = None,
    ):
        self._redis = redis or Redis.from_url(url or settings.redis_url, decode_responses=True)
        self.name = name or settings.queue_name
        base = f"{prefix or settings.queue_prefix}:{self.name}"
        self.pending_key = f"{base}:pending"
        self.processing_key = f"{base}:processing"
        self.delayed_key = f"{base}:delayed"
        self.completed_key = f"{base}:completed"
        self.failed_key = f"{base}:failed"
        self._attempts = max(1, attempts or settings.queue_attempts)
        self._backoff = settings.queue_backoff_seconds if backoff_seconds is None else backoff_seconds
        self._keep_completed = settings.queue_keep_completed if keep_completed is None else keep_completed
        self._keep_failed = settings.queue_keep_failed if keep_failed is None else keep_failed

    async def submit(self, job_id: str, payload: dict) -> None:
        message = QueueMessage(job_id=job_id, payload=payload)
        try:
            await self._redis.lpush(self.pending_key, message.encode())
        except RedisError as e:
            raise QueueException(f"Failed to submit job {job_id}: {e}", {"job_id": job_id})
        logger.info("Job submitted", extra={"job_id": job_id, "queue": self.name})

    async def reserve(self, timeout_seconds: Optional[float] = None) -> Optional[QueueMessage]:
        timeout = settings.queue_poll_timeout_seconds if timeout_seconds is None else timeout_seconds
        try:
            await self._promote_due()
            raw = await self._redis.blmove(
                self.pending_key, self.processing_key, timeout, "RIGHT", "LEFT"
            )
        except RedisError as e:
            raise QueueException(f"Failed to reserve from {self.name}: {e}")

        if raw is None:
            return None

        try:
            return QueueMessage.decode(raw)
        except (ValueError, KeyError, TypeError) as e:
            # Undecodable entries would otherwise be redelivered forever
            logger.error("Dropping malformed queue message", extra={"queue": self.name, "error": str(e)})
            await self._park_failed(raw, f"malformed message: {e}")
            return None

    async def ack(self, message: QueueMessage) -> None:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.lrem(self.processing_key, 1, message.raw or message.encode())
                if self._keep_completed > 0:
                    pipe.lpush(self.completed_key, message.job_id)
                    pipe.ltrim(self.completed_key, 0, self._keep_completed - 1)
                await pipe.execute()
        except RedisError as e:
            raise QueueException(f"Failed to ack job {message.job_id}: {e}", {"job_id": message.job_id})

    async def fail(self, message: QueueMessage, error: str) -> bool:
        raw = message.raw or message.encode()
        if message.attempt < self._attempts:
            retry = QueueMessage(
                job_id=message.job_id,
                payload=message.payload,
                attempt=message.attempt + 1,
                enqueued_at=message.enqueued_at,
            )
            delay = self._backoff * (2 ** (message.attempt - 1))
            try:
                async with self._redis.pipeline(transaction=True) as pipe:
                    pipe.lrem(self.processing_key, 1, raw)
                    pipe.zadd(self.delayed_key, {retry.encode(): time.time() + delay})
                    await pipe.execute()
            except RedisError as e:
                raise QueueException(f"Failed to reschedule job {message.job_id}: {e}")
            logger.info(
                "Job scheduled for redelivery",
                extra={"job_id": message.job_id, "attempt": retry.attempt, "delay_seconds": delay}
            )
            return True

        try:
            await self._park_failed(raw, error, job_id=message.job_id)
        except RedisError as e:
            raise QueueException(f"Failed to record failure of job {message.job_id}: {e}")
        return False

    async def _park_failed(self, raw: str, error: str, job_id: Optional[str] = None) -> None:
        record = json.dumps({"id": job_id, "error": error, "message": raw, "failed_at": time.time()})
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self.processing_key, 1, raw)
            if self._keep_failed > 0:
                pipe.lpush(self.failed_key, record)
                pipe.ltrim(self.failed_key, 0, self._keep_failed - 1)
            await pipe.execute()

    async def _promote_due(self) -> int:
        """Move delayed messages whose backoff elapsed back onto pending."""
        due = await self._redis.zrangebyscore(self.delayed_key, "-inf", time.time())
        promoted = 0
        for raw in due:
            # ZREM decides the winner when several consumers race on one entry
            if await self._redis.zrem(self.delayed_key, raw):
                await self._redis.lpush(self.pending_key, raw)
                promoted += 1
        return promoted

    async def reclaim_processing(self) -> int:
        """
        Return messages left in processing (by a crashed worker) to pending.

        Only safe while no other consumer of this queue is running.
        """
        reclaimed = 0
        try:
            while await self._redis.lmove(self.processing_key, self.pending_key, "RIGHT", "RIGHT"):
                reclaimed += 1
        except RedisError as e:
            raise QueueException(f"Failed to reclaim processing messages: {e}")
        if reclaimed:
            logger.warning("Reclaimed stranded messages", extra={"queue": self.name, "count": reclaimed})
        return reclaimed

    async def stats(self) -> dict:
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.llen(self.pending_key)
                pipe.llen(self.processing_key)
                pipe.zcard(self.delayed_key)
                pipe.llen(self.completed_key)
                pipe.llen(self.failed_key)
                pending, processing, delayed, completed, failed = await pipe.execute()
        except RedisError as e:
            raise QueueException(f"Failed to read queue stats: {e}")
        return {
            "pending": pending,
            "processing": processing,
            "delayed": delayed,
            "completed": completed,
            "failed": failed,
        }

    async def close(self) -> None:
        await self._redis.aclose()


__all__ = ["QueueMessage", "IJobQueue", "RedisJobQueue"]
