"""
Tenancy Collaborators
=====================

Entitlement gate and usage metering sink consumed by the knowledge and
assist pipelines.

Tenant, membership and entitlement administration live elsewhere; this
module only owns the reads and the append-only usage log the pipelines
need.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Optional, Tuple
from uuid import UUID, uuid4

from sqlalchemy import JSON, DateTime, Integer, String, Uuid, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import Mapped, mapped_column

from src.config import UsageEventType, settings
from src.core import QuotaExceededException
from src.infrastructure.database import Base, utcnow


class UsageEventModel(Base):
    """Append-only metering record."""
    __tablename__ = "usage_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    meta: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True
    )


class EntitlementModel(Base):
    """Per-tenant limits; a row is created with defaults on first use."""
    __tablename__ = "entitlements"

    tenant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    max_kb_sources: Mapped[int] = mapped_column(Integer, nullable=False)
    max_ai_msgs_per_month: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow
    )


# ========== Interfaces ==========

class IUsageSink(ABC):
    """Fire-and-forget usage metering."""

    @abstractmethod
    async def log_event(
        self,
        tenant_id: str,
        user_id: Optional[str],
        event_type: UsageEventType,
        amount: int = 1,
        meta: Optional[dict] = None,
    ) -> None:
        """Record one usage event."""


class IEntitlementGate(ABC):
    """Quota checks performed before expensive or capacity-bound work."""

    @abstractmethod
    async def assert_can_use_ai(self, tenant_id: str) -> None:
        """Raise QuotaExceededException when the monthly AI quota is used up."""

    @abstractmethod
    async def assert_can_add_kb_source(self, tenant_id: str) -> None:
        """Raise QuotaExceededException when the source-count quota is used up."""


# ========== SQLAlchemy implementations ==========

def current_month_window_utc(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """[start, end) of the calendar month containing ``now`` in UTC."""
    now = now or datetime.now(timezone.utc)
    start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        end = datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)
    return start, end


class SQLAlchemyUsageSink(IUsageSink):
    """Writes usage events in their own short transaction."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def log_event(
        self,
        tenant_id: str,
        user_id: Optional[str],
        event_type: UsageEventType,
        amount: int = 1,
        meta: Optional[dict] = None,
    ) -> None:
        async with self._session_factory() as session, session.begin():
            session.add(UsageEventModel(
                id=uuid4(),
                tenant_id=tenant_id,
                user_id=user_id,
                type=UsageEventType(event_type).value,
                amount=amount,
                meta=meta,
            ))


class SQLAlchemyEntitlementGate(IEntitlementGate):
    """Entitlement checks backed by the entitlements and usage tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        default_max_kb_sources: Optional[int] = None,
        default_max_ai_msgs_per_month: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._default_max_kb_sources = (
            settings.default_max_kb_sources
            if default_max_kb_sources is None else default_max_kb_sources
        )
        self._default_max_ai = (
            settings.default_max_ai_msgs_per_month
            if default_max_ai_msgs_per_month is None else default_max_ai_msgs_per_month
        )

    async def _get_or_create(self, session: AsyncSession, tenant_id: str) -> EntitlementModel:
        entitlement = await session.get(EntitlementModel, tenant_id)
        if entitlement is None:
            entitlement = EntitlementModel(
                tenant_id=tenant_id,
                max_kb_sources=self._default_max_kb_sources,
                max_ai_msgs_per_month=self._default_max_ai,
            )
            session.add(entitlement)
            await session.flush()
        return entitlement

    async def assert_can_use_ai(self, tenant_id: str) -> None:
        start, end = current_month_window_utc()
        async with self._session_factory() as session, session.begin():
            entitlement = await self._get_or_create(session, tenant_id)
            stmt = select(func.coalesce(func.sum(UsageEventModel.amount), 0)).where(
                UsageEventModel.tenant_id == tenant_id,
                UsageEventModel.type == UsageEventType.AI_ASSIST_CALL.value,
                UsageEventModel.created_at >= start,
                UsageEventModel.created_at < end,
            )
            used = int((await session.execute(stmt)).scalar_one())
            limit = entitlement.max_ai_msgs_per_month

        if used >= limit:
            raise QuotaExceededException(
                f"AI monthly quota exceeded ({used}/{limit}).",
                {"tenant_id": tenant_id, "used": used, "limit": limit}
            )

    async def assert_can_add_kb_source(self, tenant_id: str) -> None:
        from src.knowledge.infrastructure.models import KnowledgeSourceModel

        async with self._session_factory() as session, session.begin():
            entitlement = await self._get_or_create(session, tenant_id)
            stmt = select(func.count()).select_from(KnowledgeSourceModel).where(
                KnowledgeSourceModel.tenant_id == tenant_id
            )
            count = int((await session.execute(stmt)).scalar_one())
            limit = entitlement.max_kb_sources

        if count >= limit:
            raise QuotaExceededException(
                f"KB source limit reached ({count}/{limit}).",
                {"tenant_id": tenant_id, "count": count, "limit": limit}
            )


__all__ = [
    "UsageEventModel",
    "EntitlementModel",
    "IUsageSink",
    "IEntitlementGate",
    "SQLAlchemyUsageSink",
    "SQLAlchemyEntitlementGate",
    "current_month_window_utc",
]
