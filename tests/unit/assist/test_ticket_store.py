"""Tests for the SQLAlchemy ticket store and the SQL tenancy collaborators."""

import asyncio
from uuid import uuid4

import pytest

from src.assist.infrastructure import SQLAlchemyTicketStore, TicketModel
from src.config import UsageEventType
from src.core import QuotaExceededException, ResourceNotFoundException
from src.infrastructure.tenancy import SQLAlchemyEntitlementGate, SQLAlchemyUsageSink


def seed_ticket(session_factory, tenant_id="t1"):
    ticket_id = uuid4()

    async def scenario():
        async with session_factory() as session, session.begin():
            session.add(TicketModel(id=ticket_id, tenant_id=tenant_id, title="Login", description="Broken"))

    asyncio.run(scenario())
    return str(ticket_id)


# --- tickets ---

def test_comments_come_back_oldest_first(session_factory):
    store = SQLAlchemyTicketStore(session_factory)
    ticket_id = seed_ticket(session_factory)

    async def scenario():
        await store.add_comment("t1", ticket_id, "u1", "first")
        await store.add_comment("t1", ticket_id, "ai-bot", "second")
        return await store.get_ticket("t1", ticket_id)

    ticket = asyncio.run(scenario())
    assert [c.body for c in ticket.comments] == ["first", "second"]
    assert ticket.comments[1].author_id == "ai-bot"
    assert ticket.comments[1].created_at.tzinfo is not None


def test_ticket_is_tenant_scoped(session_factory):
    store = SQLAlchemyTicketStore(session_factory)
    ticket_id = seed_ticket(session_factory)

    assert asyncio.run(store.get_ticket("t2", ticket_id)) is None
    assert asyncio.run(store.get_ticket("t1", "not-a-uuid")) is None
    with pytest.raises(ResourceNotFoundException):
        asyncio.run(store.add_comment("t2", ticket_id, "u1", "hi"))


# --- usage and entitlements ---

def test_ai_quota_counts_assist_calls_this_month(session_factory):
    sink = SQLAlchemyUsageSink(session_factory)
    gate = SQLAlchemyEntitlementGate(session_factory, default_max_ai_msgs_per_month=2)

    async def scenario():
        await gate.assert_can_use_ai("t1")
        await sink.log_event("t1", "u1", UsageEventType.AI_ASSIST_CALL, 1, {"ticketId": "x"})
        await sink.log_event("t1", "u1", UsageEventType.KB_EMBEDDING, 10)
        await gate.assert_can_use_ai("t1")
        await sink.log_event("t1", "u1", UsageEventType.AI_ASSIST_CALL)
        await gate.assert_can_use_ai("t1")

    with pytest.raises(QuotaExceededException) as exc_info:
        asyncio.run(scenario())
    assert exc_info.value.details["used"] == 2


def test_source_quota_counts_existing_sources(session_factory, sources):
    gate = SQLAlchemyEntitlementGate(session_factory, default_max_kb_sources=1)

    async def scenario():
        await gate.assert_can_add_kb_source("t1")
        await sources.create("t1", "a.txt", "text/plain", 1)
        await gate.assert_can_add_kb_source("t2")
        await gate.assert_can_add_kb_source("t1")

    with pytest.raises(QuotaExceededException):
        asyncio.run(scenario())
