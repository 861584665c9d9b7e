"""Tests for the draft-reply operation."""

import asyncio
import json

import pytest

from src.assist.application import AssistService, PreviewCache
from src.assist.application.services import DRAFT_PARSE_WARNING
from src.config import UsageEventType
from src.core import QuotaExceededException, ResourceNotFoundException
from src.knowledge.domain import QueryHit
from tests.fakes import AllowAllGate, InMemoryTicketStore, RecordingUsageSink, ScriptedChatClient

HIT = QueryHit(chunk_id="c1", source_id="s1", filename="refunds.md", mime_type="text/markdown",
               ordinal=0, similarity=0.77, content="Refunds take five business days.")


class FixedRetrieval:
    def __init__(self):
        self.calls = []

    async def query(self, tenant_id, text, top_k=None, user_id=None):
        self.calls.append((text, top_k))
        return [HIT]


def make_service(response, ai_allowed=True):
    tickets = InMemoryTicketStore()
    tickets.add_ticket("t1", "Refund status", "Where is my refund?", ticket_id="tk1")
    chat = ScriptedChatClient(response)
    usage = RecordingUsageSink()
    retrieval = FixedRetrieval()
    service = AssistService(
        ticket_store=tickets,
        retrieval=retrieval,
        chat_client=chat,
        entitlements=AllowAllGate(ai_allowed=ai_allowed),
        usage_sink=usage,
        preview_cache=PreviewCache(),
    )
    return service, chat, usage, retrieval


def test_draft_reply_parses_model_json():
    response = json.dumps({
        "replyDraft": "Your refund is on its way.",
        "nextQuestions": ["Which card did you use?", "which card did you use"],
        "usedCitations": [{"label": "#1", "filename": "refunds.md", "reason": "timeline"}, "junk"],
    })
    service, chat, usage, _ = make_service(response)

    draft = asyncio.run(service.draft_reply("t1", "agent-1", "tk1", top_k=3))

    assert draft.reply_draft == "Your refund is on its way."
    assert draft.next_questions == ["Which card did you use?"]
    assert [(c.label, c.filename, c.reason) for c in draft.used_citations] == [("#1", "refunds.md", "timeline")]
    assert draft.suggestions == [HIT]
    assert draft.warning is None
    assert "[#1] source=refunds.md idx=0 similarity=0.770" in chat.calls[0][1]["content"]
    assert usage.events[0]["type"] == UsageEventType.AI_ASSIST_CALL
    assert usage.events[0]["meta"] == {
        "ticketId": "tk1", "topK": 3, "endpoint": "ticket-assist.draftReply",
        "kbHits": 1, "parseFailed": False,
    }


def test_draft_reply_falls_back_to_raw_text():
    service, _, usage, _ = make_service("Here is a plain text draft.")

    draft = asyncio.run(service.draft_reply("t1", "agent-1", "tk1"))

    assert draft.reply_draft == "Here is a plain text draft."
    assert draft.warning == DRAFT_PARSE_WARNING
    assert draft.next_questions == []
    assert usage.events[0]["meta"]["parseFailed"] is True


def test_draft_reply_uses_title_and_description_by_default():
    service, _, _, retrieval = make_service("{}")

    asyncio.run(service.draft_reply("t1", "agent-1", "tk1"))

    assert retrieval.calls[0][0] == "Refund status\n\nWhere is my refund?"


def test_draft_reply_checks_quota_first():
    service, chat, _, _ = make_service("{}", ai_allowed=False)

    with pytest.raises(QuotaExceededException):
        asyncio.run(service.draft_reply("t1", "agent-1", "missing"))
    assert chat.calls == []


def test_draft_reply_unknown_ticket():
    service, _, _, _ = make_service("{}")

    with pytest.raises(ResourceNotFoundException):
        asyncio.run(service.draft_reply("t1", "agent-1", "missing"))
