"""Tests for the assist pipeline: generation, persistence and both dedupe tiers."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from src.assist.application import AssistService, PreviewCache
from src.assist.application.services import MISSING_AUTHOR_ERROR
from src.assist.domain import MARKER_START, extract_marker_json
from src.config import AssistTone, CacheTier, UsageEventType
from src.core import QuotaExceededException, ResourceNotFoundException
from src.knowledge.domain import QueryHit
from tests.fakes import AllowAllGate, InMemoryTicketStore, RecordingUsageSink, ScriptedChatClient

AI_USER = "ai-bot"

MODEL_JSON = json.dumps({
    "customer_reply": "Please reset your password from the login page.",
    "internal_notes": "Likely clock skew on the device.",
    "next_steps": ["Check auth logs", 3],
    "questions_for_customer": ["What browser were you using when trying to log in?"],
    "citations": [{"source": "S1", "filename": "login.md", "chunkId": "c-login"}],
})


class Clock:
    def __init__(self):
        self.now = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


class StubRetrieval:
    def __init__(self, hits):
        self.hits = hits
        self.calls = []

    async def query(self, tenant_id, text, top_k=None, user_id=None):
        self.calls.append({"tenant_id": tenant_id, "text": text, "top_k": top_k, "user_id": user_id})
        return self.hits[:top_k]


def make_hit(chunk_id, similarity, content, filename):
    return QueryHit(chunk_id=chunk_id, source_id="s1", filename=filename, mime_type="text/markdown",
                    ordinal=0, similarity=similarity, content=content)


HITS = [
    make_hit("c-login", 0.84, "Password reset: check the browser and the timestamp of the attempt.", "login.md"),
    make_hit("c-refund", 0.71, "Refunds are processed within five days.", "billing.md"),
]


class Harness:
    def __init__(self, responses=(MODEL_JSON,), author=AI_USER, ai_allowed=True,
                 fail_add=False, fail_usage=False, hits=HITS):
        self.clock = Clock()
        self.tickets = InMemoryTicketStore(fail_add=fail_add)
        self.tickets.clock = self.clock
        self.retrieval = StubRetrieval(list(hits))
        self.chat = ScriptedChatClient(*responses)
        self.usage = RecordingUsageSink(fail=fail_usage)
        self.cache = PreviewCache(ttl_seconds=60, clock=lambda: self.clock.now.timestamp())
        self.service = AssistService(
            ticket_store=self.tickets,
            retrieval=self.retrieval,
            chat_client=self.chat,
            entitlements=AllowAllGate(ai_allowed=ai_allowed),
            usage_sink=self.usage,
            preview_cache=self.cache,
            system_author_id=author,
            dedupe_window_seconds=60,
            similarity_threshold=0.6,
            max_comment_length=4800,
            now=self.clock,
        )
        self.ticket = self.tickets.add_ticket("t1", "Cannot log in", "Password reset link fails", ticket_id="tk1")

    def assist(self, **kwargs):
        return asyncio.run(self.service.assist("t1", "agent-1", "tk1", **kwargs))

    @property
    def comments(self):
        return self.tickets.tickets[("t1", "tk1")].comments


# --- generation and persistence ---

def test_assist_generates_and_saves_marked_comment():
    h = Harness()

    result = h.assist(top_k=5, tone=AssistTone.FRIENDLY)

    assert result.comment_saved is True
    assert result.cached is False and result.cache_type is None
    assert result.kb_top_k == 5
    assert result.kb_hits == 1
    assert result.reply.customer_reply.startswith("Please reset")
    assert result.reply.next_steps == ["Check auth logs"]
    assert len(h.comments) == 1
    comment = h.comments[0]
    assert comment.author_id == AI_USER
    assert comment.body.startswith("[AI Assist]")
    payload = extract_marker_json(comment.body)
    assert payload["kbTopK"] == 5
    assert payload["customer_reply"] == result.reply.customer_reply


def test_follow_up_questions_are_merged_without_duplicates():
    result = Harness().assist()

    assert result.reply.questions_for_customer == [
        "What browser were you using when trying to log in?",
        "What timestamp (with timezone) did you attempt to login?",
    ]


def test_login_ticket_excludes_billing_sources_from_prompt():
    h = Harness()

    result = h.assist()

    prompt = h.chat.calls[0][1]["content"]
    assert "c-login" in prompt
    assert "c-refund" not in prompt
    assert result.debug == {
        "simThreshold": 0.6,
        "originalKbHits": 2,
        "filteredKbHits": 1,
        "finalKbHits": 1,
        "isLoginTicket": True,
        "isBillingTicket": False,
    }


def test_usage_event_meta():
    h = Harness()

    h.assist(top_k=4, tone=AssistTone.FORMAL)

    assert len(h.usage.events) == 1
    event = h.usage.events[0]
    assert event["type"] == UsageEventType.AI_ASSIST_CALL
    assert event["user_id"] == "agent-1"
    assert event["meta"] == {
        "ticketId": "tk1", "topK": 4, "tone": "formal", "dryRun": False,
        "kbHits": 1, "cached": False, "cacheType": None, "parseFailed": False,
    }


def test_usage_failure_does_not_fail_assist():
    result = Harness(fail_usage=True).assist()

    assert result.comment_saved is True


def test_top_k_is_bounded_and_explicit_query_used():
    h = Harness()

    result = h.assist(top_k=500, query="otp not received")

    assert result.kb_top_k == 20
    assert h.retrieval.calls[0]["text"] == "otp not received"
    assert h.retrieval.calls[0]["top_k"] == 20


# --- comment tier ---

def test_repeat_within_window_is_served_from_comment():
    h = Harness()
    first = h.assist()

    h.clock.advance(30)
    second = h.assist()

    assert len(h.chat.calls) == 1
    assert len(h.comments) == 1
    assert second.cached is True
    assert second.cache_type == CacheTier.COMMENT
    assert second.comment_skipped is True
    assert second.comment_saved is False
    assert second.reply.to_dict() == first.reply.to_dict()
    assert h.usage.events[-1]["meta"]["cached"] is True
    assert h.usage.events[-1]["meta"]["cacheType"] == "comment"


def test_repeat_after_window_regenerates():
    h = Harness()
    h.assist()

    h.clock.advance(61)
    second = h.assist()

    assert second.cached is False
    assert len(h.chat.calls) == 2
    assert len(h.comments) == 2


def test_marker_from_other_author_is_ignored():
    h = Harness()
    h.assist()
    h.comments[0].author_id = "someone-else"

    second = h.assist()

    assert second.cached is False
    assert len(h.chat.calls) == 2


def test_newer_human_comment_forces_regeneration():
    h = Harness()
    h.assist()
    h.clock.advance(10)
    asyncio.run(h.tickets.add_comment("t1", "tk1", "customer-1", "Still broken after the reset"))
    h.clock.advance(5)

    second = h.assist()

    assert second.cached is False
    assert second.cache_type != CacheTier.COMMENT
    assert len(h.chat.calls) == 2
    assert second.comment_saved is True


def test_older_human_comment_does_not_block_reuse():
    h = Harness()
    asyncio.run(h.tickets.add_comment("t1", "tk1", "customer-1", "My login fails"))
    h.clock.advance(5)
    h.assist()
    h.clock.advance(5)

    second = h.assist()

    assert second.cache_type == CacheTier.COMMENT
    assert len(h.chat.calls) == 1


# --- persistence failures ---

def test_missing_system_author_reports_error_and_never_dedupes():
    h = Harness(author=None)

    first = h.assist()
    second = h.assist()

    assert first.comment_saved is False
    assert first.comment_error == MISSING_AUTHOR_ERROR
    assert second.cached is False
    assert len(h.chat.calls) == 2
    assert h.comments == []


def test_add_comment_failure_still_returns_reply():
    h = Harness(fail_add=True)

    result = h.assist()

    assert result.comment_saved is False
    assert result.comment_error == "ticket store unavailable"
    assert result.reply.customer_reply.startswith("Please reset")


def test_long_reply_comment_is_clamped_with_marker_intact():
    long_reply = json.loads(MODEL_JSON)
    long_reply["customer_reply"] = "word " * 600
    h = Harness(responses=(json.dumps(long_reply),))

    h.assist()

    body = h.comments[0].body
    assert len(body) <= 4800
    assert MARKER_START in body
    assert extract_marker_json(body)["kbHits"] == 1


# --- parse failure ---

def test_unparseable_output_is_returned_raw_and_not_saved():
    h = Harness(responses=("Sorry, I cannot help with that.",))

    result = h.assist()

    assert result.parse_failed is True
    assert result.reply.customer_reply == "Sorry, I cannot help with that."
    assert result.reply.questions_for_customer == []
    assert result.comment_saved is False
    assert result.comment_error is None
    assert result.debug is not None
    assert h.comments == []
    assert h.usage.events[0]["meta"]["parseFailed"] is True


def test_json_array_output_counts_as_parse_failure():
    assert Harness(responses=("[1, 2, 3]",)).assist().parse_failed is True


# --- dry run tier ---

def test_dry_run_twice_serves_preview_cache():
    h = Harness()

    first = h.assist(dry_run=True)
    second = h.assist(dry_run=True)

    assert first.cached is False
    assert first.comment_saved is False
    assert h.comments == []
    assert second.cached is True
    assert second.cache_type == CacheTier.DRYRUN
    assert second.comment_skipped is True
    assert second.reply.to_dict() == first.reply.to_dict()
    assert len(h.chat.calls) == 1


def test_dry_run_cache_misses_after_new_comment():
    h = Harness()
    h.assist(dry_run=True)

    asyncio.run(h.tickets.add_comment("t1", "tk1", "customer", "Still broken"))
    second = h.assist(dry_run=True)

    assert second.cached is False
    assert len(h.chat.calls) == 2


def test_dry_run_cache_misses_after_ttl():
    h = Harness()
    h.assist(dry_run=True)

    h.clock.advance(61)
    second = h.assist(dry_run=True)

    assert second.cached is False
    assert len(h.chat.calls) == 2


def test_dry_run_cache_keyed_by_tone_and_query():
    h = Harness()
    h.assist(dry_run=True)

    assert h.assist(dry_run=True, tone=AssistTone.FORMAL).cached is False
    assert h.assist(dry_run=True, query="otp").cached is False
    assert len(h.chat.calls) == 3


def test_dry_run_parse_failure_is_cached_with_flag():
    h = Harness(responses=("not json",))
    h.assist(dry_run=True)

    second = h.assist(dry_run=True)

    assert second.cached is True
    assert second.parse_failed is True
    assert len(h.chat.calls) == 1


def test_saved_comment_serves_later_dry_run():
    h = Harness()
    h.assist()

    preview = h.assist(dry_run=True)

    assert preview.cache_type == CacheTier.COMMENT


# --- preconditions ---

def test_missing_ticket_checked_before_quota():
    h = Harness(ai_allowed=False)

    with pytest.raises(ResourceNotFoundException):
        asyncio.run(h.service.assist("t1", "agent-1", "missing"))


def test_quota_exceeded_blocks_generation():
    h = Harness(ai_allowed=False)

    with pytest.raises(QuotaExceededException):
        h.assist()
    assert h.chat.calls == []
    assert h.usage.events == []


def test_other_tenant_cannot_see_ticket():
    h = Harness()

    with pytest.raises(ResourceNotFoundException):
        asyncio.run(h.service.assist("t2", "agent-1", "tk1"))


# --- suggest ---

def test_suggest_defaults_query_to_title_and_description():
    h = Harness()

    hits = asyncio.run(h.service.suggest("t1", "tk1", top_k=1, user_id="agent-1"))

    assert [x.chunk_id for x in hits] == ["c-login"]
    assert h.retrieval.calls[0]["text"] == "Cannot log in\n\nPassword reset link fails"
    assert h.retrieval.calls[0]["user_id"] == "agent-1"


def test_suggest_unknown_ticket():
    with pytest.raises(ResourceNotFoundException):
        asyncio.run(Harness().service.suggest("t1", "missing"))
