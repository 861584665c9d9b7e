"""
Assist Application Services
===========================

Ticket assist orchestration: retrieval, relevance filtering, generation,
parsing, persistence as an AI comment and two-tier duplicate suppression.

Dedupe tiers:
1. A recent AI comment carrying the marker block (durable).
2. The process-local preview cache for dry runs.
"""

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from src.assist.application.cache import PreviewCache, preview_key
from src.assist.domain import (
    AssistPromptBuilder,
    AssistReply,
    AssistResult,
    AssistRules,
    DraftReply,
    DraftReplyPromptBuilder,
    QuestionSet,
    Ticket,
    TicketComment,
    UsedCitation,
    build_comment_body,
    clamp_comment,
    extract_marker_json,
    normalize_questions,
    select_hits,
)
from src.config import AssistTone, CacheTier, UsageEventType, settings
from src.core import ResourceNotFoundException
from src.infrastructure.llm import IChatClient
from src.infrastructure.tenancy import IEntitlementGate, IUsageSink
from src.knowledge.application.services import RetrievalService, clamp_top_k
from src.knowledge.domain import QueryHit
from src.shared.infrastructure.effects import run_non_critical
from src.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)

MISSING_AUTHOR_ERROR = "AI_SYSTEM_USER_ID is not set"
DRAFT_PARSE_WARNING = "Model did not return valid JSON"


# ========== Collaborator Interfaces ==========

class ITicketStore(ABC):
    """Ticket reads and comment writes."""

    @abstractmethod
    async def get_ticket(self, tenant_id: str, ticket_id: str) -> Optional[Ticket]:
        """Get a ticket with its comments, oldest first."""

    @abstractmethod
    async def add_comment(self, tenant_id: str, ticket_id: str, author_id: str, body: str) -> TicketComment:
        """Append a comment to a ticket."""


class IAssistRulesProvider(ABC):
    """Source of the current relevance rules."""

    @property
    @abstractmethod
    def rules(self) -> AssistRules:
        """Rules in effect now."""


class StaticRulesProvider(IAssistRulesProvider):
    """Fixed rules, defaults unless given."""

    def __init__(self, rules: Optional[AssistRules] = None):
        self._rules = rules or AssistRules()

    @property
    def rules(self) -> AssistRules:
        return self._rules


def parse_json_object(raw: str) -> Optional[Dict[str, Any]]:
    """Strict parse; anything but a JSON object counts as a failure."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssistService:
    """
    Service for ticket assist operations.

    ``suggest`` retrieves only, ``draft_reply`` produces a simple draft and
    ``assist`` runs the full pipeline with persistence and dedupe.
    """

    def __init__(
        self,
        ticket_store: ITicketStore,
        retrieval: RetrievalService,
        chat_client: IChatClient,
        entitlements: IEntitlementGate,
        usage_sink: IUsageSink,
        preview_cache: PreviewCache,
        rules_provider: Optional[IAssistRulesProvider] = None,
        prompt_builder: Optional[AssistPromptBuilder] = None,
        system_author_id: Optional[str] = None,
        dedupe_window_seconds: Optional[float] = None,
        similarity_threshold: Optional[float] = None,
        max_comment_length: Optional[int] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self._tickets = ticket_store
        self._retrieval = retrieval
        self._chat = chat_client
        self._entitlements = entitlements
        self._usage = usage_sink
        self._preview_cache = preview_cache
        self._rules_provider = rules_provider or StaticRulesProvider()
        self._prompts = prompt_builder or AssistPromptBuilder(
            max_comments=settings.assist_max_comments_for_prompt,
            max_comment_chars=settings.assist_max_comment_chars,
            max_source_chars=settings.assist_max_source_chars,
        )
        self._draft_prompts = DraftReplyPromptBuilder()
        self.system_author_id = system_author_id
        self.dedupe_window_seconds = dedupe_window_seconds or settings.assist_dedupe_window_seconds
        self.similarity_threshold = (
            settings.assist_similarity_threshold if similarity_threshold is None else similarity_threshold
        )
        self.max_comment_length = max_comment_length or settings.assist_max_comment_length
        self._now = now

    async def _get_ticket(self, tenant_id: str, ticket_id: str) -> Ticket:
        ticket = await self._tickets.get_ticket(tenant_id, ticket_id)
        if ticket is None:
            raise ResourceNotFoundException("Ticket", ticket_id)
        return ticket

    async def _log_usage(self, tenant_id: str, user_id: Optional[str], meta: Dict[str, Any]) -> None:
        await run_non_critical(
            "usage.ai_assist_call",
            self._usage.log_event,
            tenant_id,
            user_id,
            UsageEventType.AI_ASSIST_CALL,
            1,
            meta,
        )

    # ========== Suggest ==========

    async def suggest(
        self,
        tenant_id: str,
        ticket_id: str,
        top_k: Optional[int] = None,
        query: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> List[QueryHit]:
        """Retrieve KB chunks for a ticket; the query defaults to title and description."""
        ticket = await self._get_ticket(tenant_id, ticket_id)
        return await self._suggest_for(ticket, top_k, query, user_id)

    async def _suggest_for(
        self,
        ticket: Ticket,
        top_k: Optional[int],
        query: Optional[str],
        user_id: Optional[str],
    ) -> List[QueryHit]:
        text = query.strip() if query and query.strip() else f"{ticket.title}\n\n{ticket.description}"
        return await self._retrieval.query(ticket.tenant_id, text, top_k, user_id=user_id)

    # ========== Draft reply ==========

    async def draft_reply(
        self,
        tenant_id: str,
        user_id: Optional[str],
        ticket_id: str,
        top_k: Optional[int] = None,
        query: Optional[str] = None,
    ) -> DraftReply:
        """Agent-ready draft grounded on retrieved KB context."""
        await self._entitlements.assert_can_use_ai(tenant_id)
        k = clamp_top_k(top_k)

        ticket = await self._get_ticket(tenant_id, ticket_id)
        hits = await self._suggest_for(ticket, k, query, user_id)

        raw = await self._chat.chat(self._draft_prompts.messages(ticket, hits))
        data = parse_json_object(raw)

        await self._log_usage(tenant_id, user_id, {
            "ticketId": ticket_id,
            "topK": k,
            "endpoint": "ticket-assist.draftReply",
            "kbHits": len(hits),
            "parseFailed": data is None,
        })

        if data is None:
            logger.warning(
                "Draft reply was not valid JSON",
                extra={"tenant_id": tenant_id, "ticket_id": ticket_id},
            )
            return DraftReply(ticket_id=ticket_id, reply_draft=raw, suggestions=hits, warning=DRAFT_PARSE_WARNING)

        citations = data.get("usedCitations")
        reply_draft = data.get("replyDraft")
        return DraftReply(
            ticket_id=ticket_id,
            reply_draft=reply_draft if isinstance(reply_draft, str) else "",
            next_questions=normalize_questions(data.get("nextQuestions")),
            used_citations=[c for c in (UsedCitation.from_raw(x) for x in citations) if c]
            if isinstance(citations, list) else [],
            suggestions=hits,
        )

    # ========== Assist ==========

    def find_recent_ai_reply(self, ticket: Ticket) -> Optional[Dict[str, Any]]:
        """
        Marker payload of an AI comment posted within the dedupe window.

        Returns None as soon as a newer comment by any other author is seen.
        """
        if not self.system_author_id:
            return None

        now = self._now()
        for comment in ticket.comments_newest_first():
            if comment.author_id != self.system_author_id:
                return None
            if comment.created_at is None:
                continue
            created_at = comment.created_at
            if created_at.tzinfo is None:
                created_at = created_at.replace(tzinfo=timezone.utc)
            if (now - created_at).total_seconds() > self.dedupe_window_seconds:
                break
            payload = extract_marker_json(comment.body)
            if payload is not None:
                return payload
        return None

    def _result_from_payload(
        self,
        ticket_id: str,
        payload: Dict[str, Any],
        top_k: int,
        cache_type: CacheTier,
    ) -> AssistResult:
        return AssistResult(
            ticket_id=ticket_id,
            kb_top_k=_as_int(payload.get("kbTopK"), top_k),
            kb_hits=_as_int(payload.get("kbHits"), 0),
            reply=AssistReply.from_model_output(payload),
            comment_skipped=True,
            cached=True,
            cache_type=cache_type,
            parse_failed=bool(payload.get("parseFailed", False)),
        )

    async def assist(
        self,
        tenant_id: str,
        user_id: Optional[str],
        ticket_id: str,
        top_k: Optional[int] = None,
        tone: AssistTone = AssistTone.NEUTRAL,
        dry_run: bool = False,
        query: Optional[str] = None,
    ) -> AssistResult:
        """
        Generate a cited, structured reply for a ticket.

        Non-dry runs persist the result as an AI comment; dry runs keep it in
        the preview cache. Either tier short-circuits repeated calls within
        the dedupe window.
        """
        tone = AssistTone(tone)
        k = clamp_top_k(top_k)
        ticket = await self._get_ticket(tenant_id, ticket_id)
        await self._entitlements.assert_can_use_ai(tenant_id)

        usage_meta = {"ticketId": ticket_id, "topK": k, "tone": tone.value, "dryRun": dry_run}

        recent = self.find_recent_ai_reply(ticket)
        if recent is not None:
            result = self._result_from_payload(ticket_id, recent, k, CacheTier.COMMENT)
            logger.info(
                "Assist served from cache",
                extra={"tenant_id": tenant_id, "ticket_id": ticket_id, "cache_type": CacheTier.COMMENT.value},
            )
            await self._log_usage(tenant_id, user_id, {
                **usage_meta, "kbHits": result.kb_hits, "cached": True,
                "cacheType": CacheTier.COMMENT.value, "parseFailed": False,
            })
            return result

        cache_key = None
        if dry_run:
            cache_key = preview_key(tenant_id, ticket_id, k, tone.value, ticket.state_signature(), query)
            cached = self._preview_cache.get(cache_key)
            if cached is not None:
                result = self._result_from_payload(ticket_id, cached, k, CacheTier.DRYRUN)
                logger.info(
                    "Assist served from cache",
                    extra={"tenant_id": tenant_id, "ticket_id": ticket_id, "cache_type": CacheTier.DRYRUN.value},
                )
                await self._log_usage(tenant_id, user_id, {
                    **usage_meta, "kbHits": result.kb_hits, "cached": True,
                    "cacheType": CacheTier.DRYRUN.value, "parseFailed": result.parse_failed,
                })
                return result

        rules = self._rules_provider.rules
        query_text = self._prompts.query_text(ticket, query)
        hits = await self._retrieval.query(tenant_id, query_text, k, user_id=user_id)
        selection = select_hits(hits, query_text, rules, k, self.similarity_threshold)

        raw = await self._chat.chat(self._prompts.messages(query_text, selection.final, tone))
        data = parse_json_object(raw)
        parse_failed = data is None

        await self._log_usage(tenant_id, user_id, {
            **usage_meta, "kbHits": len(selection.final), "cached": False,
            "cacheType": None, "parseFailed": parse_failed,
        })

        result = AssistResult(
            ticket_id=ticket_id,
            kb_top_k=k,
            kb_hits=len(selection.final),
            reply=AssistReply(customer_reply=raw),
            parse_failed=parse_failed,
            debug=selection.debug(self.similarity_threshold),
        )

        if parse_failed:
            logger.warning(
                "Assist model output was not valid JSON",
                extra={"tenant_id": tenant_id, "ticket_id": ticket_id},
            )
        else:
            result.reply = self._post_process(AssistReply.from_model_output(data), selection.sources_text(), rules)
            if not dry_run:
                await self._persist(tenant_id, ticket_id, result)

        if dry_run:
            self._preview_cache.set(cache_key, {**result.cache_payload(), "parseFailed": parse_failed})

        return result

    @staticmethod
    def _post_process(reply: AssistReply, sources_text: str, rules: AssistRules) -> AssistReply:
        questions = QuestionSet(reply.questions_for_customer)
        for question in rules.follow_up_questions(sources_text):
            questions.add(question)
        reply.questions_for_customer = questions.values()
        return reply

    async def _persist(self, tenant_id: str, ticket_id: str, result: AssistResult) -> None:
        if not self.system_author_id:
            result.comment_error = MISSING_AUTHOR_ERROR
            logger.warning("AI comment not saved, no system author configured", extra={"ticket_id": ticket_id})
            return

        body = clamp_comment(
            build_comment_body(result.reply, result.cache_payload()),
            self.max_comment_length,
        )
        try:
            await self._tickets.add_comment(tenant_id, ticket_id, self.system_author_id, body)
        except Exception as e:
            result.comment_error = str(e) or type(e).__name__
            logger.warning(
                "Failed to save AI comment",
                extra={"tenant_id": tenant_id, "ticket_id": ticket_id, "error": str(e)},
            )
            return
        result.comment_saved = True
        logger.info("AI comment saved", extra={"tenant_id": tenant_id, "ticket_id": ticket_id})
