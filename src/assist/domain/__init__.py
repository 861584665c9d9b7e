"""
Assist Domain Layer
===================

Tickets as read by the assist pipeline, relevance rules, hit selection,
prompt construction and the AI comment marker format.

This layer is framework-agnostic and contains pure business logic.
"""

from src.assist.domain.entities import (
    Ticket,
    TicketComment,
    TicketStateSignature,
    Citation,
    AssistReply,
    AssistResult,
    UsedCitation,
    DraftReply,
)
from src.assist.domain.value_objects import AssistRules, FollowUpRule
from src.assist.domain.questions import QuestionSet, normalize_question, normalize_questions
from src.assist.domain.relevance import HitSelection, select_hits
from src.assist.domain.marker import (
    MARKER_START,
    MARKER_END,
    build_comment_body,
    clamp_comment,
    extract_marker_json,
    truncate,
)
from src.assist.domain.prompts import AssistPromptBuilder, DraftReplyPromptBuilder

__all__ = [
    "Ticket",
    "TicketComment",
    "TicketStateSignature",
    "Citation",
    "AssistReply",
    "AssistResult",
    "UsedCitation",
    "DraftReply",
    "AssistRules",
    "FollowUpRule",
    "QuestionSet",
    "normalize_question",
    "normalize_questions",
    "HitSelection",
    "select_hits",
    "MARKER_START",
    "MARKER_END",
    "build_comment_body",
    "clamp_comment",
    "extract_marker_json",
    "truncate",
    "AssistPromptBuilder",
    "DraftReplyPromptBuilder",
]
