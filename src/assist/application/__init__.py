"""
Assist Application Layer
========================

Contains:
- Services: ticket assist orchestration, collaborator interfaces
- Cache: dry-run preview cache
- DTOs: Data transfer objects for API serialization
"""

from src.assist.application.cache import PreviewCache, preview_key
from src.assist.application.services import (
    AssistService,
    IAssistRulesProvider,
    ITicketStore,
    StaticRulesProvider,
    parse_json_object,
)
from src.assist.application.dto import (
    AssistRequest,
    AssistResponse,
    DraftReplyRequest,
    DraftReplyResponse,
    SuggestRequest,
    SuggestResponse,
)

__all__ = [
    "PreviewCache",
    "preview_key",
    "AssistService",
    "IAssistRulesProvider",
    "ITicketStore",
    "StaticRulesProvider",
    "parse_json_object",
    "AssistRequest",
    "AssistResponse",
    "DraftReplyRequest",
    "DraftReplyResponse",
    "SuggestRequest",
    "SuggestResponse",
]
