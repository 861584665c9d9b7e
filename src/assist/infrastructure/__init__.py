"""
Assist Infrastructure Layer
===========================

Contains:
- Models: SQLAlchemy ORM models for tickets and comments
- Repositories: ticket store
- External: YAML rules manager with hot reload
"""

from src.assist.infrastructure.models import TicketModel, TicketCommentModel
from src.assist.infrastructure.repositories import SQLAlchemyTicketStore
from src.assist.infrastructure.external import AssistRulesManager, RulesFileHandler

__all__ = [
    "TicketModel",
    "TicketCommentModel",
    "SQLAlchemyTicketStore",
    "AssistRulesManager",
    "RulesFileHandler",
]
