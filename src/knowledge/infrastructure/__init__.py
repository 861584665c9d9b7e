"""
Knowledge Infrastructure Layer
==============================

Infrastructure implementations for the knowledge module.

Contains:
- Models: SQLAlchemy ORM models
- Repositories: Data access implementations
- Extraction: PDF and plain-text extraction
"""

from src.knowledge.infrastructure.models import KnowledgeSourceModel, KnowledgeChunkModel, JobModel
from src.knowledge.infrastructure.repositories import (
    SQLAlchemySourceRepository,
    SQLAlchemyJobRepository,
    SQLAlchemyChunkRepository,
    encode_cursor,
    decode_cursor,
)
from src.knowledge.infrastructure.extraction import SourceTextExtractor, is_pdf

__all__ = [
    "KnowledgeSourceModel",
    "KnowledgeChunkModel",
    "JobModel",
    "SQLAlchemySourceRepository",
    "SQLAlchemyJobRepository",
    "SQLAlchemyChunkRepository",
    "encode_cursor",
    "decode_cursor",
    "SourceTextExtractor",
    "is_pdf",
]
