"""
Knowledge Domain Layer
======================

Domain layer for knowledge ingestion and retrieval.

Contains:
- Entities: KnowledgeSource, KnowledgeChunk, Job, QueryHit
- Chunking: pure text segmentation functions

This layer is framework-agnostic and contains pure business logic.
"""

from src.knowledge.domain.entities import (
    KnowledgeSource,
    KnowledgeChunk,
    ChunkInput,
    ReplaceResult,
    IndexJobPayload,
    Job,
    QueryHit,
    SourcePage,
)
from src.knowledge.domain.chunking import chunk_paragraphs, chunk_sliding, split_paragraphs

__all__ = [
    "KnowledgeSource",
    "KnowledgeChunk",
    "ChunkInput",
    "ReplaceResult",
    "IndexJobPayload",
    "Job",
    "QueryHit",
    "SourcePage",
    "chunk_paragraphs",
    "chunk_sliding",
    "split_paragraphs",
]
