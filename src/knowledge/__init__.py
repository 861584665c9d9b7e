"""
Knowledge Module
================

Bounded Context for knowledge ingestion and retrieval.

Responsibilities:
- Store uploaded or raw-text sources and index them asynchronously
- Chunk, embed and persist source text per tenant
- Similarity search over a tenant's chunks
- Track indexing jobs from QUEUED to SUCCEEDED/FAILED
"""

__version__ = "1.0.0"
