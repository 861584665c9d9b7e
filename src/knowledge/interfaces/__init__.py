"""
Knowledge Interfaces Layer
==========================

Interface adapters (controllers) for the knowledge module.

Contains:
- Controllers: FastAPI route handlers for /kb and /jobs
"""

from src.knowledge.interfaces.controllers import knowledge_router, jobs_router

__all__ = ["knowledge_router", "jobs_router"]
