"""
Assist Interfaces Layer
=======================

Contains:
- Controllers: FastAPI route handlers for /tickets/{id}/...
"""

from src.assist.interfaces.controllers import assist_router

__all__ = ["assist_router"]
