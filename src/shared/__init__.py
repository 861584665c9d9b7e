"""
Shared Kernel Module
====================

This module contains shared infrastructure used across all bounded
contexts (Knowledge Base and Ticket Assist).

Architecture Pattern: Modular Monolith
- Each module (knowledge, assist) is a bounded context
- Shared kernel contains only generic infrastructure
- Domain models are extended within each module

DO NOT add business logic from Knowledge or Assist to shared kernel.
"""

__version__ = "1.0.0"
