"""
Assist Module
=============

Ticket assist: KB-grounded suggestions, draft replies and structured,
cited replies saved as AI comments, with duplicate-call suppression.
"""

__version__ = "1.0.0"
