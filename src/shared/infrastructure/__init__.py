"""
Infrastructure Layer
=====================

Low-level technical concerns:
- Logging setup
- Non-critical background effects
- Interval scheduling
"""
