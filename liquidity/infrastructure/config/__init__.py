"""
Infrastructure Configuration
============================
AppSettings is the single source of truth. Settings are created once by the
composition root and passed by reference; there is no settings singleton.
"""

from .settings import AppSettings

__all__ = ['AppSettings']
