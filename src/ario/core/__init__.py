"""
AR.IO core module

Shared building blocks: constants, the error taxonomy, the data model,
token denominations, key helpers, configuration and logging setup.
"""

__all__ = []
