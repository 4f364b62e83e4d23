"""
Storage backends for PeerVault.

One backend per tier: in-process memory, SQLite, and flat local files.
"""

from .memory import MemoryBackend
from .sqlite_backend import SQLiteBackend
from .local import LocalBackend

__all__ = ["MemoryBackend", "SQLiteBackend", "LocalBackend"]
