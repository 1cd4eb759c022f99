"""
Remote document store access (Firestore) plus an in-process equivalent.
"""

from __future__ import annotations

from .interfaces import DocumentChange, DocumentStore
from .memory_store import InMemoryDocumentStore

__all__ = [
    "DocumentChange",
    "DocumentStore",
    "InMemoryDocumentStore",
]
