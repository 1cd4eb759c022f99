"""
Per-user layout/chart/symbol/settings repository with an ordered write queue.
"""

from __future__ import annotations

from .models import Candle, Layout, RepositoryEvent, Symbol, UserSettings
from .repository import Repository
from .sync_queue import SyncQueue

__all__ = [
    "Candle",
    "Layout",
    "Repository",
    "RepositoryEvent",
    "Symbol",
    "SyncQueue",
    "UserSettings",
]
