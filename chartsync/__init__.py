"""
chartsync package

Client-side state synchronization and caching engine for the charting
dashboard: layout trees, the per-user Repository with its ordered sync queue,
the account/subscription TTL cache, and the trend-line reconciler.
"""

from __future__ import annotations

from chartsync.errors import (
    NetworkError,
    NotFoundError,
    NotInitializedError,
    RepositoryError,
    ValidationError,
)

__all__ = [
    "RepositoryError",
    "NotInitializedError",
    "NotFoundError",
    "ValidationError",
    "NetworkError",
]
