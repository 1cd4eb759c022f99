"""
Account/subscription records behind a persistent stale-while-revalidate cache,
plus plan resolution, entitlement gates and the preview window.
"""

from __future__ import annotations

from .billing_client import BillingClient
from .cache import TtlCache
from .local_store import FileLocalStore, InMemoryLocalStore, LocalStore
from .models import AccountRecord, CacheMetadata, SubscriptionRecord
from .plans import (
    can_add_more_indicators,
    can_add_more_layouts,
    get_indicator_limit,
    get_layout_limit,
    resolve_plan,
)
from .preview import PreviewGate, PreviewStatus
from .repository import AccountRepository

__all__ = [
    "AccountRecord",
    "AccountRepository",
    "BillingClient",
    "CacheMetadata",
    "FileLocalStore",
    "InMemoryLocalStore",
    "LocalStore",
    "PreviewGate",
    "PreviewStatus",
    "SubscriptionRecord",
    "TtlCache",
    "can_add_more_indicators",
    "can_add_more_layouts",
    "get_indicator_limit",
    "get_layout_limit",
    "resolve_plan",
]
