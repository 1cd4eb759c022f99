from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from chartsync.identity import UserIdentity

from .local_store import PREVIEW_STORE, LocalStore

ANONYMOUS_PREVIEW_KEY = "anonymous_preview_start"


def preview_key(user: Optional[UserIdentity]) -> str:
    return f"preview_start_{user.uid}" if user is not None else ANONYMOUS_PREVIEW_KEY


@dataclass(frozen=True, slots=True)
class PreviewStatus:
    is_preview: bool
    is_expired: bool
    start_time: Optional[datetime] = None
    remaining: timedelta = timedelta(0)


class PreviewGate:
    """
    Time-boxed preview for signed-out or unsubscribed users.

    The start time is a client-side wall-clock timestamp; anyone can reset it by
    clearing local state. It only drives UX and grants nothing server-side.
    """

    def __init__(
        self,
        store: LocalStore,
        *,
        duration_s: float = 300.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._duration = timedelta(seconds=float(duration_s))
        self._clock = clock

    def start_preview(self, user: Optional[UserIdentity]) -> datetime:
        """
        Record the preview start unless one already exists. Returns the effective start.
        """
        key = preview_key(user)
        existing = self._read_start(key)
        if existing is not None:
            return existing
        start_ms = int(self._clock() * 1000)
        self._store.put(PREVIEW_STORE, key, {"start_ms": start_ms})
        return datetime.fromtimestamp(start_ms / 1000.0, tz=timezone.utc)

    def get_preview_status(self, user: Optional[UserIdentity]) -> PreviewStatus:
        start = self._read_start(preview_key(user))
        if start is None:
            return PreviewStatus(is_preview=False, is_expired=False)
        now = datetime.fromtimestamp(self._clock(), tz=timezone.utc)
        elapsed = now - start
        expired = elapsed >= self._duration
        remaining = timedelta(0) if expired else self._duration - elapsed
        return PreviewStatus(is_preview=True, is_expired=expired, start_time=start, remaining=remaining)

    def reset(self, user: Optional[UserIdentity]) -> None:
        self._store.delete(PREVIEW_STORE, preview_key(user))

    def _read_start(self, key: str) -> Optional[datetime]:
        data = self._store.get(PREVIEW_STORE, key)
        if not data:
            return None
        try:
            start_ms = int(data["start_ms"])
        except (KeyError, TypeError, ValueError):
            return None
        return datetime.fromtimestamp(start_ms / 1000.0, tz=timezone.utc)
