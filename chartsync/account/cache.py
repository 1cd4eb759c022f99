from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from chartsync.common.logging import log_event

from .local_store import METADATA_STORE, LocalStore
from .models import CACHE_SCHEMA_VERSION, CacheMetadata, utc_now

V = TypeVar("V", bound=BaseModel)
logger = logging.getLogger(__name__)

Fetcher = Callable[[], Awaitable[Optional[V]]]
CacheListener = Callable[[Optional[V]], None]
Unsubscribe = Callable[[], None]


class TtlCache(Generic[V]):
    """
    Persistent TTL cache for one record kind, keyed by uid.

    `get` decision table:
    - entry fresh (age < ttl), no force  -> cached value, no fetch
    - entry stale, no force              -> cached value now, one background refresh
    - no entry, or force_refresh         -> fetch, store, notify, return

    Concurrent fetches for the same uid share one task; storing the result and
    notifying listeners happens once per fetch, inside that task. A fetch that
    yields None (or fails) leaves the stored entry untouched.
    """

    def __init__(
        self,
        *,
        kind: str,
        model: type[V],
        store: LocalStore,
        record_store: str,
        ttl_s: float,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.kind = kind
        self._model = model
        self._store = store
        self._record_store = record_store
        self._ttl = timedelta(seconds=float(ttl_s))
        self._clock = clock
        self._inflight: dict[str, asyncio.Task[Optional[V]]] = {}
        self._listeners: list[CacheListener[V]] = []
        # Per-uid, bumped on invalidation; fetches started under an older epoch do not write back.
        self._epochs: dict[str, int] = {}

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def metadata_key(self, uid: str) -> str:
        return f"{self.kind}-meta-{uid}"

    # --- persistent reads ---

    def read_cached(self, uid: str) -> Optional[V]:
        data = self._store.get(self._record_store, uid)
        if data is None:
            return None
        try:
            return self._model.model_validate(data)
        except PydanticValidationError as e:
            logger.warning("%s cache: discarding unreadable entry uid=%s (%s)", self.kind, uid, e)
            return None

    def read_metadata(self, uid: str) -> Optional[CacheMetadata]:
        data = self._store.get(METADATA_STORE, self.metadata_key(uid))
        if data is None:
            return None
        try:
            return CacheMetadata.model_validate(data)
        except PydanticValidationError:
            return None

    def is_fresh(self, uid: str) -> bool:
        meta = self.read_metadata(uid)
        if meta is None:
            return False
        return (self._clock() - meta.last_fetched) < self._ttl

    # --- lookups ---

    async def get(self, uid: str, fetch: Fetcher[V], *, force_refresh: bool = False) -> Optional[V]:
        cached = self.read_cached(uid)
        if cached is not None and not force_refresh:
            if self.is_fresh(uid):
                return cached
            self._refresh_in_background(uid, fetch)
            return cached
        return await self.refresh(uid, fetch)

    async def refresh(self, uid: str, fetch: Fetcher[V]) -> Optional[V]:
        """
        Fetch now (or join the fetch already in flight for `uid`).
        """
        return await asyncio.shield(self._ensure_fetch(uid, fetch))

    def in_flight(self, uid: str) -> bool:
        task = self._inflight.get(uid)
        return task is not None and not task.done()

    def _ensure_fetch(self, uid: str, fetch: Fetcher[V]) -> asyncio.Task[Optional[V]]:
        task = self._inflight.get(uid)
        if task is not None and not task.done():
            return task
        epoch = self._epochs.get(uid, 0)
        task = asyncio.get_running_loop().create_task(self._fetch_and_store(uid, fetch, epoch))
        self._inflight[uid] = task

        def _settled(t: asyncio.Task[Optional[V]]) -> None:
            if self._inflight.get(uid) is t:
                del self._inflight[uid]

        task.add_done_callback(_settled)
        return task

    def _refresh_in_background(self, uid: str, fetch: Fetcher[V]) -> None:
        if self.in_flight(uid):
            return
        log_event(logger, "account_cache.revalidate", severity="DEBUG", kind=self.kind, uid=uid)
        self._ensure_fetch(uid, fetch)

    async def _fetch_and_store(self, uid: str, fetch: Fetcher[V], epoch: int) -> Optional[V]:
        try:
            value = await fetch()
        except Exception as e:  # noqa: BLE001
            log_event(
                logger,
                "account_cache.fetch_failed",
                severity="WARNING",
                kind=self.kind,
                uid=uid,
                error=repr(e),
            )
            return None
        if value is None:
            return None
        if epoch != self._epochs.get(uid, 0):
            logger.debug("%s cache: dropping result fetched before invalidation uid=%s", self.kind, uid)
            return value
        self.put(uid, value)
        self._notify(value)
        return value

    def put(self, uid: str, value: V) -> None:
        self._store.put(self._record_store, uid, value.model_dump(mode="json"))
        meta = CacheMetadata(
            key=self.metadata_key(uid),
            last_fetched=self._clock(),
            ttl_ms=int(self._ttl.total_seconds() * 1000),
            version=CACHE_SCHEMA_VERSION,
        )
        self._store.put(METADATA_STORE, meta.key, meta.model_dump(mode="json"))

    # --- invalidation ---

    def invalidate(self, uid: str) -> None:
        self._epochs[uid] = self._epochs.get(uid, 0) + 1
        self._store.delete(self._record_store, uid)
        self._store.delete(METADATA_STORE, self.metadata_key(uid))

    def invalidate_all(self) -> None:
        """
        Drop every record of this kind. Metadata is keyed per kind and uid, so the
        caller clears the shared metadata store.
        """
        for uid in set(self._epochs) | set(self._inflight):
            self._epochs[uid] = self._epochs.get(uid, 0) + 1
        self._store.clear(self._record_store)

    # --- listeners ---

    def subscribe(self, listener: CacheListener[V]) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, value: Optional[V]) -> None:
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception:  # noqa: BLE001
                logger.exception("%s cache: listener failed", self.kind)

    async def aclose(self) -> None:
        tasks = [t for t in self._inflight.values() if not t.done()]
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
