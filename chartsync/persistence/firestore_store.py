from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Mapping, Optional, TypeVar

from chartsync.persistence.firebase_client import get_firestore_client
from chartsync.persistence.firestore_retry import with_firestore_retry

from .interfaces import (
    CollectionListener,
    DocumentChange,
    DocumentListener,
    DocumentStore,
    ErrorListener,
    Unsubscribe,
)

T = TypeVar("T")
logger = logging.getLogger(__name__)

_CHANGE_TYPES = {"ADDED": "added", "MODIFIED": "modified", "REMOVED": "removed"}


class FirestoreDocumentStore(DocumentStore):
    """
    DocumentStore backed by the (synchronous) google-cloud-firestore client.

    - Blocking SDK calls run in worker threads (`asyncio.to_thread`) with transient
      retry, bounded by `timeout_s`.
    - `on_snapshot` callbacks fire on SDK threads; they are marshalled back onto the
      event loop that registered the watch.
    """

    def __init__(self, *, db: Any = None, project_id: str | None = None, timeout_s: float = 15.0) -> None:
        self._db = db if db is not None else get_firestore_client(project_id=project_id)
        self._timeout_s = float(timeout_s)
        self._watches: list[Any] = []

    async def _run(self, fn: Callable[[], T]) -> T:
        return await asyncio.wait_for(asyncio.to_thread(with_firestore_retry, fn), timeout=self._timeout_s)

    async def get_document(self, path: str) -> Optional[dict[str, Any]]:
        ref = self._db.document(path)
        snap = await self._run(ref.get)
        if not snap.exists:
            return None
        return snap.to_dict() or {}

    async def list_documents(self, collection_path: str) -> list[tuple[str, dict[str, Any]]]:
        col = self._db.collection(collection_path)

        def _list() -> list[tuple[str, dict[str, Any]]]:
            return [(snap.id, snap.to_dict() or {}) for snap in col.stream()]

        return await self._run(_list)

    async def set_document(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        ref = self._db.document(path)
        payload = dict(data)
        await self._run(lambda: ref.set(payload, merge=merge))

    async def update_document(self, path: str, data: Mapping[str, Any]) -> None:
        ref = self._db.document(path)
        payload = dict(data)
        await self._run(lambda: ref.update(payload))

    async def delete_document(self, path: str) -> None:
        ref = self._db.document(path)
        await self._run(ref.delete)

    def _dispatch(
        self,
        loop: asyncio.AbstractEventLoop,
        fn: Callable[[], None],
        on_error: Optional[ErrorListener],
    ) -> None:
        def _invoke() -> None:
            try:
                fn()
            except Exception as e:  # noqa: BLE001
                logger.exception("firestore snapshot listener failed")
                if on_error is not None:
                    on_error(e)

        if loop.is_closed():
            return
        loop.call_soon_threadsafe(_invoke)

    def watch_collection(
        self,
        collection_path: str,
        on_change: CollectionListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        def _on_snapshot(_docs: Any, changes: Any, _read_time: Any) -> None:
            batch = [
                DocumentChange(
                    type=_CHANGE_TYPES.get(getattr(ch.type, "name", str(ch.type)), "modified"),
                    doc_id=ch.document.id,
                    data=ch.document.to_dict() or {},
                )
                for ch in changes
            ]
            if batch:
                self._dispatch(loop, lambda: on_change(batch), on_error)

        watch = self._db.collection(collection_path).on_snapshot(_on_snapshot)
        self._watches.append(watch)
        return self._unsubscriber(watch)

    def watch_document(
        self,
        path: str,
        on_snapshot: DocumentListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()

        def _on_snapshot(docs: Any, _changes: Any, _read_time: Any) -> None:
            snap = docs[0] if docs else None
            data = (snap.to_dict() or {}) if (snap is not None and snap.exists) else None
            self._dispatch(loop, lambda: on_snapshot(data), on_error)

        watch = self._db.document(path).on_snapshot(_on_snapshot)
        self._watches.append(watch)
        return self._unsubscriber(watch)

    def _unsubscriber(self, watch: Any) -> Unsubscribe:
        def _unsubscribe() -> None:
            if watch not in self._watches:
                return
            self._watches.remove(watch)
            try:
                watch.unsubscribe()
            except Exception:  # noqa: BLE001
                logger.warning("firestore watch unsubscribe failed", exc_info=True)

        return _unsubscribe

    async def close(self) -> None:
        for watch in list(self._watches):
            try:
                watch.unsubscribe()
            except Exception:  # noqa: BLE001
                logger.warning("firestore watch unsubscribe failed", exc_info=True)
        self._watches.clear()
