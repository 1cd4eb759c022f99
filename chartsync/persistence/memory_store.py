from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Mapping, Optional

from google.api_core import exceptions as gexc

from .interfaces import (
    CollectionListener,
    DocumentChange,
    DocumentListener,
    DocumentStore,
    ErrorListener,
    Unsubscribe,
)


def _parent(path: str) -> str:
    return path.rsplit("/", 1)[0] if "/" in path else ""


def _doc_id(path: str) -> str:
    return path.rsplit("/", 1)[-1]


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local DocumentStore with Firestore-like semantics.

    Useful for local runs (no emulator) and deterministic tests:
    - `history` records every write as (op, path) in apply order.
    - Watch callbacks are scheduled with `loop.call_soon`, so they arrive after the
      writing coroutine yields, like a remote snapshot would.
    """

    def __init__(self, initial: Optional[Mapping[str, Mapping[str, Any]]] = None) -> None:
        self._docs: dict[str, dict[str, Any]] = {k: copy.deepcopy(dict(v)) for k, v in (initial or {}).items()}
        self._collection_watchers: dict[str, list[tuple[asyncio.AbstractEventLoop, CollectionListener]]] = {}
        self._document_watchers: dict[str, list[tuple[asyncio.AbstractEventLoop, DocumentListener]]] = {}
        self.history: list[tuple[str, str]] = []

    # --- reads ---

    async def get_document(self, path: str) -> Optional[dict[str, Any]]:
        doc = self._docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    async def list_documents(self, collection_path: str) -> list[tuple[str, dict[str, Any]]]:
        return [(_doc_id(p), copy.deepcopy(d)) for p, d in self._docs.items() if _parent(p) == collection_path]

    def peek(self, path: str) -> Optional[dict[str, Any]]:
        """Synchronous read for assertions."""
        doc = self._docs.get(path)
        return copy.deepcopy(doc) if doc is not None else None

    # --- writes ---

    async def set_document(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None:
        existed = path in self._docs
        if merge and existed:
            merged = dict(self._docs[path])
            merged.update(copy.deepcopy(dict(data)))
            self._docs[path] = merged
        else:
            self._docs[path] = copy.deepcopy(dict(data))
        self.history.append(("set", path))
        self._notify(path, "modified" if existed else "added")

    async def update_document(self, path: str, data: Mapping[str, Any]) -> None:
        if path not in self._docs:
            raise gexc.NotFound(f"No document to update: {path}")
        merged = dict(self._docs[path])
        merged.update(copy.deepcopy(dict(data)))
        self._docs[path] = merged
        self.history.append(("update", path))
        self._notify(path, "modified")

    async def delete_document(self, path: str) -> None:
        existed = self._docs.pop(path, None) is not None
        self.history.append(("delete", path))
        if existed:
            self._notify(path, "removed")

    # --- watches ---

    def _notify(self, path: str, change_type: str) -> None:
        data = copy.deepcopy(self._docs.get(path) or {})
        change = DocumentChange(type=change_type, doc_id=_doc_id(path), data=data)  # type: ignore[arg-type]
        for loop, cb in list(self._collection_watchers.get(_parent(path), [])):
            loop.call_soon(cb, [change])
        doc_data = None if change_type == "removed" else data
        for loop, doc_cb in list(self._document_watchers.get(path, [])):
            loop.call_soon(doc_cb, copy.deepcopy(doc_data))

    def watch_collection(
        self,
        collection_path: str,
        on_change: CollectionListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        entry = (loop, on_change)
        self._collection_watchers.setdefault(collection_path, []).append(entry)
        initial = [
            DocumentChange(type="added", doc_id=_doc_id(p), data=copy.deepcopy(d))
            for p, d in self._docs.items()
            if _parent(p) == collection_path
        ]
        if initial:
            loop.call_soon(on_change, initial)
        return self._remover(self._collection_watchers, collection_path, entry)

    def watch_document(
        self,
        path: str,
        on_snapshot: DocumentListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe:
        loop = asyncio.get_running_loop()
        entry = (loop, on_snapshot)
        self._document_watchers.setdefault(path, []).append(entry)
        loop.call_soon(on_snapshot, copy.deepcopy(self._docs.get(path)))
        return self._remover(self._document_watchers, path, entry)

    @staticmethod
    def _remover(registry: dict[str, list[Any]], key: str, entry: Any) -> Callable[[], None]:
        def _unsubscribe() -> None:
            entries = registry.get(key) or []
            if entry in entries:
                entries.remove(entry)

        return _unsubscribe

    def watcher_count(self) -> int:
        return sum(len(v) for v in self._collection_watchers.values()) + sum(
            len(v) for v in self._document_watchers.values()
        )
