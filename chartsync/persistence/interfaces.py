from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Literal, Mapping, Optional

ChangeType = Literal["added", "modified", "removed"]

Unsubscribe = Callable[[], None]
CollectionListener = Callable[[list["DocumentChange"]], None]
DocumentListener = Callable[[Optional[dict[str, Any]]], None]
ErrorListener = Callable[[BaseException], None]


@dataclass(frozen=True, slots=True)
class DocumentChange:
    type: ChangeType
    doc_id: str
    data: dict[str, Any] = field(default_factory=dict)


class DocumentStore(ABC):
    """
    Async facade over the remote document store.

    Contract:
    - Paths are slash-separated (`settings/u1/layouts/l1`); collection paths have an
      odd number of segments, document paths an even number.
    - Reads return plain dicts (copies); callers may mutate them freely.
    - `update_document` fails when the document does not exist;
      `set_document(merge=True)` creates it.
    - Watch callbacks are invoked on the event loop that registered them. A
      collection watch first delivers every existing document as "added".
    - Failures surface as the underlying client's exceptions (or TimeoutError);
      the Repository wraps them into its own error taxonomy.
    """

    @abstractmethod
    async def get_document(self, path: str) -> Optional[dict[str, Any]]: ...

    @abstractmethod
    async def list_documents(self, collection_path: str) -> list[tuple[str, dict[str, Any]]]: ...

    @abstractmethod
    async def set_document(self, path: str, data: Mapping[str, Any], *, merge: bool = False) -> None: ...

    @abstractmethod
    async def update_document(self, path: str, data: Mapping[str, Any]) -> None: ...

    @abstractmethod
    async def delete_document(self, path: str) -> None: ...

    @abstractmethod
    def watch_collection(
        self,
        collection_path: str,
        on_change: CollectionListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe: ...

    @abstractmethod
    def watch_document(
        self,
        path: str,
        on_snapshot: DocumentListener,
        on_error: Optional[ErrorListener] = None,
    ) -> Unsubscribe: ...

    async def close(self) -> None:
        return None
