from __future__ import annotations

import copy
import hashlib
import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Mapping, Optional

logger = logging.getLogger(__name__)

ACCOUNT_STORE = "account"
SUBSCRIPTION_STORE = "subscription"
METADATA_STORE = "metadata"
PREVIEW_STORE = "preview"

STORES: tuple[str, ...] = (ACCOUNT_STORE, SUBSCRIPTION_STORE, METADATA_STORE, PREVIEW_STORE)

_SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_key(key: str) -> str:
    """
    Convert a cache key into a filename-safe token.

    Keys that needed rewriting get a short digest of the original appended, so
    distinct keys never share a file.

    Examples:
    - 'account-meta-u1' -> 'account-meta-u1'
    - 'a/b c' -> 'a_b_c-<8 hex chars>'
    """
    key = key or ""
    s = _SAFE_FILENAME_RE.sub("_", key.strip())
    s = re.sub(r"_+", "_", s).strip("._")
    if not s:
        raise ValueError(f"unusable cache key: {key!r}")
    if s != key:
        s = f"{s}-{hashlib.sha256(key.encode('utf-8')).hexdigest()[:8]}"
    return s


def _check_store(store: str) -> str:
    if store not in STORES:
        raise ValueError(f"unknown local store: {store!r}")
    return store


class LocalStore(ABC):
    """
    Keyed JSON-object storage partitioned by store name (account, subscription,
    metadata, preview). Survives restarts when file-backed.

    Single-process only: concurrent processes sharing a root are not coordinated.
    """

    @abstractmethod
    def get(self, store: str, key: str) -> Optional[dict[str, Any]]: ...

    @abstractmethod
    def put(self, store: str, key: str, value: Mapping[str, Any]) -> None: ...

    @abstractmethod
    def delete(self, store: str, key: str) -> None: ...

    @abstractmethod
    def clear(self, store: str) -> None: ...


class FileLocalStore(LocalStore):
    """
    Layout:
      {root}/{store}/{sanitized key}.json
    """

    def __init__(self, root: Path | str) -> None:
        self.root = Path(root)

    def _path(self, store: str, key: str) -> Path:
        return self.root / _check_store(store) / f"{sanitize_key(key)}.json"

    def get(self, store: str, key: str) -> Optional[dict[str, Any]]:
        path = self._path(store, key)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("local_store: unreadable entry %s (%s); ignoring", path, e)
            return None
        return data if isinstance(data, dict) else None

    def put(self, store: str, key: str, value: Mapping[str, Any]) -> None:
        path = self._path(store, key)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(
            json.dumps(dict(value), separators=(",", ":"), ensure_ascii=False, default=str),
            encoding="utf-8",
        )
        os.replace(tmp, path)

    def delete(self, store: str, key: str) -> None:
        path = self._path(store, key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass

    def clear(self, store: str) -> None:
        d = self.root / _check_store(store)
        if not d.exists():
            return
        for p in d.glob("*.json"):
            p.unlink(missing_ok=True)


class InMemoryLocalStore(LocalStore):
    def __init__(self) -> None:
        self._data: dict[str, dict[str, dict[str, Any]]] = {s: {} for s in STORES}

    def get(self, store: str, key: str) -> Optional[dict[str, Any]]:
        value = self._data[_check_store(store)].get(key)
        return copy.deepcopy(value) if value is not None else None

    def put(self, store: str, key: str, value: Mapping[str, Any]) -> None:
        self._data[_check_store(store)][key] = copy.deepcopy(dict(value))

    def delete(self, store: str, key: str) -> None:
        self._data[_check_store(store)].pop(key, None)

    def clear(self, store: str) -> None:
        self._data[_check_store(store)].clear()

    def keys(self, store: str) -> list[str]:
        return list(self._data[_check_store(store)])
