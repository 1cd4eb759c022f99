from __future__ import annotations

import json
from pathlib import Path

import pytest

from chartsync.account import FileLocalStore, InMemoryLocalStore
from chartsync.account.local_store import ACCOUNT_STORE, METADATA_STORE, sanitize_key


def test_sanitize_key():
    assert sanitize_key("account-meta-u1") == "account-meta-u1"
    rewritten = sanitize_key("a/b c")
    assert rewritten.startswith("a_b_c-") and len(rewritten) == len("a_b_c-") + 8
    assert sanitize_key("a/b") != sanitize_key("a_b")
    assert sanitize_key("a_b") == "a_b"
    assert sanitize_key(" u1") != sanitize_key("u1")
    with pytest.raises(ValueError):
        sanitize_key("///")


def test_keys_that_sanitize_alike_do_not_share_a_file(tmp_path: Path):
    store = FileLocalStore(tmp_path)
    store.put(ACCOUNT_STORE, "a/b", {"uid": "slash"})
    store.put(ACCOUNT_STORE, "a_b", {"uid": "underscore"})

    assert store.get(ACCOUNT_STORE, "a/b") == {"uid": "slash"}
    assert store.get(ACCOUNT_STORE, "a_b") == {"uid": "underscore"}


def test_file_store_round_trips_json_objects(tmp_path: Path):
    store = FileLocalStore(tmp_path)
    store.put(ACCOUNT_STORE, "u1", {"uid": "u1", "email": "ada@example.com"})

    p = tmp_path / "account" / "u1.json"
    assert p.exists()
    assert json.loads(p.read_text(encoding="utf-8"))["email"] == "ada@example.com"
    assert FileLocalStore(tmp_path).get(ACCOUNT_STORE, "u1") == {"uid": "u1", "email": "ada@example.com"}
    assert not list((tmp_path / "account").glob("*.tmp"))


def test_file_store_ignores_corrupt_entries(tmp_path: Path):
    store = FileLocalStore(tmp_path)
    (tmp_path / "account").mkdir(parents=True)
    (tmp_path / "account" / "u1.json").write_text("{not json", encoding="utf-8")

    assert store.get(ACCOUNT_STORE, "u1") is None


def test_file_store_delete_and_clear(tmp_path: Path):
    store = FileLocalStore(tmp_path)
    store.put(METADATA_STORE, "account-meta-u1", {"key": "account-meta-u1"})
    store.put(METADATA_STORE, "subscription-meta-u1", {"key": "subscription-meta-u1"})

    store.delete(METADATA_STORE, "account-meta-u1")
    store.delete(METADATA_STORE, "account-meta-u1")
    assert store.get(METADATA_STORE, "account-meta-u1") is None
    assert store.get(METADATA_STORE, "subscription-meta-u1") is not None

    store.clear(METADATA_STORE)
    assert store.get(METADATA_STORE, "subscription-meta-u1") is None
    store.clear(ACCOUNT_STORE)


def test_unknown_store_name_is_rejected(tmp_path: Path):
    with pytest.raises(ValueError, match="unknown local store"):
        FileLocalStore(tmp_path).put("sessions", "u1", {})
    with pytest.raises(ValueError, match="unknown local store"):
        InMemoryLocalStore().get("sessions", "u1")


def test_in_memory_store_returns_copies():
    store = InMemoryLocalStore()
    value = {"nested": {"a": 1}}
    store.put(ACCOUNT_STORE, "u1", value)
    value["nested"]["a"] = 2

    got = store.get(ACCOUNT_STORE, "u1")
    got["nested"]["a"] = 3
    assert store.get(ACCOUNT_STORE, "u1") == {"nested": {"a": 1}}
