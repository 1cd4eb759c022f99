from __future__ import annotations

import pytest
from google.api_core import exceptions as gexc

from chartsync.persistence.firestore_retry import is_transient_error, with_firestore_retry


def test_transient_errors_are_retried_with_backoff():
    calls = {"n": 0}
    sleeps: list[float] = []

    def _flaky() -> str:
        calls["n"] += 1
        if calls["n"] < 3:
            raise gexc.ServiceUnavailable("try again")
        return "ok"

    assert with_firestore_retry(_flaky, base_delay_s=0.1, sleep=sleeps.append) == "ok"
    assert calls["n"] == 3
    assert len(sleeps) == 2
    assert 0.0 <= sleeps[0] <= 0.1
    assert 0.0 <= sleeps[1] <= 0.2


def test_permanent_errors_are_not_retried():
    calls = {"n": 0}

    def _denied() -> None:
        calls["n"] += 1
        raise gexc.PermissionDenied("nope")

    with pytest.raises(gexc.PermissionDenied):
        with_firestore_retry(_denied, sleep=lambda _s: None)
    assert calls["n"] == 1


def test_gives_up_after_max_attempts():
    calls = {"n": 0}

    def _down() -> None:
        calls["n"] += 1
        raise gexc.DeadlineExceeded("slow")

    with pytest.raises(gexc.DeadlineExceeded):
        with_firestore_retry(_down, max_attempts=3, sleep=lambda _s: None)
    assert calls["n"] == 3


def test_is_transient_error():
    assert is_transient_error(gexc.Aborted("contention"))
    assert not is_transient_error(gexc.NotFound("gone"))
    assert not is_transient_error(ValueError("bad"))
