from __future__ import annotations

import asyncio

import pytest

from chartsync.errors import NetworkError
from chartsync.repository import SyncQueue


def _recorder(applied: list[str], name: str, *, failures: int = 0):
    remaining = {"n": failures}

    async def _op() -> None:
        if remaining["n"] > 0:
            remaining["n"] -= 1
            raise ConnectionError(f"{name} unavailable")
        applied.append(name)

    return _op


def test_writes_apply_in_enqueue_order():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(delay_s=0.0)
        for name in ("a", "b", "c"):
            q.queue_sync(_recorder(applied, name), label=name)
        await q.flush()

        assert applied == ["a", "b", "c"]
        assert len(q) == 0

    asyncio.run(_run())


def test_burst_is_drained_by_scheduled_drain():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(delay_s=0.01)
        q.queue_sync(_recorder(applied, "a"), label="a")
        q.queue_sync(_recorder(applied, "b"), label="b")
        assert applied == []

        await asyncio.sleep(0.1)
        assert applied == ["a", "b"]

    asyncio.run(_run())


def test_failed_write_stays_at_head_and_blocks_later_writes():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(online=False)
        q.queue_sync(_recorder(applied, "a", failures=1), label="a")
        q.queue_sync(_recorder(applied, "b"), label="b")

        with pytest.raises(NetworkError) as ei:
            await q.sync()
        assert isinstance(ei.value.cause, ConnectionError)
        assert applied == []
        assert q.pending_labels() == ["a", "b"]

        await q.sync()
        assert applied == ["a", "b"]

    asyncio.run(_run())


def test_write_is_dropped_after_max_attempts():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(online=False, max_attempts=2)
        q.queue_sync(_recorder(applied, "poison", failures=99), label="poison")
        q.queue_sync(_recorder(applied, "b"), label="b")

        for _ in range(2):
            with pytest.raises(NetworkError):
                await q.sync()
        assert q.pending_labels() == ["b"]

        await q.sync()
        assert applied == ["b"]

    asyncio.run(_run())


def test_offline_queue_holds_writes_until_back_online():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(delay_s=0.0, online=False)
        q.queue_sync(_recorder(applied, "a"), label="a")
        await asyncio.sleep(0.02)
        assert applied == []
        assert len(q) == 1

        q.set_online(True)
        await q.flush()
        assert applied == ["a"]

    asyncio.run(_run())


def test_slow_write_times_out():
    async def _run() -> None:
        async def _hang() -> None:
            await asyncio.sleep(5)

        q = SyncQueue(online=False, timeout_s=0.01)
        q.queue_sync(_hang, label="hang")
        with pytest.raises(NetworkError) as ei:
            await q.sync()
        assert isinstance(ei.value.cause, asyncio.TimeoutError)
        assert len(q) == 1

    asyncio.run(_run())


def test_close_drops_pending_and_ignores_new_writes():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(delay_s=0.05)
        q.queue_sync(_recorder(applied, "a"), label="a")
        q.queue_sync(_recorder(applied, "b"), label="b")

        assert q.close() == 2
        q.queue_sync(_recorder(applied, "c"), label="c")
        await asyncio.sleep(0.1)

        assert applied == []
        assert len(q) == 0

    asyncio.run(_run())


def test_failed_background_drain_is_retried_without_new_writes():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(delay_s=0.01)
        q.queue_sync(_recorder(applied, "a", failures=1), label="a")

        await asyncio.sleep(0.5)

        assert applied == ["a"]
        assert len(q) == 0

    asyncio.run(_run())


def test_background_retries_stop_once_the_write_is_dropped():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(delay_s=0.01, max_attempts=2, max_retry_delay_s=0.05)
        q.queue_sync(_recorder(applied, "poison", failures=99), label="poison")
        q.queue_sync(_recorder(applied, "b"), label="b")

        await asyncio.sleep(0.5)

        assert applied == ["b"]
        assert len(q) == 0

    asyncio.run(_run())


def test_retry_delay_backs_off_up_to_the_cap():
    q = SyncQueue(delay_s=0.1, max_retry_delay_s=1.0)

    assert q.retry_delay(1) == pytest.approx(0.2)
    assert q.retry_delay(2) == pytest.approx(0.4)
    assert q.retry_delay(10) == pytest.approx(1.0)
    assert SyncQueue(delay_s=0.0).retry_delay(0) == pytest.approx(0.05)


def test_offline_failure_waits_for_reconnect_instead_of_retrying():
    async def _run() -> None:
        applied: list[str] = []
        q = SyncQueue(delay_s=0.01, online=False)
        q.queue_sync(_recorder(applied, "a", failures=1), label="a")
        with pytest.raises(NetworkError):
            await q.sync()

        await asyncio.sleep(0.2)
        assert applied == []

        q.set_online(True)
        await asyncio.sleep(0.2)
        assert applied == ["a"]

    asyncio.run(_run())
