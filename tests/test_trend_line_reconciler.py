from __future__ import annotations

import asyncio
from typing import Any, Callable

from chartsync.errors import RepositoryError
from chartsync.trendlines import TrendLine, TrendLinePoint, TrendLineReconciler
from chartsync.trendlines.widget import EVENT_TREND_LINE_DELETED


class FakeWidget:
    def __init__(self, lines: list[dict[str, Any]] | None = None) -> None:
        self.lines: list[dict[str, Any]] = list(lines or [])
        self.handlers: dict[str, list[Callable[[Any], None]]] = {}

    async def set_symbol(self, symbol: str) -> None:
        return None

    async def set_granularity(self, granularity: str) -> None:
        return None

    def show_indicator(self, indicator_id: str) -> None:
        return None

    def hide_indicator(self, indicator_id: str) -> None:
        return None

    def add_trend_line(self, trend_line):
        self.lines.append(dict(trend_line))
        return trend_line["id"]

    def remove_trend_line(self, trend_line_id: str) -> None:
        self.lines = [line for line in self.lines if line.get("id") != trend_line_id]

    def get_trend_lines(self):
        return [dict(line) for line in self.lines]

    def on(self, event, callback):
        self.handlers.setdefault(event, []).append(callback)

        def _off() -> None:
            self.handlers[event].remove(callback)

        return _off

    def emit(self, event: str, payload: Any) -> None:
        for cb in list(self.handlers.get(event, [])):
            cb(payload)


class FakeRepository:
    def __init__(self, stored: list[TrendLine] | None = None) -> None:
        self.stored = list(stored or [])
        self.saved: list[str] = []
        self.deleted: list[str] = []
        self.fail = False
        self.gate: asyncio.Event | None = None

    async def get_trend_lines(self, layout_id: str, chart_id: str) -> list[TrendLine]:
        return list(self.stored)

    async def save_trend_line(self, layout_id: str, chart_id: str, line: TrendLine) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail:
            raise RepositoryError("Failed to save trend line", "TRENDLINE_SAVE_ERROR")
        self.saved.append(line.id)

    async def delete_trend_line(self, layout_id: str, chart_id: str, trend_line_id: str) -> None:
        if self.fail:
            raise RepositoryError("Failed to delete trend line", "TRENDLINE_DELETE_ERROR")
        self.deleted.append(trend_line_id)


def _raw(line_id: str, price: float = 100.0, **extra: Any) -> dict[str, Any]:
    return {
        "id": line_id,
        "startPoint": {"timestamp": 1.0, "price": price},
        "endPoint": {"timestamp": 2.0, "price": price + 5},
        **extra,
    }


def _line(line_id: str, price: float = 100.0) -> TrendLine:
    return TrendLine(id=line_id, start_point=TrendLinePoint(1.0, price), end_point=TrendLinePoint(2.0, price + 5))


def _reconciler(repo: FakeRepository, widget: FakeWidget, interval_s: float = 60.0) -> TrendLineReconciler:
    return TrendLineReconciler(repo, widget, layout_id="L1", chart_id="c1", interval_s=interval_s)


def test_load_draws_persisted_lines_and_sets_baseline():
    async def _run() -> None:
        repo = FakeRepository([_line("t1"), _line("t2", 200.0)])
        widget = FakeWidget()
        rec = _reconciler(repo, widget)

        lines = await rec.load()

        assert [line.id for line in lines] == ["t1", "t2"]
        assert [line["id"] for line in widget.lines] == ["t1", "t2"]
        assert await rec.reconcile_once() is True
        assert repo.saved == [] and repo.deleted == []

    asyncio.run(_run())


def test_only_new_or_changed_lines_are_upserted():
    async def _run() -> None:
        repo = FakeRepository()
        widget = FakeWidget([_raw("t1"), _raw("t2")])
        rec = _reconciler(repo, widget)

        await rec.reconcile_once()
        assert sorted(repo.saved) == ["t1", "t2"]

        widget.lines[1] = _raw("t2", 150.0)
        repo.saved.clear()
        await rec.reconcile_once()

        assert repo.saved == ["t2"]
        assert repo.deleted == []

    asyncio.run(_run())


def test_vanished_lines_are_deleted():
    async def _run() -> None:
        repo = FakeRepository([_line("t1"), _line("t2")])
        widget = FakeWidget()
        rec = _reconciler(repo, widget)
        await rec.load()

        widget.remove_trend_line("t1")
        await rec.reconcile_once()

        assert repo.deleted == ["t1"]
        assert repo.saved == []
        assert [line.id for line in rec.persisted] == ["t2"]

    asyncio.run(_run())


def test_key_order_and_noise_do_not_trigger_writes():
    async def _run() -> None:
        repo = FakeRepository()
        widget = FakeWidget([_raw("t1")])
        rec = _reconciler(repo, widget)
        await rec.reconcile_once()
        repo.saved.clear()

        reordered = {"endPoint": {"price": 105.0, "timestamp": 2.0}, "id": "t1", "startPoint": {"price": 100.0, "timestamp": 1.0}, "hovered": True}
        widget.lines = [reordered]
        await rec.reconcile_once()

        assert repo.saved == []

    asyncio.run(_run())


def test_failed_pass_keeps_baseline_and_retries():
    async def _run() -> None:
        repo = FakeRepository()
        widget = FakeWidget([_raw("t1")])
        rec = _reconciler(repo, widget)

        repo.fail = True
        assert await rec.reconcile_once() is False
        assert rec.persisted == []

        repo.fail = False
        assert await rec.reconcile_once() is True
        assert repo.saved == ["t1"]

    asyncio.run(_run())


def test_tick_is_skipped_while_a_pass_is_running():
    async def _run() -> None:
        repo = FakeRepository()
        repo.gate = asyncio.Event()
        widget = FakeWidget([_raw("t1")])
        rec = _reconciler(repo, widget)

        assert rec.tick() is True
        await asyncio.sleep(0)
        assert rec.tick() is False
        assert rec.skipped_ticks == 1

        repo.gate.set()
        await rec.stop()
        assert repo.saved == ["t1"]

    asyncio.run(_run())


def test_second_tick_in_the_same_turn_is_skipped_and_stop_waits_for_the_first():
    async def _run() -> None:
        repo = FakeRepository()
        repo.gate = asyncio.Event()
        widget = FakeWidget([_raw("t1")])
        rec = _reconciler(repo, widget)

        assert rec.tick() is True
        assert rec.tick() is False
        assert rec.skipped_ticks == 1

        asyncio.get_running_loop().call_later(0.02, repo.gate.set)
        await rec.stop()
        assert repo.saved == ["t1"]

    asyncio.run(_run())


def test_widget_delete_event_is_persisted_immediately():
    async def _run() -> None:
        repo = FakeRepository([_line("t1"), _line("t2")])
        widget = FakeWidget()
        rec = _reconciler(repo, widget)
        await rec.load()
        rec.start()

        widget.emit(EVENT_TREND_LINE_DELETED, {"trendLineId": "t1"})
        await asyncio.sleep(0.01)

        assert repo.deleted == ["t1"]
        # widget has not dropped the line yet; the next pass must not resurrect it
        await rec.reconcile_once()
        assert repo.saved == []
        assert [line.id for line in rec.persisted] == ["t2"]

        await rec.stop()
        assert widget.handlers[EVENT_TREND_LINE_DELETED] == []

    asyncio.run(_run())


def test_poll_loop_persists_changes_until_stopped():
    async def _run() -> None:
        repo = FakeRepository()
        widget = FakeWidget()
        rec = _reconciler(repo, widget, interval_s=0.01)
        rec.start()
        assert rec.running

        widget.add_trend_line(_raw("t1"))
        await asyncio.sleep(0.1)
        await rec.stop()

        assert repo.saved == ["t1"]
        assert not rec.running

        widget.add_trend_line(_raw("t2"))
        await asyncio.sleep(0.05)
        assert repo.saved == ["t1"]

    asyncio.run(_run())


def test_stop_with_flush_runs_a_final_pass():
    async def _run() -> None:
        repo = FakeRepository()
        widget = FakeWidget()
        rec = _reconciler(repo, widget)
        rec.start()

        widget.add_trend_line(_raw("t1"))
        await rec.stop(flush=True)

        assert repo.saved == ["t1"]

    asyncio.run(_run())
