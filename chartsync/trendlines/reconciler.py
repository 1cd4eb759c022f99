from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Optional

from chartsync.common.logging import log_event
from chartsync.errors import RepositoryError

from .models import TrendLine
from .normalize import normalize_trend_lines
from .widget import EVENT_TREND_LINE_DELETED, ChartWidget

if TYPE_CHECKING:
    from chartsync.repository import Repository

logger = logging.getLogger(__name__)


def snapshot_fingerprint(lines: Iterable[TrendLine]) -> str:
    return json.dumps([line.to_firestore() for line in lines], sort_keys=True, separators=(",", ":"))


def _event_trend_line_id(event: Any) -> Optional[str]:
    if isinstance(event, Mapping):
        value = event.get("trendLineId") or event.get("id")
    else:
        value = getattr(event, "trendLineId", None) or getattr(event, "trend_line_id", None)
    s = str(value).strip() if value is not None else ""
    return s or None


class TrendLineReconciler:
    """
    Keeps one chart's persisted trend lines in step with the widget.

    Every `interval_s` a pass reads the widget snapshot, normalizes it and, when
    it differs from the last persisted snapshot, upserts new/changed lines and
    deletes vanished ones. A tick that fires while a pass is still running is
    skipped. Widget delete events are persisted immediately.
    """

    def __init__(
        self,
        repository: "Repository",
        widget: ChartWidget,
        *,
        layout_id: str,
        chart_id: str,
        interval_s: float = 2.0,
    ) -> None:
        self._repository = repository
        self._widget = widget
        self.layout_id = layout_id
        self.chart_id = chart_id
        self._interval_s = float(interval_s)

        self._persisted: dict[str, TrendLine] = {}
        self._fingerprint = snapshot_fingerprint(())
        # Ids deleted explicitly; never re-upserted while the widget still reports them.
        self._tombstones: set[str] = set()

        self._busy = False
        self._write_lock = asyncio.Lock()
        self._stop = asyncio.Event()
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._pass_task: Optional[asyncio.Task[bool]] = None
        self._delete_tasks: set[asyncio.Task[None]] = set()
        self._widget_unsubscribes: list[Any] = []
        self.skipped_ticks = 0

    @property
    def running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def persisted(self) -> list[TrendLine]:
        return list(self._persisted.values())

    async def load(self) -> list[TrendLine]:
        """
        Fetch persisted lines, draw them on the widget and adopt them as the baseline.
        """
        lines = await self._repository.get_trend_lines(self.layout_id, self.chart_id)
        for line in lines:
            try:
                self._widget.add_trend_line(line.to_firestore())
            except Exception:  # noqa: BLE001
                logger.warning("trendlines: widget rejected line %s", line.id, exc_info=True)
        self._persisted = {line.id: line for line in lines}
        self._fingerprint = snapshot_fingerprint(lines)
        return lines

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._widget_unsubscribes.append(self._widget.on(EVENT_TREND_LINE_DELETED, self._on_widget_deleted))
        self._loop_task = asyncio.get_running_loop().create_task(self._run())
        log_event(logger, "trendlines.started", chart_id=self.chart_id, interval_s=self._interval_s)

    async def stop(self, *, flush: bool = False) -> None:
        """
        Stop polling and detach from the widget. With `flush`, run one final pass first.
        """
        if flush:
            await self._wait_for_pass()
            await self.reconcile_once()
        self._stop.set()
        for unsubscribe in self._widget_unsubscribes:
            try:
                unsubscribe()
            except Exception:  # noqa: BLE001
                logger.warning("trendlines: widget unsubscribe failed", exc_info=True)
        self._widget_unsubscribes = []
        if self._loop_task is not None:
            self._loop_task.cancel()
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None
        await self._wait_for_pass()
        if self._delete_tasks:
            await asyncio.gather(*self._delete_tasks, return_exceptions=True)

    async def _wait_for_pass(self) -> None:
        task = self._pass_task
        if task is not None and not task.done():
            await asyncio.gather(task, return_exceptions=True)

    async def _run(self) -> None:
        while not self._stop.is_set():
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=self._interval_s)
                break
            except asyncio.TimeoutError:
                pass
            self.tick()

    def tick(self) -> bool:
        """
        Start a pass unless one is in flight. Returns False when the tick was skipped.
        """
        if self._busy or (self._pass_task is not None and not self._pass_task.done()):
            self.skipped_ticks += 1
            logger.debug("trendlines: pass still running; skipping tick chart=%s", self.chart_id)
            return False
        self._pass_task = asyncio.get_running_loop().create_task(self.reconcile_once())
        return True

    async def reconcile_once(self) -> bool:
        """
        One poll/diff/persist pass. Returns False if skipped or failed.
        """
        if self._busy:
            self.skipped_ticks += 1
            return False
        self._busy = True
        try:
            async with self._write_lock:
                return await self._reconcile()
        finally:
            self._busy = False

    async def _reconcile(self) -> bool:
        try:
            raw = self._widget.get_trend_lines() or []
        except Exception:  # noqa: BLE001
            logger.warning("trendlines: reading widget state failed chart=%s", self.chart_id, exc_info=True)
            return False

        snapshot = normalize_trend_lines(raw)
        self._tombstones.intersection_update(line.id for line in snapshot)
        current = [line for line in snapshot if line.id not in self._tombstones]

        fingerprint = snapshot_fingerprint(current)
        if fingerprint == self._fingerprint:
            return True

        current_by_id = {line.id: line for line in current}
        upserts = [line for line in current if self._persisted.get(line.id) != line]
        deletes = [line_id for line_id in self._persisted if line_id not in current_by_id]
        try:
            for line in upserts:
                await self._repository.save_trend_line(self.layout_id, self.chart_id, line)
            for line_id in deletes:
                await self._repository.delete_trend_line(self.layout_id, self.chart_id, line_id)
        except RepositoryError as e:
            # Baseline kept; the next pass retries the whole diff.
            log_event(
                logger,
                "trendlines.reconcile_failed",
                severity="WARNING",
                chart_id=self.chart_id,
                code=e.code,
                error=repr(e.details),
            )
            return False

        self._persisted = current_by_id
        self._fingerprint = fingerprint
        log_event(
            logger,
            "trendlines.reconciled",
            chart_id=self.chart_id,
            lines=len(current),
            upserts=len(upserts),
            deletes=len(deletes),
        )
        return True

    def _on_widget_deleted(self, event: Any) -> None:
        trend_line_id = _event_trend_line_id(event)
        if trend_line_id is None:
            return
        task = asyncio.get_running_loop().create_task(self.delete_now(trend_line_id))
        self._delete_tasks.add(task)
        task.add_done_callback(self._delete_tasks.discard)

    async def delete_now(self, trend_line_id: str) -> None:
        """
        Persist an explicit widget deletion without waiting for the next tick.
        """
        async with self._write_lock:
            self._tombstones.add(trend_line_id)
            try:
                await self._repository.delete_trend_line(self.layout_id, self.chart_id, trend_line_id)
            except RepositoryError:
                # Left in the baseline so the next pass retries the delete.
                logger.warning("trendlines: immediate delete failed id=%s", trend_line_id, exc_info=True)
                return
            if self._persisted.pop(trend_line_id, None) is not None:
                self._fingerprint = snapshot_fingerprint(self._persisted.values())
            logger.info("trendlines: deleted %s chart=%s", trend_line_id, self.chart_id)
