from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar

from chartsync.common.config import EngineConfig
from chartsync.common.ids import generate_id
from chartsync.common.logging import log_event
from chartsync.common.timeutils import parse_timestamp, utc_now
from chartsync.errors import NotFoundError, NotInitializedError, RepositoryError, ValidationError
from chartsync.layout import (
    ChartConfig,
    Granularity,
    LayoutNode,
    find_chart_in_layout,
    iter_charts,
    layout_node_from_dict,
    layout_node_to_dict,
    remove_chart_from_layout,
    update_chart_in_layout,
    validate_layout_node,
)
from chartsync.persistence import paths
from chartsync.persistence.interfaces import DocumentChange, DocumentStore, ErrorListener, Unsubscribe
from chartsync.trendlines.models import TrendLine
from chartsync.trendlines.normalize import normalize_trend_line

from .models import Candle, Layout, RepositoryEvent, RepositoryEventType, Symbol, UserSettings
from .sync_queue import SyncQueue

T = TypeVar("T")
logger = logging.getLogger(__name__)

RepositoryEventCallback = Callable[[RepositoryEvent], None]

_MUTABLE_LAYOUT_FIELDS = frozenset({"name", "root", "starred_symbols", "show_ai_assistant"})
_IMMUTABLE_LAYOUT_FIELDS = frozenset({"id", "owner_id", "created_at", "updated_at", "version"})
_MUTABLE_CHART_FIELDS = frozenset({"symbol", "granularity", "indicators", "title"})
_MUTABLE_SETTINGS_FIELDS = frozenset(
    {"theme", "default_granularity", "default_symbol", "active_layout_id", "preferences"}
)

SYMBOL_ACTIVITY_WINDOW = timedelta(hours=24)


def _reject_unknown(kind: str, changes: Mapping[str, Any], allowed: frozenset[str]) -> None:
    unknown = sorted(set(changes) - allowed)
    if unknown:
        raise ValidationError(f"Unknown {kind} field(s): {', '.join(unknown)}")


class Repository:
    """
    Per-user cache + persistence for layouts, charts, symbols, settings and trend lines.

    Reads are served from in-memory caches populated by `initialize()` and kept
    current by realtime listeners. Layout/settings writes are applied to the cache
    first and flushed through an ordered SyncQueue; trend-line writes go straight
    to the store.
    """

    def __init__(
        self,
        uid: str,
        store: DocumentStore,
        *,
        config: Optional[EngineConfig] = None,
    ) -> None:
        uid = (uid or "").strip()
        if not uid:
            raise ValueError("uid is required")
        if "/" in uid:
            raise ValueError("uid must not contain '/'")
        self.uid = uid
        self._store = store
        self._config = config or EngineConfig()
        self._queue = self._new_queue()

        self._layouts: dict[str, Layout] = {}
        self._charts: dict[str, ChartConfig] = {}
        self._chart_index: dict[str, str] = {}
        self._symbols: dict[str, Symbol] = {}
        self._candles: dict[str, Candle] = {}
        self._settings: Optional[UserSettings] = None

        self._event_callbacks: list[RepositoryEventCallback] = []
        self._unsubscribes: list[Unsubscribe] = []
        self._initialized = False
        self._init_task: Optional[asyncio.Task[None]] = None
        # Bumped by destroy(); async results from an older generation are discarded.
        self._generation = 0

    def _new_queue(self) -> SyncQueue:
        return SyncQueue(
            delay_s=self._config.sync_delay_s,
            max_attempts=self._config.sync_max_attempts,
            max_retry_delay_s=self._config.sync_retry_max_delay_s,
            timeout_s=self._config.request_timeout_s,
        )

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def pending_writes(self) -> int:
        return len(self._queue)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            raise NotInitializedError()

    async def _remote(self, aw: Awaitable[T]) -> T:
        return await asyncio.wait_for(aw, timeout=self._config.request_timeout_s)

    # --- lifecycle ---

    async def initialize(self) -> None:
        """
        Load layouts, symbols and settings, then install realtime listeners.

        Idempotent; concurrent callers share the same initialization.
        """
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.get_running_loop().create_task(self._initialize(self._generation))
        await asyncio.shield(self._init_task)

    async def _initialize(self, generation: int) -> None:
        try:
            await asyncio.gather(self._load_layouts(generation), self._load_symbols(generation), self._load_settings(generation))
            if generation != self._generation:
                return
            self._setup_realtime_listeners(generation)
        except Exception as e:
            if generation == self._generation:
                self._init_task = None
            log_event(logger, "repository.init_failed", severity="ERROR", uid=self.uid, error=repr(e))
            raise RepositoryError("Failed to initialize repository", "INIT_ERROR", e) from e

        self._initialized = True
        log_event(
            logger,
            "repository.initialized",
            uid=self.uid,
            layouts=len(self._layouts),
            charts=len(self._charts),
            symbols=len(self._symbols),
        )

    def destroy(self) -> None:
        """
        Unsubscribe listeners, cancel pending drains and clear every cache. Idempotent.
        """
        self._generation += 1
        for unsubscribe in self._unsubscribes:
            try:
                unsubscribe()
            except Exception:  # noqa: BLE001
                logger.warning("repository: unsubscribe failed uid=%s", self.uid, exc_info=True)
        self._unsubscribes = []
        if self._init_task is not None and not self._init_task.done():
            self._init_task.cancel()
        self._init_task = None
        self._queue.close()
        self._queue = self._new_queue()
        self._event_callbacks = []
        self._layouts.clear()
        self._charts.clear()
        self._chart_index.clear()
        self._symbols.clear()
        self._candles.clear()
        self._settings = None
        self._initialized = False

    # --- loaders ---

    def _layout_from_doc(self, layout_id: str, data: Mapping[str, Any]) -> Optional[Layout]:
        try:
            return Layout.from_firestore(layout_id, data)
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning("repository: skipping malformed layout %s: %s", layout_id, e)
            return None

    async def _load_layouts(self, generation: int) -> None:
        try:
            docs = await self._remote(self._store.list_documents(paths.layouts_collection(self.uid)))
        except Exception:
            logger.exception("repository: failed to load layouts uid=%s", self.uid)
            return
        if generation != self._generation:
            return
        for doc_id, data in docs:
            layout = self._layout_from_doc(doc_id, data)
            if layout is not None:
                self._cache_layout(layout)
        logger.info("repository: loaded %d layouts (%d charts)", len(self._layouts), len(self._charts))

    async def _load_symbols(self, generation: int) -> None:
        for exchange_id in self._config.known_exchanges:
            try:
                docs = await self._remote(self._store.list_documents(paths.products_collection(exchange_id)))
            except Exception:
                logger.exception("repository: failed to load products exchange=%s", exchange_id)
                continue
            if not docs:
                logger.warning("repository: no products found exchange=%s", exchange_id)
                continue

            actives = await asyncio.gather(*(self._probe_symbol_activity(exchange_id, pid) for pid, _ in docs))
            if generation != self._generation:
                return
            active_count = 0
            for (product_id, data), active in zip(docs, actives):
                symbol = Symbol.from_firestore(exchange_id, product_id, data, active=active)
                self._symbols[symbol.key] = symbol
                active_count += int(symbol.active)
            logger.info(
                "repository: exchange=%s symbols=%d active=%d", exchange_id, len(docs), active_count
            )

    async def _probe_symbol_activity(self, exchange_id: str, product_id: str) -> bool:
        """
        A product is active when its ONE_HOUR candle moved within the last 24h
        (or, without lastUpdate, when the candle carries OHLC values). Errors mean inactive.
        """
        try:
            data = await self._remote(
                self._store.get_document(paths.interval_doc(exchange_id, product_id, Granularity.ONE_HOUR.value))
            )
            if data is None:
                return False
            last_update = data.get("lastUpdate")
            if last_update is not None:
                return parse_timestamp(last_update) > utc_now() - SYMBOL_ACTIVITY_WINDOW
            return all(data.get(k) for k in ("open", "high", "low", "close"))
        except Exception as e:  # noqa: BLE001
            logger.debug("repository: activity probe failed %s:%s (%r)", exchange_id, product_id, e)
            return False

    async def _load_settings(self, generation: int) -> None:
        try:
            data = await self._remote(self._store.get_document(paths.settings_doc(self.uid)))
        except Exception:
            logger.exception("repository: failed to load settings uid=%s", self.uid)
            return
        if generation != self._generation:
            return
        self._settings = self._settings_from_doc(data)

    def _settings_from_doc(self, data: Optional[Mapping[str, Any]]) -> UserSettings:
        if data is None:
            return UserSettings(user_id=self.uid)
        try:
            return UserSettings.from_firestore(self.uid, data)
        except (ValidationError, ValueError, TypeError) as e:
            logger.warning("repository: malformed settings uid=%s: %s; using defaults", self.uid, e)
            return UserSettings(user_id=self.uid)

    # --- realtime listeners ---

    def _listener_error(self, listener: str) -> ErrorListener:
        def _on_error(exc: BaseException) -> None:
            log_event(logger, "repository.listener_error", severity="ERROR", listener=listener, error=repr(exc))

        return _on_error

    def _setup_realtime_listeners(self, generation: int) -> None:
        def _on_layouts(changes: list[DocumentChange]) -> None:
            if generation != self._generation:
                return
            self._apply_layout_changes(changes)

        def _on_settings(data: Optional[dict[str, Any]]) -> None:
            if generation != self._generation or data is None:
                return
            self._settings = self._settings_from_doc(data)

        self._unsubscribes.append(
            self._store.watch_collection(paths.layouts_collection(self.uid), _on_layouts, self._listener_error("layouts"))
        )
        self._unsubscribes.append(
            self._store.watch_document(paths.settings_doc(self.uid), _on_settings, self._listener_error("settings"))
        )

    def _apply_layout_changes(self, changes: Iterable[DocumentChange]) -> None:
        for change in changes:
            if change.type == "removed":
                self._uncache_layout(change.doc_id)
                continue
            layout = self._layout_from_doc(change.doc_id, change.data)
            if layout is not None:
                self._cache_layout(layout)

    # --- cache maintenance ---

    def _cache_layout(self, layout: Layout) -> None:
        self._drop_chart_index(layout.id)
        self._layouts[layout.id] = layout
        for chart in iter_charts(layout.root):
            self._charts[chart.id] = chart
            self._chart_index[chart.id] = layout.id

    def _uncache_layout(self, layout_id: str) -> Optional[Layout]:
        self._drop_chart_index(layout_id)
        return self._layouts.pop(layout_id, None)

    def _drop_chart_index(self, layout_id: str) -> None:
        stale = [cid for cid, lid in self._chart_index.items() if lid == layout_id]
        for chart_id in stale:
            del self._chart_index[chart_id]
            self._charts.pop(chart_id, None)

    def _locate_chart(self, chart_id: str, layout_hint: Optional[str]) -> Optional[tuple[Layout, ChartConfig]]:
        for layout_id in (layout_hint, self._chart_index.get(chart_id)):
            layout = self._layouts.get(layout_id) if layout_id else None
            if layout is None:
                continue
            chart = find_chart_in_layout(layout.root, chart_id)
            if chart is not None:
                return layout, chart
        for layout in self._layouts.values():
            chart = find_chart_in_layout(layout.root, chart_id)
            if chart is not None:
                return layout, chart
        return None

    # --- events ---

    def add_event_listener(self, callback: RepositoryEventCallback) -> Unsubscribe:
        self._event_callbacks.append(callback)

        def _unsubscribe() -> None:
            if callback in self._event_callbacks:
                self._event_callbacks.remove(callback)

        return _unsubscribe

    def _emit(self, event_type: RepositoryEventType, data: Any) -> None:
        event = RepositoryEvent(type=event_type, data=data)
        for callback in list(self._event_callbacks):
            try:
                callback(event)
            except Exception:  # noqa: BLE001
                logger.exception("repository: event callback failed type=%s", event_type)

    # --- layouts ---

    def get_layouts(self) -> list[Layout]:
        self._ensure_initialized()
        return list(self._layouts.values())

    def get_layout(self, layout_id: str) -> Optional[Layout]:
        self._ensure_initialized()
        return self._layouts.get(layout_id)

    @staticmethod
    def _coerce_root(root: Any) -> LayoutNode:
        if root is None:
            raise ValidationError("Layout structure is required")
        validate_layout_node(root)
        if isinstance(root, Mapping):
            return layout_node_from_dict(root)
        return root

    @staticmethod
    def _validate_layout(layout: Layout) -> None:
        if not isinstance(layout.name, str) or not layout.name.strip():
            raise ValidationError("Layout name is required")
        if layout.root is None:
            raise ValidationError("Layout structure is required")
        validate_layout_node(layout.root)

    async def save_layout(
        self,
        *,
        name: str,
        root: Any,
        starred_symbols: Iterable[str] = (),
        show_ai_assistant: Optional[bool] = None,
    ) -> Layout:
        """
        Create a layout owned by this user. The cache is updated before the remote write.
        """
        self._ensure_initialized()
        now = utc_now()
        layout = Layout(
            id=generate_id(),
            name=name,
            owner_id=self.uid,
            root=self._coerce_root(root),
            created_at=now,
            updated_at=now,
            starred_symbols=tuple(starred_symbols or ()),
            show_ai_assistant=show_ai_assistant,
        )
        self._validate_layout(layout)
        self._cache_layout(layout)

        path = paths.layout_doc(self.uid, layout.id)
        doc = layout.to_firestore()
        self._queue.queue_sync(lambda: self._store.set_document(path, doc), label=f"save_layout:{layout.id}")
        self._emit("layout_saved", layout)
        return layout

    async def update_layout(self, layout_id: str, **changes: Any) -> Layout:
        """
        Merge `changes` onto the cached layout and queue a patch of just those fields.

        Accepted fields: name, root, starred_symbols, show_ai_assistant.
        id/owner_id/created_at are ignored.
        """
        self._ensure_initialized()
        existing = self._layouts.get(layout_id)
        if existing is None:
            raise NotFoundError("Layout not found", {"layout_id": layout_id})
        for key in _IMMUTABLE_LAYOUT_FIELDS & set(changes):
            changes.pop(key)
        _reject_unknown("layout", changes, _MUTABLE_LAYOUT_FIELDS)
        if "root" in changes:
            changes["root"] = self._coerce_root(changes["root"])
        if "starred_symbols" in changes:
            changes["starred_symbols"] = tuple(changes["starred_symbols"] or ())

        updated = replace(existing, **changes, updated_at=utc_now(), version=existing.version + 1)
        self._validate_layout(updated)
        self._cache_layout(updated)

        patch: dict[str, Any] = {"updatedAt": updated.updated_at, "version": updated.version}
        if "name" in changes:
            patch["name"] = updated.name
        if "root" in changes:
            patch["layout"] = layout_node_to_dict(updated.root)
        if "starred_symbols" in changes:
            patch["starredSymbols"] = list(updated.starred_symbols)
        if "show_ai_assistant" in changes:
            patch["showAIAssistant"] = updated.show_ai_assistant

        path = paths.layout_doc(self.uid, layout_id)
        self._queue.queue_sync(lambda: self._store.update_document(path, patch), label=f"update_layout:{layout_id}")
        self._emit("layout_updated", updated)
        return updated

    async def delete_layout(self, layout_id: str) -> None:
        self._ensure_initialized()
        if self._uncache_layout(layout_id) is None:
            raise NotFoundError("Layout not found", {"layout_id": layout_id})

        path = paths.layout_doc(self.uid, layout_id)
        self._queue.queue_sync(lambda: self._store.delete_document(path), label=f"delete_layout:{layout_id}")
        self._emit("layout_deleted", {"layout_id": layout_id})

    def get_layout_starred_symbols(self, layout_id: str) -> list[str]:
        self._ensure_initialized()
        layout = self._layouts.get(layout_id)
        return list(layout.starred_symbols) if layout is not None else []

    async def update_layout_starred_symbols(self, layout_id: str, symbols: Iterable[str]) -> Layout:
        self._ensure_initialized()
        if layout_id not in self._layouts:
            raise NotFoundError("Layout not found", {"layout_id": layout_id})
        return await self.update_layout(layout_id, starred_symbols=tuple(symbols))

    # --- charts (embedded in layouts) ---

    @staticmethod
    def _validate_chart(chart: ChartConfig) -> None:
        if not isinstance(chart.symbol, str) or not chart.symbol.strip():
            raise ValidationError("Chart symbol is required")
        if chart.granularity is None:
            raise ValidationError("Chart granularity is required")

    def get_chart(self, chart_id: str, layout_id: Optional[str] = None) -> Optional[ChartConfig]:
        self._ensure_initialized()
        cached = self._charts.get(chart_id)
        if cached is not None:
            return cached
        located = self._locate_chart(chart_id, layout_id)
        return located[1] if located is not None else None

    async def save_chart(
        self,
        layout_id: str,
        *,
        symbol: str,
        granularity: Any = Granularity.ONE_HOUR,
        indicators: Iterable[str] = (),
        title: Optional[str] = None,
    ) -> ChartConfig:
        """
        Register a free-standing chart config. Charts are persisted as part of a
        layout tree, so this only validates and caches it.
        """
        self._ensure_initialized()
        chart = ChartConfig(
            id=generate_id(),
            symbol=symbol,
            granularity=granularity,
            indicators=tuple(indicators or ()),
            title=title,
        )
        self._validate_chart(chart)
        self._charts[chart.id] = chart
        logger.debug("repository: cached chart %s for layout %s", chart.id, layout_id)
        self._emit("chart_updated", chart)
        return chart

    async def update_chart(self, chart_id: str, layout_id: Optional[str] = None, **changes: Any) -> ChartConfig:
        self._ensure_initialized()
        located = self._locate_chart(chart_id, layout_id)
        if located is None:
            raise NotFoundError("Chart not found", {"chart_id": chart_id, "layout_id": layout_id})
        layout, existing = located

        changes.pop("id", None)
        _reject_unknown("chart", changes, _MUTABLE_CHART_FIELDS)
        if "indicators" in changes:
            changes["indicators"] = tuple(changes["indicators"] or ())
        updated = replace(existing, **changes)
        self._validate_chart(updated)

        await self.update_layout(layout.id, root=update_chart_in_layout(layout.root, chart_id, updated))
        self._charts[updated.id] = updated
        self._emit("chart_updated", updated)
        return updated

    async def delete_chart(self, chart_id: str, layout_id: Optional[str] = None) -> Layout:
        self._ensure_initialized()
        located = self._locate_chart(chart_id, layout_id)
        if located is None:
            raise NotFoundError("Chart not found", {"chart_id": chart_id, "layout_id": layout_id})
        layout, _chart = located
        updated = await self.update_layout(layout.id, root=remove_chart_from_layout(layout.root, chart_id))
        self._charts.pop(chart_id, None)
        return updated

    # --- symbols & candles ---

    def get_symbols(self) -> list[Symbol]:
        self._ensure_initialized()
        return list(self._symbols.values())

    def get_active_symbols(self) -> list[Symbol]:
        self._ensure_initialized()
        return [s for s in self._symbols.values() if s.active]

    def get_symbol(self, exchange_id: str, symbol: str) -> Optional[Symbol]:
        self._ensure_initialized()
        return self._symbols.get(f"{exchange_id}:{symbol}")

    def get_candle(self, exchange_id: str, symbol: str, granularity: Any) -> Optional[Candle]:
        self._ensure_initialized()
        return self._candles.get(f"{exchange_id}:{symbol}:{Granularity.parse(granularity).value}")

    def subscribe_to_candle(
        self,
        exchange_id: str,
        symbol: str,
        granularity: Any,
        callback: Callable[[Candle], None],
    ) -> Unsubscribe:
        """
        Watch the live interval document; every snapshot updates the candle cache
        and is handed to `callback`.
        """
        self._ensure_initialized()
        g = Granularity.parse(granularity)
        key = f"{exchange_id}:{symbol}:{g.value}"
        generation = self._generation

        def _on_snapshot(data: Optional[dict[str, Any]]) -> None:
            if generation != self._generation or data is None:
                return
            candle = Candle.from_firestore(data)
            self._candles[key] = candle
            try:
                callback(candle)
            except Exception:  # noqa: BLE001
                logger.exception("repository: candle callback failed key=%s", key)

        unsubscribe = self._store.watch_document(
            paths.interval_doc(exchange_id, symbol, g.value),
            _on_snapshot,
            self._listener_error(f"candle:{key}"),
        )
        self._unsubscribes.append(unsubscribe)
        return unsubscribe

    # --- settings ---

    def get_settings(self) -> Optional[UserSettings]:
        self._ensure_initialized()
        return self._settings

    async def update_settings(self, **changes: Any) -> UserSettings:
        self._ensure_initialized()
        changes.pop("user_id", None)
        _reject_unknown("settings", changes, _MUTABLE_SETTINGS_FIELDS)
        base = self._settings or UserSettings(user_id=self.uid)
        updated = replace(base, **changes)
        self._settings = updated

        path = paths.settings_doc(self.uid)
        doc = updated.to_firestore()
        self._queue.queue_sync(lambda: self._store.set_document(path, doc, merge=True), label="update_settings")
        self._emit("settings_updated", updated)
        return updated

    async def set_active_layout(self, layout_id: Optional[str]) -> UserSettings:
        settings = await self.update_settings(active_layout_id=layout_id)
        logger.info("repository: active layout set to %s", layout_id)
        return settings

    # --- trend lines (direct write-through) ---

    async def get_trend_lines(self, layout_id: str, chart_id: str) -> list[TrendLine]:
        self._ensure_initialized()
        try:
            docs = await self._remote(
                self._store.list_documents(paths.trend_lines_collection(self.uid, layout_id, chart_id))
            )
        except Exception as e:
            logger.exception("repository: failed to get trend lines chart=%s", chart_id)
            raise RepositoryError("Failed to get trend lines", "TRENDLINE_FETCH_ERROR", e) from e
        lines: list[TrendLine] = []
        for doc_id, data in docs:
            line = normalize_trend_line({**data, "id": doc_id})
            if line is not None:
                lines.append(line)
        return lines

    async def save_trend_line(self, layout_id: str, chart_id: str, trend_line: TrendLine) -> None:
        self._ensure_initialized()
        try:
            path = paths.trend_line_doc(self.uid, layout_id, chart_id, trend_line.id)
            await self._remote(self._store.set_document(path, trend_line.to_firestore()))
        except Exception as e:
            logger.exception("repository: failed to save trend line %s", trend_line.id)
            raise RepositoryError("Failed to save trend line", "TRENDLINE_SAVE_ERROR", e) from e

    async def update_trend_line(
        self, layout_id: str, chart_id: str, trend_line_id: str, updates: Mapping[str, Any]
    ) -> None:
        self._ensure_initialized()
        try:
            path = paths.trend_line_doc(self.uid, layout_id, chart_id, trend_line_id)
            await self._remote(self._store.update_document(path, dict(updates)))
        except Exception as e:
            logger.exception("repository: failed to update trend line %s", trend_line_id)
            raise RepositoryError("Failed to update trend line", "TRENDLINE_UPDATE_ERROR", e) from e

    async def delete_trend_line(self, layout_id: str, chart_id: str, trend_line_id: str) -> None:
        self._ensure_initialized()
        try:
            path = paths.trend_line_doc(self.uid, layout_id, chart_id, trend_line_id)
            await self._remote(self._store.delete_document(path))
        except Exception as e:
            logger.exception("repository: failed to delete trend line %s", trend_line_id)
            raise RepositoryError("Failed to delete trend line", "TRENDLINE_DELETE_ERROR", e) from e

    # --- sync ---

    async def sync(self) -> None:
        """
        Drain pending writes now. Raises NetworkError if a write fails.
        """
        await self._queue.sync()

    async def flush(self) -> None:
        """
        Let any scheduled drain finish, then drain the rest. Raises NetworkError on failure.
        """
        await self._queue.flush()

    def is_online(self) -> bool:
        return self._queue.is_online

    def set_online(self, online: bool) -> None:
        self._queue.set_online(online)
