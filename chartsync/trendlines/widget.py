from __future__ import annotations

from typing import Any, Callable, Mapping, Protocol, Sequence, runtime_checkable

EVENT_READY = "ready"
EVENT_SYMBOL_CHANGE = "symbolChange"
EVENT_INDICATOR_CHANGE = "indicatorChange"
EVENT_TREND_LINE_SELECTED = "trend-line-selected"
EVENT_TREND_LINE_DESELECTED = "trend-line-deselected"
EVENT_TREND_LINE_DELETED = "trend-line-deleted"

WidgetEventCallback = Callable[[Any], None]


@runtime_checkable
class ChartWidget(Protocol):
    """
    Capabilities of the embedded charting widget.

    The widget owns the live annotation state; it exposes no per-line change
    events beyond deletion, so trend lines are reconciled by polling
    `get_trend_lines()`.
    """

    async def set_symbol(self, symbol: str) -> None: ...

    async def set_granularity(self, granularity: str) -> None: ...

    def show_indicator(self, indicator_id: str) -> None: ...

    def hide_indicator(self, indicator_id: str) -> None: ...

    def add_trend_line(self, trend_line: Mapping[str, Any]) -> str: ...

    def remove_trend_line(self, trend_line_id: str) -> None: ...

    def get_trend_lines(self) -> Sequence[Any]: ...

    def on(self, event: str, callback: WidgetEventCallback) -> Callable[[], None]: ...
