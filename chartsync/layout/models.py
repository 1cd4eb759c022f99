from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Mapping, Optional, Union

from chartsync.common.ids import generate_id
from chartsync.errors import ValidationError

SplitDirection = Literal["horizontal", "vertical"]
SPLIT_DIRECTIONS: tuple[str, ...] = ("horizontal", "vertical")

DEFAULT_SYMBOL = "BTC-USD"


class Granularity(str, Enum):
    ONE_MINUTE = "ONE_MINUTE"
    FIVE_MINUTE = "FIVE_MINUTE"
    FIFTEEN_MINUTE = "FIFTEEN_MINUTE"
    ONE_HOUR = "ONE_HOUR"
    SIX_HOUR = "SIX_HOUR"
    ONE_DAY = "ONE_DAY"

    @classmethod
    def parse(cls, value: Any) -> "Granularity":
        if isinstance(value, cls):
            return value
        s = str(value or "").strip().upper()
        try:
            return cls(s)
        except ValueError:
            raise ValidationError(f"Invalid chart granularity: {value!r}") from None


DEFAULT_GRANULARITY = Granularity.ONE_HOUR


@dataclass(frozen=True, slots=True)
class ChartConfig:
    """
    Configuration of one chart panel.

    Embedded in layout documents under the chart leaf:
      settings/{uid}/layouts/{layoutId} -> layout.<...>.chart
    """

    id: str
    symbol: str
    granularity: Granularity = DEFAULT_GRANULARITY
    indicators: tuple[str, ...] = ()
    title: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "granularity", Granularity.parse(self.granularity))
        object.__setattr__(self, "indicators", tuple(str(i) for i in (self.indicators or ()) if str(i).strip()))

    def to_firestore(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "symbol": self.symbol,
            "granularity": self.granularity.value,
            "indicators": list(self.indicators),
        }
        if self.title is not None:
            doc["title"] = self.title
        return doc

    @staticmethod
    def from_firestore(data: Mapping[str, Any]) -> "ChartConfig":
        d = dict(data or {})
        return ChartConfig(
            id=str(d.get("id") or "").strip(),
            symbol=str(d.get("symbol") or "").strip(),
            granularity=d.get("granularity") or DEFAULT_GRANULARITY,
            indicators=tuple(d.get("indicators") or ()),
            title=d.get("title"),
        )


@dataclass(frozen=True, slots=True)
class ChartNode:
    """
    Leaf node holding one chart's configuration.

    `chart_id` is the deprecated pre-embedding reference; it is still honored when
    matching by chart id and dropped whenever the leaf is rebuilt.
    """

    id: str
    chart: Optional[ChartConfig] = None
    chart_id: Optional[str] = None
    size: Optional[float] = None

    def matches(self, chart_id: str) -> bool:
        if self.chart is None:
            return False
        return self.chart.id == chart_id or self.chart_id == chart_id


@dataclass(frozen=True, slots=True)
class SplitNode:
    """
    Container node dividing space between its children along an axis.
    """

    direction: SplitDirection
    children: tuple["LayoutNode", ...]
    ratio: float = 0.5
    sizes: Optional[tuple[float, ...]] = None
    id: str = field(default_factory=generate_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", tuple(self.children or ()))
        if self.sizes is not None:
            object.__setattr__(self, "sizes", tuple(float(s) for s in self.sizes))


LayoutNode = Union[ChartNode, SplitNode]


def default_chart_config() -> ChartConfig:
    return ChartConfig(id=generate_id(), symbol=DEFAULT_SYMBOL, granularity=DEFAULT_GRANULARITY)


def default_chart_node() -> ChartNode:
    """
    Fresh single-chart root used whenever a layout would otherwise become empty.
    """
    return ChartNode(id=generate_id(), chart=default_chart_config())
