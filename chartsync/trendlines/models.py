from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Optional

DashStyle = Literal["solid", "dashed", "dotted"]
DASH_STYLES: tuple[str, ...] = ("solid", "dashed", "dotted")

DEFAULT_COLOR = "#2962ff"
DEFAULT_WIDTH = 2.0


@dataclass(frozen=True, slots=True)
class TrendLinePoint:
    timestamp: float
    price: float

    def to_firestore(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "price": self.price}


@dataclass(frozen=True, slots=True)
class TrendLineStyle:
    color: str = DEFAULT_COLOR
    width: float = DEFAULT_WIDTH
    dash_style: DashStyle = "solid"


@dataclass(frozen=True, slots=True)
class TrendLine:
    """
    A user-drawn annotation on one chart.

    Firestore path:
      settings/{uid}/layouts/{layout_id}/charts/{chart_id}/trendLines/{id}

    Stored flat (color/lineWidth/style next to the points), the shape the chart
    widget reads back on load.
    """

    id: str
    start_point: TrendLinePoint
    end_point: TrendLinePoint
    style: TrendLineStyle = field(default_factory=TrendLineStyle)
    extend_left: bool = False
    extend_right: bool = False
    name: Optional[str] = None
    description: Optional[str] = None

    def to_firestore(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "id": self.id,
            "startPoint": self.start_point.to_firestore(),
            "endPoint": self.end_point.to_firestore(),
            "color": self.style.color,
            "lineWidth": self.style.width,
            "style": self.style.dash_style,
            "extendLeft": self.extend_left,
            "extendRight": self.extend_right,
        }
        if self.name is not None:
            doc["name"] = self.name
        if self.description is not None:
            doc["description"] = self.description
        return doc
