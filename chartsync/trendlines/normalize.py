"""
Normalization of raw trend lines read from the chart widget or from storage.

The widget hands back loosely-shaped objects (camelCase dicts, sometimes with a
nested `style`/`extend`/`text` block). Every field is extracted independently:
an unreadable field falls back to its default instead of discarding the line.
Only a line without a usable id is dropped.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Mapping, Optional, TypeVar

from .models import (
    DASH_STYLES,
    DEFAULT_COLOR,
    DEFAULT_WIDTH,
    TrendLine,
    TrendLinePoint,
    TrendLineStyle,
)

T = TypeVar("T")
logger = logging.getLogger(__name__)

_MISSING = object()


def _get(raw: Any, *names: str) -> Any:
    for name in names:
        if isinstance(raw, Mapping):
            if name in raw and raw[name] is not None:
                return raw[name]
        else:
            value = getattr(raw, name, None)
            if value is not None:
                return value
    return _MISSING


def _guarded(line_id: str, label: str, fn: Callable[[], T], default: T) -> T:
    try:
        return fn()
    except Exception as e:  # noqa: BLE001
        logger.debug("trend line %s: field %s unreadable (%r); using default", line_id, label, e)
        return default


def _finite(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("bool is not a number")
    f = float(value)
    if not math.isfinite(f):
        raise ValueError("not finite")
    return f


def _point(value: Any) -> TrendLinePoint:
    if value is _MISSING:
        raise KeyError("point missing")
    return TrendLinePoint(
        timestamp=_finite(_get(value, "timestamp", "time")),
        price=_finite(_get(value, "price", "value")),
    )


def _bool(value: Any) -> bool:
    if value is _MISSING:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    raise TypeError(f"not a bool: {value!r}")


def _opt_text(value: Any) -> Optional[str]:
    if value is _MISSING:
        return None
    if not isinstance(value, str):
        raise TypeError("text must be a string")
    return value


def _line_id(raw: Any) -> Optional[str]:
    try:
        value = _get(raw, "id", "trendLineId")
    except Exception:  # noqa: BLE001
        return None
    if value is _MISSING:
        return None
    s = str(value).strip()
    return s or None


def normalize_trend_line(raw: Any) -> Optional[TrendLine]:
    """
    Canonicalize one raw line. Returns None when the line has no usable id.
    """
    line_id = _line_id(raw)
    if line_id is None:
        logger.warning("skipping trend line without id")
        return None

    style_block = _guarded(line_id, "style", lambda: _get(raw, "style"), _MISSING)
    nested_style = style_block if isinstance(style_block, Mapping) else _MISSING
    extend_block = _guarded(line_id, "extend", lambda: _get(raw, "extend"), _MISSING)
    text_block = _guarded(line_id, "text", lambda: _get(raw, "text"), _MISSING)

    def _color() -> str:
        value = _get(raw, "color")
        if value is _MISSING and nested_style is not _MISSING:
            value = _get(nested_style, "color")
        if not isinstance(value, str) or not value.strip():
            raise ValueError("color missing")
        return value

    def _width() -> float:
        value = _get(raw, "lineWidth", "width")
        if value is _MISSING and nested_style is not _MISSING:
            value = _get(nested_style, "width", "lineWidth")
        w = _finite(value)
        if w <= 0:
            raise ValueError("width must be positive")
        return w

    def _dash() -> str:
        value = style_block
        if nested_style is not _MISSING:
            value = _get(nested_style, "dashStyle", "dash_style", "style")
        if value not in DASH_STYLES:
            raise ValueError(f"unknown dash style {value!r}")
        return value

    def _extend(side: str) -> bool:
        if isinstance(extend_block, Mapping):
            return _bool(_get(extend_block, side))
        return _bool(_get(raw, f"extend{side.capitalize()}"))

    def _text(field_name: str) -> Optional[str]:
        if isinstance(text_block, Mapping):
            return _opt_text(_get(text_block, field_name))
        if field_name == "name" and isinstance(text_block, str):
            return text_block
        return _opt_text(_get(raw, field_name))

    origin = TrendLinePoint(timestamp=0.0, price=0.0)
    start = _guarded(line_id, "startPoint", lambda: _point(_get(raw, "startPoint", "start")), origin)
    end = _guarded(line_id, "endPoint", lambda: _point(_get(raw, "endPoint", "end")), origin)

    return TrendLine(
        id=line_id,
        start_point=start,
        end_point=end,
        style=TrendLineStyle(
            color=_guarded(line_id, "color", _color, DEFAULT_COLOR),
            width=_guarded(line_id, "lineWidth", _width, DEFAULT_WIDTH),
            dash_style=_guarded(line_id, "style", _dash, "solid"),
        ),
        extend_left=_guarded(line_id, "extendLeft", lambda: _extend("left"), False),
        extend_right=_guarded(line_id, "extendRight", lambda: _extend("right"), False),
        name=_guarded(line_id, "name", lambda: _text("name"), None),
        description=_guarded(line_id, "description", lambda: _text("description"), None),
    )


def normalize_trend_lines(raw_lines: Any) -> list[TrendLine]:
    """
    Normalize a widget snapshot. Lines without ids are dropped; later duplicates of an id win.
    """
    if raw_lines is None:
        return []
    by_id: dict[str, TrendLine] = {}
    for raw in raw_lines:
        line = normalize_trend_line(raw)
        if line is not None:
            by_id[line.id] = line
    return list(by_id.values())
