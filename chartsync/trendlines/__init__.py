"""
Trend-line annotations: canonical model, normalization of widget output, and
the poll/diff/persist reconciler.
"""

from __future__ import annotations

from .models import TrendLine, TrendLinePoint, TrendLineStyle
from .normalize import normalize_trend_line, normalize_trend_lines
from .reconciler import TrendLineReconciler
from .widget import ChartWidget

__all__ = [
    "ChartWidget",
    "TrendLine",
    "TrendLinePoint",
    "TrendLineReconciler",
    "TrendLineStyle",
    "normalize_trend_line",
    "normalize_trend_lines",
]
