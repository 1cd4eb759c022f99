"""
Recursive layout tree (split/chart panels) with validation and copy-on-write updates.
"""

from __future__ import annotations

from .models import (
    ChartConfig,
    ChartNode,
    Granularity,
    LayoutNode,
    SplitNode,
    default_chart_config,
    default_chart_node,
)
from .tree import (
    add_chart_to_layout,
    find_chart_in_layout,
    iter_charts,
    layout_node_from_dict,
    layout_node_to_dict,
    remove_chart_from_layout,
    update_chart_in_layout,
    validate_layout_node,
)

__all__ = [
    "ChartConfig",
    "ChartNode",
    "SplitNode",
    "LayoutNode",
    "Granularity",
    "default_chart_config",
    "default_chart_node",
    "find_chart_in_layout",
    "iter_charts",
    "update_chart_in_layout",
    "remove_chart_from_layout",
    "add_chart_to_layout",
    "validate_layout_node",
    "layout_node_from_dict",
    "layout_node_to_dict",
]
