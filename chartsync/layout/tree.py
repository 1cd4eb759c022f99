"""
Structural helpers for the recursive layout tree.

All helpers are pure: they never mutate the input tree and return rebuilt
nodes instead (copy-on-write). Unchanged subtrees are shared with the input.

Invariants maintained here:
- a split never ends up with zero or one child (it collapses into the child)
- a layout root is never empty (a fresh default chart replaces it)
"""

from __future__ import annotations

import numbers
from dataclasses import replace
from typing import Any, Iterator, Mapping, Optional

from chartsync.errors import ValidationError

from .models import (
    SPLIT_DIRECTIONS,
    ChartConfig,
    ChartNode,
    LayoutNode,
    SplitNode,
    default_chart_node,
)


def find_chart_in_layout(node: LayoutNode, chart_id: str) -> Optional[ChartConfig]:
    """
    Depth-first search for the chart with `chart_id`. Returns the first match or None.
    """
    if isinstance(node, ChartNode):
        return node.chart if node.matches(chart_id) else None
    for child in node.children:
        found = find_chart_in_layout(child, chart_id)
        if found is not None:
            return found
    return None


def iter_charts(node: LayoutNode) -> Iterator[ChartConfig]:
    if isinstance(node, ChartNode):
        if node.chart is not None:
            yield node.chart
        return
    for child in node.children:
        yield from iter_charts(child)


def update_chart_in_layout(node: LayoutNode, chart_id: str, new_config: ChartConfig) -> LayoutNode:
    """
    Return a new tree with the matching leaf's chart replaced by `new_config`.
    """
    if isinstance(node, ChartNode):
        if node.matches(chart_id):
            return replace(node, chart=new_config, chart_id=None)
        return node
    children = tuple(update_chart_in_layout(child, chart_id, new_config) for child in node.children)
    if all(a is b for a, b in zip(children, node.children)):
        return node
    return replace(node, children=children)


def _rescale_sizes(sizes: Optional[tuple[float, ...]], keep: list[int]) -> Optional[tuple[float, ...]]:
    if sizes is None or not keep or max(keep) >= len(sizes):
        return None
    kept = [sizes[i] for i in keep]
    total_kept = sum(kept)
    if total_kept <= 0:
        return None
    scale = sum(sizes) / total_kept
    return tuple(s * scale for s in kept)


def remove_chart_from_layout(node: LayoutNode, chart_id: str) -> LayoutNode:
    """
    Remove the leaf holding `chart_id`.

    - A split left with one child collapses into that child.
    - A split left with no children (or a removed root leaf) becomes a fresh default chart.
    """
    if isinstance(node, ChartNode):
        return default_chart_node() if node.matches(chart_id) else node

    keep = [
        i
        for i, child in enumerate(node.children)
        if not (isinstance(child, ChartNode) and child.matches(chart_id))
    ]
    if not keep:
        return default_chart_node()
    if len(keep) == 1:
        return remove_chart_from_layout(node.children[keep[0]], chart_id)

    children = tuple(remove_chart_from_layout(node.children[i], chart_id) for i in keep)
    if len(keep) == len(node.children) and all(a is b for a, b in zip(children, node.children)):
        return node
    return replace(node, children=children, sizes=_rescale_sizes(node.sizes, keep))


def add_chart_to_layout(node: LayoutNode, chart_node: ChartNode) -> SplitNode:
    """
    Place `chart_node` next to the existing tree in a new horizontal 50/50 split.
    """
    return SplitNode(direction="horizontal", ratio=0.5, children=(node, chart_node))


def validate_layout_node(node: Any) -> None:
    """
    Recursively enforce the layout invariants.

    Accepts typed nodes (ChartNode/SplitNode) or raw document mappings. Raises
    ValidationError naming the violated constraint.
    """
    if isinstance(node, Mapping):
        _validate_mapping(node)
        return
    if isinstance(node, SplitNode):
        _validate_split(node.direction, node.ratio, node.children)
        for child in node.children:
            validate_layout_node(child)
        return
    if isinstance(node, ChartNode):
        if not isinstance(node.id, str) or not node.id.strip():
            raise ValidationError("Chart node must have a valid ID")
        return
    raise ValidationError("Invalid layout node type")


def _validate_split(direction: Any, ratio: Any, children: Any) -> None:
    if direction not in SPLIT_DIRECTIONS:
        raise ValidationError("Invalid split direction")
    if isinstance(ratio, bool) or not isinstance(ratio, numbers.Real) or not (0.0 <= float(ratio) <= 1.0):
        raise ValidationError("Invalid split ratio")
    if not isinstance(children, (list, tuple)) or len(children) == 0:
        raise ValidationError("Split node must have children")


def _validate_mapping(node: Mapping[str, Any]) -> None:
    node_type = node.get("type")
    if node_type == "split":
        children = node.get("children")
        _validate_split(node.get("direction"), node.get("ratio"), children)
        for child in children:
            validate_layout_node(child)
    elif node_type == "chart":
        node_id = node.get("id")
        if not isinstance(node_id, str) or not node_id.strip():
            raise ValidationError("Chart node must have a valid ID")
    else:
        raise ValidationError("Invalid layout node type")


def _clamp_ratio(value: Any) -> float:
    try:
        r = float(value)
    except (TypeError, ValueError):
        return 0.5
    if r != r:  # NaN
        return 0.5
    return min(1.0, max(0.0, r))


def layout_node_from_dict(data: Mapping[str, Any]) -> LayoutNode:
    """
    Build a typed tree from a stored layout document. Split ratios are clamped to [0, 1].
    """
    if not isinstance(data, Mapping):
        raise ValidationError("Invalid layout node type")
    node_type = data.get("type")
    if node_type == "chart":
        chart_raw = data.get("chart")
        chart = ChartConfig.from_firestore(chart_raw) if isinstance(chart_raw, Mapping) else None
        size = data.get("size")
        return ChartNode(
            id=str(data.get("id") or "").strip(),
            chart=chart,
            chart_id=data.get("chartId"),
            size=float(size) if isinstance(size, numbers.Real) else None,
        )
    if node_type == "split":
        direction = data.get("direction")
        if direction not in SPLIT_DIRECTIONS:
            raise ValidationError("Invalid split direction")
        children_raw = data.get("children") or []
        if not children_raw:
            raise ValidationError("Split node must have children")
        sizes = data.get("sizes")
        kwargs: dict[str, Any] = {}
        if data.get("id"):
            kwargs["id"] = str(data["id"])
        return SplitNode(
            direction=direction,
            ratio=_clamp_ratio(data.get("ratio", 0.5)),
            children=tuple(layout_node_from_dict(c) for c in children_raw),
            sizes=tuple(sizes) if isinstance(sizes, (list, tuple)) else None,
            **kwargs,
        )
    raise ValidationError("Invalid layout node type")


def layout_node_to_dict(node: LayoutNode) -> dict[str, Any]:
    if isinstance(node, ChartNode):
        doc: dict[str, Any] = {"type": "chart", "id": node.id}
        if node.chart is not None:
            doc["chart"] = node.chart.to_firestore()
        if node.chart_id is not None:
            doc["chartId"] = node.chart_id
        if node.size is not None:
            doc["size"] = node.size
        return doc
    doc = {
        "type": "split",
        "id": node.id,
        "direction": node.direction,
        "ratio": node.ratio,
        "children": [layout_node_to_dict(c) for c in node.children],
    }
    if node.sizes is not None:
        doc["sizes"] = list(node.sizes)
    return doc
