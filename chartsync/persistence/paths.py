"""
Document paths used by the engine.

Layout:
  settings/{uid}                                                   user settings + activeLayoutId
  settings/{uid}/layouts/{layoutId}                                saved layouts
  settings/{uid}/layouts/{layoutId}/charts/{chartId}/trendLines/{trendLineId}
  exchanges/{exchangeId}/products/{productId}                      symbol catalog
  exchanges/{exchangeId}/products/{productId}/intervals/{granularity}
  subscriptions/{uid}                                              emulator-only billing mirror
"""

from __future__ import annotations


def _segment(name: str, value: str) -> str:
    s = str(value or "").strip()
    if not s:
        raise ValueError(f"{name} is required")
    if "/" in s:
        raise ValueError(f"{name} must not contain '/'")
    return s


def settings_doc(uid: str) -> str:
    return f"settings/{_segment('uid', uid)}"


def layouts_collection(uid: str) -> str:
    return f"{settings_doc(uid)}/layouts"


def layout_doc(uid: str, layout_id: str) -> str:
    return f"{layouts_collection(uid)}/{_segment('layout_id', layout_id)}"


def trend_lines_collection(uid: str, layout_id: str, chart_id: str) -> str:
    return f"{layout_doc(uid, layout_id)}/charts/{_segment('chart_id', chart_id)}/trendLines"


def trend_line_doc(uid: str, layout_id: str, chart_id: str, trend_line_id: str) -> str:
    return f"{trend_lines_collection(uid, layout_id, chart_id)}/{_segment('trend_line_id', trend_line_id)}"


def products_collection(exchange_id: str) -> str:
    return f"exchanges/{_segment('exchange_id', exchange_id)}/products"


def interval_doc(exchange_id: str, product_id: str, granularity: str) -> str:
    return (
        f"{products_collection(exchange_id)}/{_segment('product_id', product_id)}"
        f"/intervals/{_segment('granularity', granularity)}"
    )


def subscription_doc(uid: str) -> str:
    return f"subscriptions/{_segment('uid', uid)}"
