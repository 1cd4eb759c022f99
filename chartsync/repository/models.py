from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Literal, Mapping, Optional

from chartsync.common.timeutils import ensure_aware_utc, parse_optional_timestamp, utc_now
from chartsync.layout import Granularity, LayoutNode, layout_node_from_dict, layout_node_to_dict
from chartsync.layout.models import DEFAULT_GRANULARITY, DEFAULT_SYMBOL

Theme = Literal["light", "dark"]
RepositoryEventType = Literal[
    "layout_saved",
    "layout_updated",
    "layout_deleted",
    "chart_updated",
    "symbol_updated",
    "settings_updated",
]


def _dedupe(values: Iterable[Any]) -> tuple[str, ...]:
    out: list[str] = []
    seen: set[str] = set()
    for v in values or ():
        s = str(v).strip()
        if not s or s in seen:
            continue
        seen.add(s)
        out.append(s)
    return tuple(out)


@dataclass(frozen=True, slots=True)
class Layout:
    """
    A named, user-owned tree of chart panels.

    Firestore path:
      settings/{uid}/layouts/{layout_id}
    """

    id: str
    name: str
    owner_id: str
    root: LayoutNode
    created_at: datetime
    updated_at: datetime
    starred_symbols: tuple[str, ...] = ()
    show_ai_assistant: Optional[bool] = None
    version: int = 1

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", ensure_aware_utc(self.created_at))
        object.__setattr__(self, "updated_at", ensure_aware_utc(self.updated_at))
        object.__setattr__(self, "starred_symbols", _dedupe(self.starred_symbols))

    def to_firestore(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "name": self.name,
            "userId": self.owner_id,
            "layout": layout_node_to_dict(self.root),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "starredSymbols": list(self.starred_symbols),
            "version": int(self.version),
        }
        if self.show_ai_assistant is not None:
            doc["showAIAssistant"] = bool(self.show_ai_assistant)
        return doc

    @staticmethod
    def from_firestore(layout_id: str, data: Mapping[str, Any]) -> "Layout":
        d = dict(data or {})
        created = parse_optional_timestamp(d.get("createdAt")) or utc_now()
        updated = parse_optional_timestamp(d.get("updatedAt")) or created
        show_ai = d.get("showAIAssistant")
        return Layout(
            id=str(layout_id),
            name=str(d.get("name") or ""),
            owner_id=str(d.get("userId") or d.get("ownerId") or ""),
            root=layout_node_from_dict(d.get("layout") or {}),
            created_at=created,
            updated_at=updated,
            starred_symbols=tuple(d.get("starredSymbols") or ()),
            show_ai_assistant=bool(show_ai) if show_ai is not None else None,
            version=int(d.get("version") or 1),
        )


@dataclass(frozen=True, slots=True)
class Symbol:
    """
    A tradable product of one exchange.

    Firestore path:
      exchanges/{exchange_id}/products/{symbol}
    """

    id: str
    exchange_id: str
    symbol: str
    base_asset: str
    quote_asset: str
    active: bool = False
    last_update: Optional[datetime] = None

    @property
    def key(self) -> str:
        return f"{self.exchange_id}:{self.symbol}"

    @staticmethod
    def from_firestore(exchange_id: str, product_id: str, data: Mapping[str, Any], *, active: bool) -> "Symbol":
        d = dict(data or {})
        parts = product_id.split("-")
        return Symbol(
            id=product_id,
            exchange_id=exchange_id,
            symbol=product_id,
            base_asset=str(d.get("baseAsset") or parts[0]),
            quote_asset=str(d.get("quoteAsset") or (parts[1] if len(parts) > 1 else "")),
            active=bool(active),
            last_update=parse_optional_timestamp(d.get("lastUpdate")),
        )


@dataclass(frozen=True, slots=True)
class Candle:
    """
    Latest candle of one (exchange, product, granularity) interval document.
    """

    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: Any
    last_update: Optional[datetime] = None

    @staticmethod
    def from_firestore(data: Mapping[str, Any]) -> "Candle":
        d = dict(data or {})
        return Candle(
            open=float(d.get("open") or 0.0),
            high=float(d.get("high") or 0.0),
            low=float(d.get("low") or 0.0),
            close=float(d.get("close") or 0.0),
            volume=float(d.get("volume") or 0.0),
            timestamp=d.get("timestamp"),
            last_update=parse_optional_timestamp(d.get("lastUpdate")),
        )


@dataclass(frozen=True, slots=True)
class UserSettings:
    """
    Per-user preferences.

    Firestore path:
      settings/{uid}
    """

    user_id: str
    theme: Theme = "dark"
    default_granularity: Granularity = DEFAULT_GRANULARITY
    default_symbol: str = DEFAULT_SYMBOL
    active_layout_id: Optional[str] = None
    preferences: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.theme not in ("light", "dark"):
            object.__setattr__(self, "theme", "dark")
        object.__setattr__(self, "default_granularity", Granularity.parse(self.default_granularity))

    def to_firestore(self) -> dict[str, Any]:
        doc: dict[str, Any] = {
            "userId": self.user_id,
            "theme": self.theme,
            "defaultGranularity": self.default_granularity.value,
            "defaultSymbol": self.default_symbol,
            "activeLayoutId": self.active_layout_id,
        }
        if self.preferences:
            doc["preferences"] = dict(self.preferences)
        return doc

    @staticmethod
    def from_firestore(user_id: str, data: Mapping[str, Any]) -> "UserSettings":
        d = dict(data or {})
        return UserSettings(
            user_id=user_id,
            theme=d.get("theme") or "dark",
            default_granularity=d.get("defaultGranularity") or DEFAULT_GRANULARITY,
            default_symbol=str(d.get("defaultSymbol") or DEFAULT_SYMBOL),
            active_layout_id=d.get("activeLayoutId"),
            preferences=dict(d.get("preferences") or {}),
        )


@dataclass(frozen=True, slots=True)
class RepositoryEvent:
    type: RepositoryEventType
    data: Any
    timestamp: datetime = field(default_factory=utc_now)
