"""
Timestamp normalization helpers.

Rules:
- Naive `datetime` (no tzinfo) is assumed to be **UTC**.
- ISO8601 strings ending with 'Z' are treated as UTC.
- Numeric epoch: values >= 1e12 are treated as milliseconds, otherwise seconds.
- Firestore `DatetimeWithNanoseconds` is a `datetime` subclass and is handled as such;
  objects exposing `.to_datetime()` / `.ToDatetime()` (protobuf Timestamp) are unwrapped.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

UTC = timezone.utc


def _unwrap_timestamp_like(value: Any) -> Optional[datetime]:
    for attr in ("to_datetime", "ToDatetime", "to_pydatetime"):
        fn = getattr(value, attr, None)
        if callable(fn):
            try:
                out = fn()
            except Exception:
                return None
            if isinstance(out, datetime):
                return out
    return None


def parse_timestamp(value: Any) -> datetime:
    """
    Parse common timestamp shapes into a tz-aware UTC datetime.

    Supported input shapes:
    - ISO8601 strings (e.g. '2025-01-02T14:30:00Z', '...+00:00')
    - `datetime` (naive or tz-aware)
    - epoch seconds or milliseconds (int/float)
    - timestamp objects exposing `.to_datetime()`
    """

    if value is None:
        raise TypeError("timestamp value is None")

    if not isinstance(value, (datetime, int, float, str)):
        unwrapped = _unwrap_timestamp_like(value)
        if unwrapped is not None:
            value = unwrapped

    if isinstance(value, datetime):
        return ensure_aware_utc(value)

    if isinstance(value, bool):
        raise TypeError("unsupported timestamp type: bool")

    if isinstance(value, (int, float)):
        v = float(value)
        seconds = (v / 1000.0) if abs(v) >= 1e12 else v
        return datetime.fromtimestamp(seconds, tz=UTC)

    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("timestamp string is empty")
        if s.endswith("Z") or s.endswith("z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError as e:
            raise ValueError(f"unparseable timestamp string: {value!r}") from e
        return ensure_aware_utc(dt)

    raise TypeError(f"unsupported timestamp type: {type(value).__name__}")


def parse_optional_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    try:
        return parse_timestamp(value)
    except (TypeError, ValueError):
        return None


def utc_now() -> datetime:
    """Return tz-aware current time in UTC."""

    return datetime.now(tz=UTC)


def ensure_aware_utc(value: datetime) -> datetime:
    """
    Ensure a datetime is tz-aware and normalized to UTC.
    Naive datetimes are assumed to be UTC.
    """

    if not isinstance(value, datetime):
        raise TypeError("ensure_aware_utc expects a datetime")
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
