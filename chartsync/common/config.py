from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field

TRUTHY = {"1", "true", "t", "yes", "y", "on"}
FALSY = {"0", "false", "f", "no", "n", "off"}

DEFAULT_SYNC_DELAY_S = 0.1
DEFAULT_SYNC_MAX_ATTEMPTS = 5
DEFAULT_SYNC_RETRY_MAX_DELAY_S = 30.0
DEFAULT_REQUEST_TIMEOUT_S = 15.0
DEFAULT_SUBSCRIPTION_TTL_S = 5 * 60.0
DEFAULT_ACCOUNT_TTL_S = 30 * 60.0
DEFAULT_TREND_LINE_POLL_S = 2.0
DEFAULT_PREVIEW_DURATION_S = 5 * 60.0


def _parse_bool(value: object | None) -> Optional[bool]:
    if value is None:
        return None
    s = str(value).strip().lower()
    if not s:
        return None
    if s in TRUTHY:
        return True
    if s in FALSY:
        return False
    return None


def _split_csv(value: str) -> List[str]:
    return [p.strip() for p in value.split(",") if p.strip()]


class EngineConfig(BaseModel):
    """
    Runtime configuration for one client session.

    Values come from (lowest to highest precedence):
    - model defaults
    - optional YAML file (`load_engine_config(path)`)
    - CHARTSYNC_* environment variables
    """

    sync_delay_s: float = Field(DEFAULT_SYNC_DELAY_S, ge=0.0)
    sync_max_attempts: int = Field(DEFAULT_SYNC_MAX_ATTEMPTS, ge=1)
    sync_retry_max_delay_s: float = Field(DEFAULT_SYNC_RETRY_MAX_DELAY_S, gt=0.0)
    request_timeout_s: float = Field(DEFAULT_REQUEST_TIMEOUT_S, gt=0.0)

    subscription_ttl_s: float = Field(DEFAULT_SUBSCRIPTION_TTL_S, gt=0.0)
    account_ttl_s: float = Field(DEFAULT_ACCOUNT_TTL_S, gt=0.0)

    trend_line_poll_s: float = Field(DEFAULT_TREND_LINE_POLL_S, gt=0.0)
    preview_duration_s: float = Field(DEFAULT_PREVIEW_DURATION_S, gt=0.0)

    billing_base_url: str = "https://billing.spotcanvas.com"
    price_id_starter: Optional[str] = None
    price_id_pro: Optional[str] = None

    known_exchanges: List[str] = Field(default_factory=lambda: ["coinbase"])
    local_cache_root: str = ".chartsync-cache"
    firebase_project_id: Optional[str] = None
    emulator_mode: bool = False

    def price_to_plan(self) -> Dict[str, str]:
        table: Dict[str, str] = {}
        if self.price_id_starter:
            table[self.price_id_starter] = "starter"
        if self.price_id_pro:
            table[self.price_id_pro] = "pro"
        return table


# env var -> (field, parser)
_ENV_OVERRIDES: Dict[str, tuple[str, Any]] = {
    "CHARTSYNC_SYNC_DELAY_S": ("sync_delay_s", float),
    "CHARTSYNC_SYNC_MAX_ATTEMPTS": ("sync_max_attempts", int),
    "CHARTSYNC_SYNC_RETRY_MAX_DELAY_S": ("sync_retry_max_delay_s", float),
    "CHARTSYNC_REQUEST_TIMEOUT_S": ("request_timeout_s", float),
    "CHARTSYNC_SUBSCRIPTION_TTL_S": ("subscription_ttl_s", float),
    "CHARTSYNC_ACCOUNT_TTL_S": ("account_ttl_s", float),
    "CHARTSYNC_TREND_LINE_POLL_S": ("trend_line_poll_s", float),
    "CHARTSYNC_PREVIEW_DURATION_S": ("preview_duration_s", float),
    "CHARTSYNC_BILLING_BASE_URL": ("billing_base_url", str),
    "CHARTSYNC_PRICE_ID_STARTER": ("price_id_starter", str),
    "CHARTSYNC_PRICE_ID_PRO": ("price_id_pro", str),
    "CHARTSYNC_KNOWN_EXCHANGES": ("known_exchanges", _split_csv),
    "CHARTSYNC_LOCAL_CACHE_ROOT": ("local_cache_root", str),
    "FIREBASE_PROJECT_ID": ("firebase_project_id", str),
}


def _env_overrides() -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for name, (field, parse) in _ENV_OVERRIDES.items():
        raw = (os.getenv(name) or "").strip()
        if not raw:
            continue
        try:
            out[field] = parse(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from e

    emulator = _parse_bool(os.getenv("CHARTSYNC_EMULATOR_MODE"))
    if emulator is None and (os.getenv("FIRESTORE_EMULATOR_HOST") or "").strip():
        emulator = True
    if emulator is not None:
        out["emulator_mode"] = emulator
    return out


def load_engine_config(path: str | Path | None = None) -> EngineConfig:
    """
    Build an EngineConfig from an optional YAML file plus environment overrides.
    """
    raw: Dict[str, Any] = {}
    if path is not None:
        p = Path(path)
        if not p.exists():
            raise FileNotFoundError(f"engine config not found: {path}")
        loaded = yaml.safe_load(p.read_text(encoding="utf-8")) or {}
        if not isinstance(loaded, dict):
            raise ValueError(f"engine config must be a mapping: {path}")
        raw.update(loaded)
    raw.update(_env_overrides())
    return EngineConfig.model_validate(raw)
