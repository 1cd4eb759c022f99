from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from chartsync.common.config import EngineConfig, load_engine_config


def test_defaults():
    cfg = load_engine_config()

    assert cfg.sync_delay_s == 0.1
    assert cfg.sync_retry_max_delay_s == 30.0
    assert cfg.subscription_ttl_s == 300.0
    assert cfg.account_ttl_s == 1800.0
    assert cfg.trend_line_poll_s == 2.0
    assert cfg.known_exchanges == ["coinbase"]
    assert cfg.emulator_mode is False
    assert cfg.price_to_plan() == {}


def test_yaml_file_then_env_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    p = tmp_path / "engine.yaml"
    p.write_text(
        "sync_max_attempts: 3\n"
        "trend_line_poll_s: 5\n"
        "price_id_starter: price_s\n"
        "known_exchanges: [coinbase, kraken]\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("CHARTSYNC_TREND_LINE_POLL_S", "1.5")
    monkeypatch.setenv("CHARTSYNC_PRICE_ID_PRO", "price_p")

    cfg = load_engine_config(p)

    assert cfg.sync_max_attempts == 3
    assert cfg.trend_line_poll_s == 1.5
    assert cfg.known_exchanges == ["coinbase", "kraken"]
    assert cfg.price_to_plan() == {"price_s": "starter", "price_p": "pro"}


def test_env_csv_and_emulator_detection(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CHARTSYNC_KNOWN_EXCHANGES", "coinbase, binance ,")
    monkeypatch.setenv("FIRESTORE_EMULATOR_HOST", "localhost:8080")

    cfg = load_engine_config()

    assert cfg.known_exchanges == ["coinbase", "binance"]
    assert cfg.emulator_mode is True

    monkeypatch.setenv("CHARTSYNC_EMULATOR_MODE", "off")
    assert load_engine_config().emulator_mode is False


def test_invalid_env_value_is_reported(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("CHARTSYNC_SYNC_MAX_ATTEMPTS", "lots")
    with pytest.raises(ValueError, match="CHARTSYNC_SYNC_MAX_ATTEMPTS"):
        load_engine_config()


def test_out_of_range_values_are_rejected():
    with pytest.raises(ValidationError):
        EngineConfig(sync_max_attempts=0)
    with pytest.raises(ValidationError):
        EngineConfig(request_timeout_s=0)


def test_missing_or_malformed_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_engine_config(tmp_path / "nope.yaml")

    p = tmp_path / "list.yaml"
    p.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValueError, match="must be a mapping"):
        load_engine_config(p)
