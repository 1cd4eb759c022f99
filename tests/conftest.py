from __future__ import annotations

import pytest

_ENGINE_ENV_VARS = (
    "CHARTSYNC_SYNC_DELAY_S",
    "CHARTSYNC_SYNC_MAX_ATTEMPTS",
    "CHARTSYNC_SYNC_RETRY_MAX_DELAY_S",
    "CHARTSYNC_REQUEST_TIMEOUT_S",
    "CHARTSYNC_SUBSCRIPTION_TTL_S",
    "CHARTSYNC_ACCOUNT_TTL_S",
    "CHARTSYNC_TREND_LINE_POLL_S",
    "CHARTSYNC_PREVIEW_DURATION_S",
    "CHARTSYNC_BILLING_BASE_URL",
    "CHARTSYNC_PRICE_ID_STARTER",
    "CHARTSYNC_PRICE_ID_PRO",
    "CHARTSYNC_KNOWN_EXCHANGES",
    "CHARTSYNC_LOCAL_CACHE_ROOT",
    "CHARTSYNC_EMULATOR_MODE",
    "FIREBASE_PROJECT_ID",
    "FIRESTORE_EMULATOR_HOST",
)


@pytest.fixture(autouse=True)
def _isolate_engine_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Test hygiene: engine settings must not leak in from the developer's shell.
    """
    for name in _ENGINE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
