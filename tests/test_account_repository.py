from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

from chartsync.account import AccountRepository, InMemoryLocalStore, SubscriptionRecord
from chartsync.account.local_store import ACCOUNT_STORE, METADATA_STORE, SUBSCRIPTION_STORE
from chartsync.common.config import EngineConfig
from chartsync.identity import UserIdentity


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 7, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


class FakeBilling:
    def __init__(self, record: SubscriptionRecord | None) -> None:
        self.record = record
        self.calls: list[str] = []
        self.closed = False

    async def fetch_subscription(self, user: UserIdentity) -> SubscriptionRecord | None:
        self.calls.append(user.uid)
        return self.record

    async def aclose(self) -> None:
        self.closed = True


USER = UserIdentity(uid="u1", email="ada@example.com", email_verified=True, display_name="Ada")


def _repo(record: SubscriptionRecord | None = None, clock: FakeClock | None = None):
    store = InMemoryLocalStore()
    billing = FakeBilling(record if record is not None else SubscriptionRecord(status="active", plan="starter"))
    repo = AccountRepository(local_store=store, billing=billing, config=EngineConfig(), clock=clock or FakeClock())
    return repo, store, billing


def test_warm_cache_fills_both_record_kinds():
    async def _run() -> None:
        repo, store, billing = _repo()

        await repo.warm_cache(USER)

        account = repo.accounts.read_cached("u1")
        assert account.email == "ada@example.com"
        assert account.email_verified is True
        assert repo.subscriptions.read_cached("u1").plan == "starter"
        assert billing.calls == ["u1"]
        assert sorted(store.keys(METADATA_STORE)) == ["account-meta-u1", "subscription-meta-u1"]

    asyncio.run(_run())


def test_subscription_is_served_from_cache_within_ttl():
    async def _run() -> None:
        clock = FakeClock()
        repo, _store, billing = _repo(clock=clock)
        await repo.warm_cache(USER)

        clock.now += timedelta(minutes=4)
        assert (await repo.get_subscription(USER)).status == "active"
        assert billing.calls == ["u1"]

        clock.now += timedelta(minutes=2)
        await repo.get_subscription(USER)
        await asyncio.sleep(0)
        assert billing.calls == ["u1", "u1"]

    asyncio.run(_run())


def test_account_ttl_is_longer_than_subscription_ttl():
    repo, _store, _billing = _repo()
    assert repo.accounts.ttl == timedelta(minutes=30)
    assert repo.subscriptions.ttl == timedelta(minutes=5)


def test_signed_out_user_has_no_records_and_no_entitlements():
    async def _run() -> None:
        repo, _store, billing = _repo()

        assert await repo.get_account(None) is None
        assert await repo.get_subscription(None) is None
        assert await repo.get_layout_limit(None) == 0
        assert await repo.can_add_more_layouts(None, 0) is False
        assert billing.calls == []

    asyncio.run(_run())


def test_entitlement_wrappers_follow_cached_plan():
    async def _run() -> None:
        repo, _store, _billing = _repo(SubscriptionRecord(status="active", plan="starter"))

        assert await repo.get_layout_limit(USER) == 2
        assert await repo.can_add_more_layouts(USER, 1) is True
        assert await repo.can_add_more_layouts(USER, 2) is False
        assert await repo.get_indicator_limit(USER) == 2
        assert await repo.can_add_more_indicators(USER, 5) is False

        pro, _s, _b = _repo(SubscriptionRecord(status="trialing", plan="none"))
        assert await pro.get_layout_limit(USER) is None
        assert await pro.can_add_more_indicators(USER, 50) is True

    asyncio.run(_run())


def test_clear_cache_for_one_user_or_everyone():
    async def _run() -> None:
        repo, store, _billing = _repo()
        other = UserIdentity(uid="u2")
        await repo.warm_cache(USER)
        await repo.warm_cache(other)

        repo.clear_cache("u1")
        assert repo.accounts.read_cached("u1") is None
        assert repo.subscriptions.read_metadata("u1") is None
        assert repo.accounts.read_cached("u2") is not None

        repo.clear_cache()
        assert store.keys(ACCOUNT_STORE) == []
        assert store.keys(SUBSCRIPTION_STORE) == []
        assert store.keys(METADATA_STORE) == []

    asyncio.run(_run())


def test_listeners_receive_refreshed_records():
    async def _run() -> None:
        repo, _store, _billing = _repo()
        accounts, subscriptions = [], []
        repo.subscribe_to_account(accounts.append)
        unsubscribe = repo.subscribe_to_subscription(subscriptions.append)

        await repo.warm_cache(USER)
        unsubscribe()
        await repo.get_subscription(USER, force_refresh=True)

        assert [a.uid for a in accounts] == ["u1"]
        assert len(subscriptions) == 1

    asyncio.run(_run())


def test_preview_is_delegated_and_close_releases_billing():
    async def _run() -> None:
        repo, _store, billing = _repo()

        start = repo.start_preview(USER)
        status = repo.get_preview_status(USER)
        assert status.is_preview is True
        assert status.start_time == start
        assert repo.get_preview_status(None).is_preview is False

        await repo.aclose()
        assert billing.closed is True

    asyncio.run(_run())
