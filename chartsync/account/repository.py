from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from chartsync.common.config import EngineConfig
from chartsync.common.logging import log_event
from chartsync.identity import UserIdentity

from . import plans
from .billing_client import BillingClient
from .cache import CacheListener, TtlCache, Unsubscribe
from .local_store import ACCOUNT_STORE, METADATA_STORE, SUBSCRIPTION_STORE, LocalStore
from .models import AccountRecord, SubscriptionRecord, utc_now
from .preview import PreviewGate, PreviewStatus

logger = logging.getLogger(__name__)


class AccountRepository:
    """
    Account + subscription records for the signed-in user, served from a
    persistent TTL cache (account 30 min, subscription 5 min by default).
    """

    def __init__(
        self,
        *,
        local_store: LocalStore,
        billing: BillingClient,
        config: Optional[EngineConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        cfg = config or EngineConfig()
        self._local_store = local_store
        self._billing = billing
        self.accounts: TtlCache[AccountRecord] = TtlCache(
            kind="account",
            model=AccountRecord,
            store=local_store,
            record_store=ACCOUNT_STORE,
            ttl_s=cfg.account_ttl_s,
            clock=clock,
        )
        self.subscriptions: TtlCache[SubscriptionRecord] = TtlCache(
            kind="subscription",
            model=SubscriptionRecord,
            store=local_store,
            record_store=SUBSCRIPTION_STORE,
            ttl_s=cfg.subscription_ttl_s,
            clock=clock,
        )
        self.preview = PreviewGate(local_store, duration_s=cfg.preview_duration_s)

    # --- records ---

    async def get_account(self, user: Optional[UserIdentity], force_refresh: bool = False) -> Optional[AccountRecord]:
        if user is None:
            return None

        async def _fetch() -> AccountRecord:
            return AccountRecord(
                uid=user.uid,
                email=user.email,
                email_verified=user.email_verified,
                display_name=user.display_name,
                photo_url=user.photo_url,
                last_updated=utc_now(),
            )

        return await self.accounts.get(user.uid, _fetch, force_refresh=force_refresh)

    async def get_subscription(
        self, user: Optional[UserIdentity], force_refresh: bool = False
    ) -> Optional[SubscriptionRecord]:
        if user is None:
            return None
        return await self.subscriptions.get(
            user.uid,
            lambda: self._billing.fetch_subscription(user),
            force_refresh=force_refresh,
        )

    async def warm_cache(self, user: UserIdentity) -> None:
        """
        Refresh both record kinds in parallel (called right after sign-in).
        """
        account, subscription = await asyncio.gather(
            self.get_account(user, force_refresh=True),
            self.get_subscription(user, force_refresh=True),
        )
        log_event(
            logger,
            "account_cache.warmed",
            uid=user.uid,
            has_account=account is not None,
            subscription_status=subscription.status if subscription is not None else None,
        )

    def clear_cache(self, uid: Optional[str] = None) -> None:
        if uid:
            self.accounts.invalidate(uid)
            self.subscriptions.invalidate(uid)
            return
        self.accounts.invalidate_all()
        self.subscriptions.invalidate_all()
        self._local_store.clear(METADATA_STORE)

    # --- listeners ---

    def subscribe_to_account(self, listener: CacheListener[AccountRecord]) -> Unsubscribe:
        return self.accounts.subscribe(listener)

    def subscribe_to_subscription(self, listener: CacheListener[SubscriptionRecord]) -> Unsubscribe:
        return self.subscriptions.subscribe(listener)

    # --- entitlements (advisory) ---

    async def can_add_more_layouts(self, user: Optional[UserIdentity], current_count: int) -> bool:
        return plans.can_add_more_layouts(await self.get_subscription(user), current_count)

    async def can_add_more_indicators(self, user: Optional[UserIdentity], current_count: int) -> bool:
        return plans.can_add_more_indicators(await self.get_subscription(user), current_count)

    async def get_layout_limit(self, user: Optional[UserIdentity]) -> Optional[int]:
        return plans.get_layout_limit(await self.get_subscription(user))

    async def get_indicator_limit(self, user: Optional[UserIdentity]) -> Optional[int]:
        return plans.get_indicator_limit(await self.get_subscription(user))

    # --- preview ---

    def start_preview(self, user: Optional[UserIdentity]) -> datetime:
        return self.preview.start_preview(user)

    def get_preview_status(self, user: Optional[UserIdentity]) -> PreviewStatus:
        return self.preview.get_preview_status(user)

    async def aclose(self) -> None:
        await self.accounts.aclose()
        await self.subscriptions.aclose()
        await self._billing.aclose()
