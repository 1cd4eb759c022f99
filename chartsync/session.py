from __future__ import annotations

import logging
from typing import Optional

from chartsync.account import AccountRepository, BillingClient, FileLocalStore, LocalStore
from chartsync.common.config import EngineConfig, load_engine_config
from chartsync.common.logging import log_event
from chartsync.errors import NetworkError
from chartsync.identity import UserIdentity
from chartsync.persistence.firestore_store import FirestoreDocumentStore
from chartsync.persistence.interfaces import DocumentStore
from chartsync.repository import Repository
from chartsync.trendlines import ChartWidget, TrendLineReconciler

logger = logging.getLogger(__name__)


class Session:
    """
    Everything owned by one signed-in user: the layout Repository, the
    AccountRepository and the trend-line reconcilers of open charts.

    Create with `Session.open(user)` on sign-in; `close()` on sign-out flushes
    pending writes, stops reconcilers and wipes the user's cached account data.
    """

    def __init__(
        self,
        user: UserIdentity,
        *,
        repository: Repository,
        accounts: AccountRepository,
        store: DocumentStore,
        config: EngineConfig,
        owns_store: bool = False,
    ) -> None:
        self.user = user
        self.repository = repository
        self.accounts = accounts
        self.config = config
        self._store = store
        self._owns_store = owns_store
        self._reconcilers: dict[str, TrendLineReconciler] = {}
        self._closed = False

    @classmethod
    async def open(
        cls,
        user: UserIdentity,
        *,
        store: Optional[DocumentStore] = None,
        local_store: Optional[LocalStore] = None,
        billing: Optional[BillingClient] = None,
        config: Optional[EngineConfig] = None,
    ) -> "Session":
        cfg = config or load_engine_config()
        owns_store = store is None
        if store is None:
            store = FirestoreDocumentStore(project_id=cfg.firebase_project_id, timeout_s=cfg.request_timeout_s)
        if local_store is None:
            local_store = FileLocalStore(cfg.local_cache_root)
        owns_billing = billing is None
        if billing is None:
            billing = BillingClient(
                base_url=cfg.billing_base_url,
                price_to_plan=cfg.price_to_plan(),
                timeout_s=cfg.request_timeout_s,
                store=store,
                emulator_mode=cfg.emulator_mode,
                starter_price_id=cfg.price_id_starter,
            )

        session = cls(
            user,
            repository=Repository(user.uid, store, config=cfg),
            accounts=AccountRepository(local_store=local_store, billing=billing, config=cfg),
            store=store,
            config=cfg,
            owns_store=owns_store,
        )
        try:
            await session.repository.initialize()
            await session.accounts.warm_cache(user)
        except Exception:
            logger.exception("session: open failed uid=%s", user.uid)
            session.repository.destroy()
            if owns_billing:
                await billing.aclose()
            if owns_store:
                await store.close()
            raise
        log_event(logger, "session.opened", uid=user.uid)
        return session

    @property
    def closed(self) -> bool:
        return self._closed

    async def attach_chart(
        self,
        widget: ChartWidget,
        *,
        layout_id: str,
        chart_id: str,
        load: bool = True,
    ) -> TrendLineReconciler:
        """
        Start reconciling trend lines of one mounted chart. Re-attaching a chart
        replaces its previous reconciler.
        """
        if self._closed:
            raise RuntimeError("session is closed")
        await self.detach_chart(chart_id)
        reconciler = TrendLineReconciler(
            self.repository,
            widget,
            layout_id=layout_id,
            chart_id=chart_id,
            interval_s=self.config.trend_line_poll_s,
        )
        if load:
            await reconciler.load()
        reconciler.start()
        self._reconcilers[chart_id] = reconciler
        return reconciler

    async def detach_chart(self, chart_id: str, *, flush: bool = True) -> None:
        reconciler = self._reconcilers.pop(chart_id, None)
        if reconciler is not None:
            await reconciler.stop(flush=flush)

    async def close(self, *, clear_account_cache: bool = True) -> None:
        """
        Sign-out teardown. Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        for chart_id in list(self._reconcilers):
            await self.detach_chart(chart_id)
        try:
            await self.repository.flush()
        except NetworkError:
            logger.warning("session: pending writes not flushed on close uid=%s", self.user.uid, exc_info=True)
        self.repository.destroy()
        if clear_account_cache:
            self.accounts.clear_cache(self.user.uid)
        await self.accounts.aclose()
        if self._owns_store:
            await self._store.close()
        log_event(logger, "session.closed", uid=self.user.uid)

    async def __aenter__(self) -> "Session":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
