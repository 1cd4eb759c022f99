from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

import httpx

from chartsync.common.logging import log_event
from chartsync.identity import UserIdentity
from chartsync.persistence import paths
from chartsync.persistence.interfaces import DocumentStore

from .models import SubscriptionRecord, utc_now
from .plans import resolve_plan

logger = logging.getLogger(__name__)

SUBSCRIPTIONS_PATH = "/api/subscriptions"


def _epoch_seconds(value: Any) -> Optional[datetime]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


def select_subscription(subscriptions: Sequence[Mapping[str, Any]]) -> Optional[Mapping[str, Any]]:
    """
    The governing subscription: first active/trialing one, else the first listed.
    """
    for sub in subscriptions:
        if sub.get("status") in ("active", "trialing"):
            return sub
    return subscriptions[0] if subscriptions else None


def subscription_from_payload(
    item: Mapping[str, Any],
    price_to_plan: Mapping[str, str],
    *,
    default_status: str = "none",
) -> SubscriptionRecord:
    status = item.get("status") or default_status
    price_id = item.get("price_id")
    return SubscriptionRecord(
        status=status,
        plan=resolve_plan(price_id, status, price_to_plan),
        subscription_id=item.get("subscription_id"),
        price_id=price_id,
        trial_ends_at=_epoch_seconds(item.get("trial_end")),
        current_period_end=_epoch_seconds(item.get("current_period_end")),
        customer_id=item.get("customer_id"),
        created_at=utc_now(),
    )


class BillingClient:
    """
    Reads the caller's subscription from the billing API:

      GET {base_url}/api/subscriptions   (Authorization: Bearer <id token>)
      -> {"subscriptions": [{status, price_id, subscription_id, trial_end,
                             current_period_end, customer_id}, ...]}

    In emulator mode the `subscriptions/{uid}` document is read instead, with a
    default active starter record when it is absent.
    """

    def __init__(
        self,
        *,
        base_url: str,
        price_to_plan: Mapping[str, str],
        timeout_s: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        store: Optional[DocumentStore] = None,
        emulator_mode: bool = False,
        starter_price_id: Optional[str] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._price_to_plan = dict(price_to_plan)
        self._timeout_s = float(timeout_s)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            headers={"Accept": "application/json", "user-agent": "chartsync/0.1"},
            timeout=self._timeout_s,
            follow_redirects=False,
        )
        self._store = store
        self._emulator_mode = bool(emulator_mode)
        self._starter_price_id = starter_price_id

    async def fetch_subscription(self, user: UserIdentity) -> Optional[SubscriptionRecord]:
        """
        Returns None when the user has no subscriptions or the fetch failed.
        """
        if self._emulator_mode:
            return await self._fetch_from_emulator(user)

        try:
            token = await user.get_id_token()
            response = await self._client.get(
                f"{self.base_url}{SUBSCRIPTIONS_PATH}",
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout_s,
            )
            response.raise_for_status()
            data = response.json()
            subscriptions = list((data or {}).get("subscriptions") or [])
            chosen = select_subscription(subscriptions)
            if chosen is None:
                return None
            return subscription_from_payload(chosen, self._price_to_plan)
        except httpx.HTTPError as e:
            log_event(logger, "billing.fetch_failed", severity="WARNING", uid=user.uid, error=repr(e))
            return None
        except Exception as e:  # noqa: BLE001
            log_event(logger, "billing.fetch_failed", severity="ERROR", uid=user.uid, error=repr(e))
            return None

    def _emulator_default(self, uid: str) -> SubscriptionRecord:
        return SubscriptionRecord(
            status="active",
            plan="starter",
            subscription_id=f"emulator-sub-{uid}",
            price_id=self._starter_price_id,
            customer_id=f"emulator-customer-{uid}",
            created_at=utc_now(),
        )

    async def _fetch_from_emulator(self, user: UserIdentity) -> SubscriptionRecord:
        if self._store is None:
            return self._emulator_default(user.uid)
        try:
            data = await self._store.get_document(paths.subscription_doc(user.uid))
            if data is None:
                return self._emulator_default(user.uid)
            return subscription_from_payload(data, self._price_to_plan, default_status="active")
        except Exception as e:  # noqa: BLE001
            logger.warning("billing: emulator subscription read failed uid=%s (%r); using default", user.uid, e)
            return self._emulator_default(user.uid)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
