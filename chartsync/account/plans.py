"""
Plan resolution and advisory entitlement gates.

These checks only drive client UX (upgrade prompts, disabled buttons). The
backend remains the authority on what a subscription allows.
"""

from __future__ import annotations

from typing import Mapping, Optional

from .models import PlanType, SubscriptionRecord

STARTER_LAYOUT_LIMIT = 2
STARTER_INDICATOR_LIMIT = 2

# Statuses that keep a paid plan's entitlements (incomplete covers in-flight payments).
ENTITLED_STATUSES = frozenset({"active", "past_due", "incomplete"})


def resolve_plan(
    price_id: Optional[str],
    status: Optional[str],
    price_to_plan: Mapping[str, str],
) -> PlanType:
    """
    Map a billing price id to a plan.

    Known ids come from the configured table. Unknown ids fall back to a name
    heuristic (starter/basic, pro/premium), then to "starter" for any
    active/trialing subscription.
    """
    if not price_id:
        return "none"
    plan = price_to_plan.get(price_id)
    if plan in ("starter", "pro"):
        return plan  # type: ignore[return-value]

    p = price_id.lower()
    if "starter" in p or "basic" in p:
        return "starter"
    if "pro" in p or "premium" in p:
        return "pro"
    if status in ("active", "trialing"):
        return "starter"
    return "none"


def _limit(subscription: Optional[SubscriptionRecord], starter_limit: int) -> Optional[int]:
    if subscription is None:
        return 0
    if subscription.status == "trialing":
        return None
    if subscription.status in ENTITLED_STATUSES:
        if subscription.plan == "starter":
            return starter_limit
        if subscription.plan == "pro":
            return None
    return 0


def get_layout_limit(subscription: Optional[SubscriptionRecord]) -> Optional[int]:
    """Max saved layouts; None means unlimited."""
    return _limit(subscription, STARTER_LAYOUT_LIMIT)


def get_indicator_limit(subscription: Optional[SubscriptionRecord]) -> Optional[int]:
    """Max indicators per chart; None means unlimited."""
    return _limit(subscription, STARTER_INDICATOR_LIMIT)


def can_add_more_layouts(subscription: Optional[SubscriptionRecord], current_count: int) -> bool:
    limit = get_layout_limit(subscription)
    return limit is None or current_count < limit


def can_add_more_indicators(subscription: Optional[SubscriptionRecord], current_count: int) -> bool:
    limit = get_indicator_limit(subscription)
    return limit is None or current_count < limit
