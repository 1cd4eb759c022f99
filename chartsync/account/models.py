from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

SubscriptionStatus = Literal[
    "none",
    "trialing",
    "active",
    "past_due",
    "canceled",
    "incomplete",
    "incomplete_expired",
]
PlanType = Literal["none", "starter", "pro"]

CACHE_SCHEMA_VERSION = 1


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AccountRecord(BaseModel):
    """
    Identity-provider profile snapshot cached per uid.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    uid: str = Field(..., min_length=1)
    email: Optional[str] = None
    email_verified: bool = False
    display_name: Optional[str] = None
    photo_url: Optional[str] = None
    last_updated: datetime = Field(default_factory=utc_now)


class SubscriptionRecord(BaseModel):
    """
    The subscription that currently governs a user's entitlements.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    status: SubscriptionStatus = "none"
    plan: PlanType = "none"
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    customer_id: Optional[str] = None
    created_at: Optional[datetime] = None


class CacheMetadata(BaseModel):
    """
    Freshness record for one (record kind, uid) cache entry.

    key is `account-meta-{uid}` or `subscription-meta-{uid}`.
    """

    model_config = ConfigDict(extra="ignore", frozen=True)

    key: str = Field(..., min_length=1)
    last_fetched: datetime
    ttl_ms: int = Field(..., ge=0)
    version: int = CACHE_SCHEMA_VERSION
