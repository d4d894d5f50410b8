"""Domain model for user accounts tracked by the entitlement engine."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..entitlements.models import SubscriptionTier, add_months, utcnow

__all__ = ["UserAccount", "add_months", "utcnow"]


class UserAccount(BaseModel):
    """A registered user together with its subscription and usage state."""

    id: str
    external_id: str
    email: str = ""
    subscription_tier: SubscriptionTier = SubscriptionTier.FREE
    usage_count: int = Field(default=0, ge=0)
    usage_period_resets_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    billing_customer_code: Optional[str] = None
    billing_subscription_code: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)

    @field_validator("subscription_tier", mode="before")
    @classmethod
    def _parse_tier(cls, value: object) -> SubscriptionTier:
        return SubscriptionTier.parse(value)

    def period_expired(self, now: datetime) -> bool:
        return self.usage_period_resets_at is not None and self.usage_period_resets_at <= now
