"""API schemas for billing endpoints."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from ..billing import BillingWebhookOutcome, BillingWebhookResult
from ..entitlements.models import SubscriptionTier


class BillingWebhookResponse(BaseModel):
    received: bool = True
    outcome: BillingWebhookOutcome
    event_id: Optional[str] = Field(alias="eventId", default=None)
    tier: Optional[SubscriptionTier] = None

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: BillingWebhookResult) -> "BillingWebhookResponse":
        return cls(outcome=result.outcome, event_id=result.event_id, tier=result.tier)

    @classmethod
    def ignored(cls) -> "BillingWebhookResponse":
        return cls(outcome=BillingWebhookOutcome.IGNORED)
