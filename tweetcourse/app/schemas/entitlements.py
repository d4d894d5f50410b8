"""API schemas for entitlement and usage endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..accounts.models import UserAccount
from ..entitlements.models import SubscriptionTier, TierPolicy, UsageSummary


class TierPolicyOut(BaseModel):
    tier: SubscriptionTier
    name: str
    price: int
    period: str
    description: str
    monthly_generation_limit: Optional[int] = Field(alias="monthlyGenerationLimit", default=None)
    unlimited: bool
    features: Dict[str, bool]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_policy(cls, policy: TierPolicy) -> "TierPolicyOut":
        return cls(
            tier=policy.tier,
            name=policy.display_name,
            price=policy.price_usd,
            period=policy.billing_period,
            description=policy.description,
            monthly_generation_limit=policy.monthly_generation_limit,
            unlimited=policy.is_unlimited,
            features=policy.to_flags(),
        )


class TierListResponse(BaseModel):
    tiers: List[TierPolicyOut]

    model_config = ConfigDict(populate_by_name=True)


class UsageSummaryOut(BaseModel):
    usage_count: int = Field(alias="usageCount")
    monthly_generation_limit: Optional[int] = Field(alias="monthlyGenerationLimit", default=None)
    remaining_generations: Optional[int] = Field(alias="remainingGenerations", default=None)
    can_generate: bool = Field(alias="canGenerate")
    period_resets_at: Optional[datetime] = Field(alias="periodResetsAt", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: UsageSummary) -> "UsageSummaryOut":
        return cls(
            usage_count=summary.usage_count,
            monthly_generation_limit=summary.monthly_generation_limit,
            remaining_generations=summary.remaining_generations,
            can_generate=summary.can_generate,
            period_resets_at=summary.period_resets_at,
        )


class AccountEntitlementsResponse(BaseModel):
    account_id: str = Field(alias="accountId")
    email: str
    tier: SubscriptionTier
    features: Dict[str, bool]
    usage: UsageSummaryOut

    model_config = ConfigDict(populate_by_name=True)


class EntitlementCheckRequest(BaseModel):
    action: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)


class EntitlementCheckResponse(BaseModel):
    action: str
    allowed: bool
    tier: SubscriptionTier
    reason: Optional[str] = None
    upgrade_message: Optional[str] = Field(alias="upgradeMessage", default=None)

    model_config = ConfigDict(populate_by_name=True)


class RecordUsageResponse(BaseModel):
    tier: SubscriptionTier
    usage: UsageSummaryOut

    model_config = ConfigDict(populate_by_name=True)


class SetSubscriptionRequest(BaseModel):
    user_id: Optional[str] = Field(alias="userId", default=None)
    tier: str = Field(min_length=1)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("user_id")
    @classmethod
    def _strip_user_id(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class SetSubscriptionResponse(BaseModel):
    success: bool = True
    user_id: str = Field(alias="userId")
    tier: SubscriptionTier
    previous_tier: SubscriptionTier = Field(alias="previousTier")
    usage_count: int = Field(alias="usageCount")

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_change(cls, account: UserAccount, previous_tier: SubscriptionTier) -> "SetSubscriptionResponse":
        return cls(
            user_id=account.id,
            tier=account.subscription_tier,
            previous_tier=previous_tier,
            usage_count=account.usage_count,
        )


class UsageResetResponse(BaseModel):
    accounts_reset: int = Field(alias="accountsReset")
    failures: int

    model_config = ConfigDict(populate_by_name=True)
