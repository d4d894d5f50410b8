"""Domain models for subscription tiers and entitlement checks."""
from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def add_months(value: datetime, months: int = 1) -> datetime:
    """Shift ``value`` by calendar months, clamping to the last day of the month."""

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class InvalidTierError(ValueError):
    """Raised when a value falls outside the closed set of subscription tiers."""

    def __init__(self, value: object) -> None:
        self.value = value
        super().__init__(f"Unknown subscription tier: {value!r}")


class SubscriptionTier(str, Enum):
    """Canonical identifiers for subscription tiers."""

    FREE = "free"
    PRO = "pro"
    LIFETIME = "lifetime"

    @classmethod
    def parse(cls, value: object) -> "SubscriptionTier":
        """Coerce boundary input into a tier, raising :class:`InvalidTierError`."""

        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidTierError(value)
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            raise InvalidTierError(value) from exc

    @property
    def rank(self) -> int:
        return 0 if self is SubscriptionTier.FREE else 1


class Feature(str, Enum):
    """Boolean capabilities toggled per tier."""

    PDF_EXPORT = "pdf_export"
    NOTION_EXPORT = "notion_export"
    WATERMARK_FREE = "watermark_free"
    CUSTOM_BRANDING = "custom_branding"


class QuotaAction(str, Enum):
    """Actions that consume the monthly generation quota."""

    GENERATION = "generation"


Action = Union[Feature, QuotaAction]

GENERATION = QuotaAction.GENERATION

_ACTION_ALIASES: Dict[str, Action] = {
    "generate": QuotaAction.GENERATION,
    "export_pdf": Feature.PDF_EXPORT,
    "export_notion": Feature.NOTION_EXPORT,
    "remove_watermark": Feature.WATERMARK_FREE,
    "unlimited_generations": QuotaAction.GENERATION,
}


def parse_action(value: object) -> Action:
    """Resolve an action name (canonical or legacy alias) into an :data:`Action`."""

    if isinstance(value, (Feature, QuotaAction)):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Unknown action: {value!r}")
    normalized = value.strip().lower()
    if normalized in _ACTION_ALIASES:
        return _ACTION_ALIASES[normalized]
    try:
        return QuotaAction(normalized)
    except ValueError:
        pass
    try:
        return Feature(normalized)
    except ValueError as exc:
        raise ValueError(f"Unknown action: {value!r}") from exc


class TierChangeReason(str, Enum):
    """Why a subscription tier was changed."""

    BILLING = "billing"
    ADMIN_OVERRIDE = "admin_override"
    TEST_OVERRIDE = "test_override"


UNLIMITED: Optional[int] = None


@dataclass(frozen=True)
class TierPolicy:
    """Static entitlement policy attached to a subscription tier."""

    tier: SubscriptionTier
    display_name: str
    monthly_generation_limit: Optional[int]
    features: FrozenSet[Feature]
    price_usd: int = 0
    billing_period: str = ""
    description: str = ""

    def __post_init__(self) -> None:
        limit = self.monthly_generation_limit
        if limit is not None and limit < 0:
            raise ValueError("monthly_generation_limit must be >= 0 or UNLIMITED")

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_generation_limit is UNLIMITED

    def allows(self, feature: Feature) -> bool:
        return feature in self.features

    def to_flags(self) -> Dict[str, bool]:
        """Serialize the feature set to one flag per known feature."""

        return {feature.value: feature in self.features for feature in Feature}


class EntitlementAuditEventType(str, Enum):
    """Audit events emitted by the entitlement engine."""

    USAGE_RECORDED = "usage.recorded"
    QUOTA_REJECTED = "usage.quota_rejected"
    TIER_CHANGED = "tier.changed"
    USAGE_RESET = "usage.reset"


class EntitlementAuditEvent(BaseModel):
    """Structured record of an entitlement-affecting operation."""

    event_type: EntitlementAuditEventType
    account_id: str
    tier: SubscriptionTier
    usage_count: int
    previous_tier: Optional[SubscriptionTier] = None
    reason: Optional[TierChangeReason] = None
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


class UsageSummary(BaseModel):
    """Snapshot of an account's quota position within the current period."""

    tier: SubscriptionTier
    usage_count: int
    monthly_generation_limit: Optional[int]
    remaining_generations: Optional[int]
    can_generate: bool
    period_resets_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)

    @property
    def is_unlimited(self) -> bool:
        return self.monthly_generation_limit is None

    def format_remaining(self) -> str:
        if self.remaining_generations is None:
            return "Unlimited"
        return str(self.remaining_generations)
