"""Static catalog of subscription tier policies."""
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, Union

from .models import (
    UNLIMITED,
    Action,
    Feature,
    InvalidTierError,
    QuotaAction,
    SubscriptionTier,
    TierPolicy,
)

PREMIUM_FEATURES = frozenset(
    {
        Feature.PDF_EXPORT,
        Feature.NOTION_EXPORT,
        Feature.WATERMARK_FREE,
        Feature.CUSTOM_BRANDING,
    }
)

TIER_POLICIES: Mapping[SubscriptionTier, TierPolicy] = MappingProxyType(
    {
        SubscriptionTier.FREE: TierPolicy(
            tier=SubscriptionTier.FREE,
            display_name="Free",
            monthly_generation_limit=1,
            features=frozenset({Feature.PDF_EXPORT}),
            price_usd=0,
            billing_period="forever",
            description="Perfect for trying out the platform",
        ),
        SubscriptionTier.PRO: TierPolicy(
            tier=SubscriptionTier.PRO,
            display_name="Pro",
            monthly_generation_limit=UNLIMITED,
            features=PREMIUM_FEATURES,
            price_usd=19,
            billing_period="per month",
            description="For serious content creators and educators",
        ),
        SubscriptionTier.LIFETIME: TierPolicy(
            tier=SubscriptionTier.LIFETIME,
            display_name="Lifetime",
            monthly_generation_limit=UNLIMITED,
            features=PREMIUM_FEATURES,
            price_usd=149,
            billing_period="one-time",
            description="All Pro features, forever",
        ),
    }
)

UPGRADE_MESSAGES: Mapping[Action, str] = MappingProxyType(
    {
        QuotaAction.GENERATION: "Upgrade to Pro for unlimited course generations",
        Feature.NOTION_EXPORT: "Upgrade to Pro to export courses to Notion",
        Feature.WATERMARK_FREE: "Upgrade to Pro to remove watermarks from exports",
        Feature.CUSTOM_BRANDING: "Upgrade to Pro for custom branding options",
    }
)

DEFAULT_UPGRADE_MESSAGE = "Upgrade to Pro for premium features"


def get_policy(
    tier: Union[SubscriptionTier, str],
    policies: Mapping[SubscriptionTier, TierPolicy] = TIER_POLICIES,
) -> TierPolicy:
    """Return the policy for ``tier``, raising :class:`InvalidTierError` if unsupported."""

    resolved = SubscriptionTier.parse(tier)
    try:
        return policies[resolved]
    except KeyError as exc:  # pragma: no cover - guarded by static catalog
        raise InvalidTierError(tier) from exc


def get_upgrade_message(action: Action) -> str:
    return UPGRADE_MESSAGES.get(action, DEFAULT_UPGRADE_MESSAGE)
