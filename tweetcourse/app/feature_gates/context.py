"""Convenience wrapper around an account's tier policy for feature gating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

from ..entitlements.models import (
    Action,
    Feature,
    QuotaAction,
    SubscriptionTier,
    TierPolicy,
    parse_action,
)
from .enforcement import require_feature
from .quota import GenerationQuotaEvaluation, assert_generation_quota, evaluate_generation_quota

if TYPE_CHECKING:  # pragma: no cover
    from ..accounts.models import UserAccount


@dataclass(frozen=True)
class EntitlementContext:
    """Facade exposing gating-centric helpers for an account snapshot."""

    account: UserAccount
    policy: TierPolicy

    @property
    def tier(self) -> SubscriptionTier:
        return self.policy.tier

    @property
    def feature_flags(self) -> Dict[str, bool]:
        return self.policy.to_flags()

    @property
    def remaining_generations(self) -> Optional[int]:
        return self.generation_quota().remaining

    def has(self, feature: Feature | str) -> bool:
        """Return whether the feature is enabled for the account's tier."""

        try:
            action = parse_action(feature)
        except ValueError:
            return False
        if isinstance(action, QuotaAction):
            return self.generation_quota().allowed
        return self.policy.allows(action)

    def require(self, action: Action | str) -> None:
        """Ensure the action is permitted, raising a typed gating error otherwise."""

        resolved = parse_action(action)
        if isinstance(resolved, QuotaAction):
            assert_generation_quota(
                usage_count=self.account.usage_count,
                limit=self.policy.monthly_generation_limit,
                tier=self.tier.value,
            )
            return
        require_feature(self.policy, resolved)

    def generation_quota(self) -> GenerationQuotaEvaluation:
        return evaluate_generation_quota(
            usage_count=self.account.usage_count,
            limit=self.policy.monthly_generation_limit,
        )
