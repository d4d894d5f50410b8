"""Helpers for enforcing entitlement checks on API and service layers."""
from __future__ import annotations

from ..entitlements.catalog import get_upgrade_message
from ..entitlements.models import Feature, TierPolicy
from .exceptions import FeatureNotEntitledError


def require_feature(
    policy: TierPolicy,
    feature: Feature,
    *,
    message: str | None = None,
) -> None:
    """Ensure the tier policy enables ``feature`` before proceeding.

    Parameters
    ----------
    policy:
        The :class:`TierPolicy` resolved for the caller's subscription tier.
    feature:
        The capability that must be enabled.
    message:
        Optional human-friendly message explaining the failure. If omitted, the
        catalog's upgrade prompt for the feature is used.
    """

    if policy.allows(feature):
        return

    upgrade_message = get_upgrade_message(feature)
    raise FeatureNotEntitledError(
        message=message or upgrade_message,
        detail={
            "feature": feature.value,
            "tier": policy.tier.value,
            "upgradeMessage": upgrade_message,
        },
    )
