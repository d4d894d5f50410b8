"""Subscription tier policies and the entitlement engine."""

from .catalog import TIER_POLICIES, UPGRADE_MESSAGES, get_policy, get_upgrade_message
from .models import (
    GENERATION,
    UNLIMITED,
    Action,
    EntitlementAuditEvent,
    EntitlementAuditEventType,
    Feature,
    InvalidTierError,
    QuotaAction,
    SubscriptionTier,
    TierChangeReason,
    TierPolicy,
    UsageSummary,
    parse_action,
)
from .service import EntitlementEngine, EntitlementEventLogger, UsageResetSummary

__all__ = [
    "GENERATION",
    "TIER_POLICIES",
    "UNLIMITED",
    "UPGRADE_MESSAGES",
    "Action",
    "EntitlementAuditEvent",
    "EntitlementAuditEventType",
    "EntitlementEngine",
    "EntitlementEventLogger",
    "Feature",
    "InvalidTierError",
    "QuotaAction",
    "SubscriptionTier",
    "TierChangeReason",
    "TierPolicy",
    "UsageResetSummary",
    "UsageSummary",
    "get_policy",
    "get_upgrade_message",
    "parse_action",
]
