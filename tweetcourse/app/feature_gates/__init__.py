"""Feature gating utilities coordinating entitlement enforcement."""
from .context import EntitlementContext
from .enforcement import require_feature
from .exceptions import (
    FeatureGateError,
    FeatureNotEntitledError,
    QuotaExceededError,
    RejectionReason,
)
from .quota import (
    GenerationQuotaEvaluation,
    assert_generation_quota,
    evaluate_generation_quota,
)

__all__ = [
    "EntitlementContext",
    "FeatureGateError",
    "FeatureNotEntitledError",
    "GenerationQuotaEvaluation",
    "QuotaExceededError",
    "RejectionReason",
    "assert_generation_quota",
    "evaluate_generation_quota",
    "require_feature",
]
