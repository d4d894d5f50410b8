"""Generation quota evaluation utilities for feature gating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from ..entitlements.catalog import get_upgrade_message
from ..entitlements.models import GENERATION
from .exceptions import QuotaExceededError


@dataclass(frozen=True)
class GenerationQuotaEvaluation:
    """Represents the outcome of a generation quota check."""

    usage_count: int
    limit: Optional[int]
    remaining: Optional[int]
    allowed: bool

    @property
    def unlimited(self) -> bool:
        return self.limit is None

    def to_dict(self) -> dict[str, Optional[int] | bool]:
        """Serialize the evaluation for logging or telemetry."""

        return {
            "usage_count": self.usage_count,
            "limit": self.limit,
            "remaining": self.remaining,
            "allowed": self.allowed,
            "unlimited": self.unlimited,
        }


def evaluate_generation_quota(*, usage_count: int, limit: Optional[int]) -> GenerationQuotaEvaluation:
    """Determine whether another generation fits within ``limit``.

    ``limit`` of ``None`` means the tier is unlimited.
    """

    usage = max(usage_count, 0)
    if limit is None:
        return GenerationQuotaEvaluation(usage_count=usage, limit=None, remaining=None, allowed=True)

    return GenerationQuotaEvaluation(
        usage_count=usage,
        limit=limit,
        remaining=max(0, limit - usage),
        allowed=usage < limit,
    )


def assert_generation_quota(
    *,
    usage_count: int,
    limit: Optional[int],
    tier: Optional[str] = None,
) -> GenerationQuotaEvaluation:
    """Raise :class:`QuotaExceededError` when no generation is left in the period."""

    evaluation = evaluate_generation_quota(usage_count=usage_count, limit=limit)
    if not evaluation.allowed:
        raise quota_exceeded(usage_count=evaluation.usage_count, limit=limit, tier=tier)
    return evaluation


def quota_exceeded(*, usage_count: int, limit: Optional[int], tier: Optional[str] = None) -> QuotaExceededError:
    upgrade_message = get_upgrade_message(GENERATION)
    detail: dict[str, object] = {
        "usageCount": usage_count,
        "limit": limit,
        "upgradeMessage": upgrade_message,
    }
    if tier is not None:
        detail["tier"] = tier
    return QuotaExceededError(detail=detail)
