"""Service enforcing tier entitlements and monthly generation quota."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, Mapping, Optional, Protocol, Union

from ..accounts.exceptions import AccountNotFoundError, AccountStoreError
from ..feature_gates.enforcement import require_feature
from ..feature_gates.quota import (
    assert_generation_quota,
    evaluate_generation_quota,
    quota_exceeded,
)
from .catalog import TIER_POLICIES, get_policy, get_upgrade_message
from .models import (
    Action,
    EntitlementAuditEvent,
    EntitlementAuditEventType,
    QuotaAction,
    SubscriptionTier,
    TierChangeReason,
    TierPolicy,
    UsageSummary,
    add_months,
    parse_action,
    utcnow,
)

if TYPE_CHECKING:  # pragma: no cover
    from ..accounts.models import UserAccount
    from ..accounts.repository import AccountRepository

logger = logging.getLogger("entitlements")


class EntitlementEventLogger(Protocol):
    """Captures structured entitlement audit events."""

    def log(self, event: EntitlementAuditEvent) -> None:
        ...


@dataclass(frozen=True)
class UsageResetSummary:
    """Outcome of a bulk period rollover."""

    accounts_reset: int = 0
    failures: int = 0


class EntitlementEngine:
    """Decides whether actions are permitted and records quota consumption.

    All writes to ``usage_count`` and ``subscription_tier`` go through the
    repository's atomic operations; the engine never performs a
    read-then-write on the counter.
    """

    def __init__(
        self,
        repository: "AccountRepository",
        event_logger: EntitlementEventLogger,
        *,
        policies: Mapping[SubscriptionTier, TierPolicy] = TIER_POLICIES,
        clock: Optional[Callable[[], datetime]] = None,
        max_attempts: int = 3,
    ) -> None:
        self._repository = repository
        self._event_logger = event_logger
        self._policies = policies
        self._clock = clock or utcnow
        self._max_attempts = max(max_attempts, 1)

    @property
    def policies(self) -> Mapping[SubscriptionTier, TierPolicy]:
        return self._policies

    def get_policy(self, tier: Union[SubscriptionTier, str]) -> TierPolicy:
        return get_policy(tier, self._policies)

    def can_perform_action(self, account: "UserAccount", action: Union[Action, str]) -> bool:
        """Read-only entitlement check for a feature or a generation."""

        resolved = parse_action(action)
        policy = self.get_policy(account.subscription_tier)
        if isinstance(resolved, QuotaAction):
            return evaluate_generation_quota(
                usage_count=account.usage_count,
                limit=policy.monthly_generation_limit,
            ).allowed
        return policy.allows(resolved)

    def require(self, account: "UserAccount", action: Union[Action, str]) -> None:
        """Raise the typed rejection when ``can_perform_action`` would be false."""

        resolved = parse_action(action)
        policy = self.get_policy(account.subscription_tier)
        if isinstance(resolved, QuotaAction):
            assert_generation_quota(
                usage_count=account.usage_count,
                limit=policy.monthly_generation_limit,
                tier=policy.tier.value,
            )
            return
        require_feature(policy, resolved)

    def record_usage(self, account: "UserAccount") -> "UserAccount":
        """Atomically consume one generation, raising ``QuotaExceededError`` when over."""

        expected_tier = account.subscription_tier
        for _ in range(self._max_attempts):
            policy = self.get_policy(expected_tier)
            updated = self._repository.increment_usage_if_allowed(
                account.id,
                expected_tier=expected_tier,
                limit=policy.monthly_generation_limit,
            )
            if updated is not None:
                self._emit(EntitlementAuditEventType.USAGE_RECORDED, updated)
                return updated

            current = self._repository.get_account(account.id)
            if current is None:
                raise AccountNotFoundError(account.id)
            if current.subscription_tier != expected_tier:
                logger.debug(
                    "Tier changed while recording usage; retrying",
                    extra={
                        "account_id": account.id,
                        "expected_tier": expected_tier.value,
                        "current_tier": current.subscription_tier.value,
                    },
                )
                expected_tier = current.subscription_tier
                continue

            self._emit(EntitlementAuditEventType.QUOTA_REJECTED, current)
            raise quota_exceeded(
                usage_count=current.usage_count,
                limit=policy.monthly_generation_limit,
                tier=current.subscription_tier.value,
            )

        raise AccountStoreError("Subscription tier kept changing while recording usage")

    def change_tier(
        self,
        account: "UserAccount",
        new_tier: Union[SubscriptionTier, str],
        reason: TierChangeReason = TierChangeReason.ADMIN_OVERRIDE,
        *,
        metadata: Optional[Dict[str, str]] = None,
    ) -> "UserAccount":
        """Persist a new tier without touching the period's usage count."""

        tier = SubscriptionTier.parse(new_tier)
        updated = self._repository.set_tier(account.id, tier)
        if updated is None:
            raise AccountNotFoundError(account.id)

        self._emit(
            EntitlementAuditEventType.TIER_CHANGED,
            updated,
            previous_tier=account.subscription_tier,
            reason=TierChangeReason(reason),
            metadata=metadata,
        )
        return updated

    def reset_monthly_usage(self, account: "UserAccount") -> "UserAccount":
        """Zero the usage counter and start a new one-month period."""

        next_reset_at = add_months(self._clock(), 1)
        updated = self._repository.reset_usage(account.id, next_reset_at=next_reset_at)
        if updated is None:
            raise AccountNotFoundError(account.id)
        self._emit(EntitlementAuditEventType.USAGE_RESET, updated)
        return updated

    def reset_expired_periods(
        self,
        now: Optional[datetime] = None,
        *,
        batch_size: int = 500,
    ) -> UsageResetSummary:
        """Reset every account whose billing period ended at or before ``now``."""

        current_time = now or self._clock()
        reset_count = 0
        failures = 0
        while True:
            due = self._repository.list_accounts_due_for_reset(current_time, limit=batch_size)
            if not due:
                break
            progressed = 0
            for account in due:
                try:
                    if not self._reset_if_due(account):
                        continue
                except (AccountNotFoundError, AccountStoreError):
                    failures += 1
                    logger.exception(
                        "Failed to reset monthly usage",
                        extra={"account_id": account.id},
                    )
                    continue
                progressed += 1
            reset_count += progressed
            if progressed == 0 or len(due) < batch_size:
                break
        return UsageResetSummary(accounts_reset=reset_count, failures=failures)

    def _reset_if_due(self, account: "UserAccount") -> bool:
        # The listing may be stale; another sweep could already have opened a new period.
        updated = self._repository.reset_usage_if_due(
            account.id,
            due_at=account.usage_period_resets_at,
            next_reset_at=add_months(self._clock(), 1),
        )
        if updated is None:
            if self._repository.get_account(account.id) is None:
                raise AccountNotFoundError(account.id)
            logger.debug("Usage period already rolled over", extra={"account_id": account.id})
            return False
        self._emit(EntitlementAuditEventType.USAGE_RESET, updated)
        return True

    def usage_summary(self, account: "UserAccount") -> UsageSummary:
        policy = self.get_policy(account.subscription_tier)
        evaluation = evaluate_generation_quota(
            usage_count=account.usage_count,
            limit=policy.monthly_generation_limit,
        )
        return UsageSummary(
            tier=policy.tier,
            usage_count=evaluation.usage_count,
            monthly_generation_limit=evaluation.limit,
            remaining_generations=evaluation.remaining,
            can_generate=evaluation.allowed,
            period_resets_at=account.usage_period_resets_at,
        )

    @staticmethod
    def upgrade_message(action: Union[Action, str]) -> str:
        return get_upgrade_message(parse_action(action))

    def _emit(
        self,
        event_type: EntitlementAuditEventType,
        account: "UserAccount",
        *,
        previous_tier: Optional[SubscriptionTier] = None,
        reason: Optional[TierChangeReason] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        self._event_logger.log(
            EntitlementAuditEvent(
                event_type=event_type,
                account_id=account.id,
                tier=account.subscription_tier,
                usage_count=account.usage_count,
                previous_tier=previous_tier,
                reason=reason,
                metadata=metadata or {},
            )
        )
