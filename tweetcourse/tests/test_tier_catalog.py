from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tweetcourse.app.entitlements import (
    TIER_POLICIES,
    UNLIMITED,
    Feature,
    InvalidTierError,
    QuotaAction,
    SubscriptionTier,
    TierPolicy,
    get_policy,
    get_upgrade_message,
    parse_action,
)
from tweetcourse.app.entitlements.models import add_months


def test_free_policy_allows_one_generation_and_pdf_only() -> None:
    policy = get_policy(SubscriptionTier.FREE)

    assert policy.monthly_generation_limit == 1
    assert policy.is_unlimited is False
    assert policy.features == frozenset({Feature.PDF_EXPORT})
    assert policy.price_usd == 0


@pytest.mark.parametrize("tier", [SubscriptionTier.PRO, SubscriptionTier.LIFETIME])
def test_paid_policies_are_unlimited_with_every_feature(tier: SubscriptionTier) -> None:
    policy = get_policy(tier)

    assert policy.monthly_generation_limit is UNLIMITED
    assert policy.is_unlimited is True
    assert all(policy.to_flags().values())


def test_catalog_covers_every_tier() -> None:
    assert set(TIER_POLICIES) == set(SubscriptionTier)
    assert [policy.price_usd for policy in TIER_POLICIES.values()] == [0, 19, 149]


def test_catalog_is_read_only() -> None:
    with pytest.raises(TypeError):
        TIER_POLICIES[SubscriptionTier.FREE] = TIER_POLICIES[SubscriptionTier.PRO]  # type: ignore[index]


@pytest.mark.parametrize("raw", ["pro", " PRO ", "Pro"])
def test_tier_parse_normalises_case_and_whitespace(raw: str) -> None:
    assert SubscriptionTier.parse(raw) == SubscriptionTier.PRO
    assert get_policy(raw).tier == SubscriptionTier.PRO


@pytest.mark.parametrize("raw", ["enterprise", "", None, 3])
def test_tier_parse_rejects_unknown_values(raw) -> None:
    with pytest.raises(InvalidTierError) as exc:
        get_policy(raw)

    assert exc.value.value == raw


def test_negative_limit_is_rejected() -> None:
    with pytest.raises(ValueError):
        TierPolicy(
            tier=SubscriptionTier.FREE,
            display_name="Broken",
            monthly_generation_limit=-1,
            features=frozenset(),
        )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("generation", QuotaAction.GENERATION),
        ("generate", QuotaAction.GENERATION),
        ("export_pdf", Feature.PDF_EXPORT),
        ("export_notion", Feature.NOTION_EXPORT),
        ("remove_watermark", Feature.WATERMARK_FREE),
        ("custom_branding", Feature.CUSTOM_BRANDING),
    ],
)
def test_parse_action_accepts_canonical_and_legacy_names(raw: str, expected) -> None:
    assert parse_action(raw) == expected


def test_upgrade_message_falls_back_to_default() -> None:
    assert get_upgrade_message(Feature.NOTION_EXPORT) == "Upgrade to Pro to export courses to Notion"
    assert get_upgrade_message(Feature.PDF_EXPORT) == "Upgrade to Pro for premium features"


def test_add_months_clamps_to_month_end() -> None:
    start = datetime(2024, 1, 31, 8, 30, tzinfo=timezone.utc)

    assert add_months(start) == datetime(2024, 2, 29, 8, 30, tzinfo=timezone.utc)
    assert add_months(datetime(2024, 12, 15, tzinfo=timezone.utc)) == datetime(2025, 1, 15, tzinfo=timezone.utc)
