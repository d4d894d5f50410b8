from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List

import pytest
from fastapi import HTTPException

from tweetcourse import app_context, usage_reset
from tweetcourse.app.accounts import AccountService, AccountStoreError, InMemoryAccountRepository, UserAccount
from tweetcourse.app.entitlements import EntitlementEngine, SubscriptionTier
from tweetcourse.app.routes import entitlements as entitlement_routes
from tweetcourse.app.schemas.entitlements import EntitlementCheckRequest, SetSubscriptionRequest
from tweetcourse.config import load_app_config


NOW = datetime(2024, 6, 1, tzinfo=timezone.utc)


class RecordingLogger:
    def __init__(self) -> None:
        self.events: List[object] = []

    def log(self, event) -> None:
        self.events.append(event)


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def engine(repository) -> EntitlementEngine:
    return EntitlementEngine(repository, RecordingLogger(), clock=lambda: NOW)


@pytest.fixture
def account(repository) -> UserAccount:
    return repository.add(
        UserAccount(
            id="acct-1",
            external_id="user_1",
            email="one@example.com",
            usage_period_resets_at=NOW + timedelta(days=30),
        )
    )


@pytest.fixture(autouse=True)
def wiring(monkeypatch, repository, engine):
    config = load_app_config({"ADMIN_API_TOKEN": "admin-secret", "ALLOW_TEST_TIER_OVERRIDE": "false"})
    monkeypatch.setattr(app_context, "get_config", lambda: config)
    monkeypatch.setattr(entitlement_routes, "get_entitlement_engine", lambda: engine)
    monkeypatch.setattr(entitlement_routes, "get_account_service", lambda: AccountService(repository))
    return config


def test_list_tiers_returns_catalog() -> None:
    response = entitlement_routes.list_tiers()

    by_tier = {tier.tier: tier for tier in response.tiers}
    assert by_tier[SubscriptionTier.FREE].monthly_generation_limit == 1
    assert by_tier[SubscriptionTier.PRO].unlimited is True
    assert by_tier[SubscriptionTier.LIFETIME].price == 149
    dumped = response.model_dump(by_alias=True)
    assert "monthlyGenerationLimit" in dumped["tiers"][0]


def test_me_reports_usage_and_features(account) -> None:
    response = entitlement_routes.get_my_entitlements(current_account=account)

    assert response.tier == SubscriptionTier.FREE
    assert response.features["pdf_export"] is True
    assert response.features["notion_export"] is False
    assert response.usage.remaining_generations == 1
    assert response.usage.can_generate is True


def test_check_reports_rejection_reason(account) -> None:
    allowed = entitlement_routes.check_entitlement(
        EntitlementCheckRequest(action="export_pdf"),
        current_account=account,
    )
    denied = entitlement_routes.check_entitlement(
        EntitlementCheckRequest(action="notion_export"),
        current_account=account,
    )

    assert allowed.allowed is True
    assert denied.allowed is False
    assert denied.reason == "feature_not_entitled"
    assert denied.upgrade_message == "Upgrade to Pro to export courses to Notion"


def test_check_rejects_unknown_action(account) -> None:
    with pytest.raises(HTTPException) as exc:
        entitlement_routes.check_entitlement(EntitlementCheckRequest(action="fly"), current_account=account)

    assert exc.value.status_code == 400


def test_record_generation_then_quota_exceeded(account, repository) -> None:
    response = entitlement_routes.record_generation(current_account=account)
    assert response.usage.usage_count == 1
    assert response.usage.can_generate is False

    with pytest.raises(HTTPException) as exc:
        entitlement_routes.record_generation(current_account=repository.get_account(account.id))

    assert exc.value.status_code == 402
    assert exc.value.detail["reason"] == "quota_exceeded"
    assert exc.value.detail["upgradeMessage"] == "Upgrade to Pro for unlimited course generations"


def test_record_generation_maps_store_errors_to_503(monkeypatch, account, engine) -> None:
    def broken(_account):
        raise AccountStoreError("database unavailable")

    monkeypatch.setattr(engine, "record_usage", broken)

    with pytest.raises(HTTPException) as exc:
        entitlement_routes.record_generation(current_account=account)

    assert exc.value.status_code == 503
    assert exc.value.detail["retryable"] is True


def test_admin_can_set_subscription_by_subject(account, repository) -> None:
    response = entitlement_routes.set_subscription(
        SetSubscriptionRequest(userId="user_1", tier="PRO"),
        x_admin_token="admin-secret",
    )

    assert response.tier == SubscriptionTier.PRO
    assert response.previous_tier == SubscriptionTier.FREE
    assert repository.get_account(account.id).subscription_tier == SubscriptionTier.PRO


def test_set_subscription_rejects_invalid_tier(account) -> None:
    with pytest.raises(HTTPException) as exc:
        entitlement_routes.set_subscription(
            SetSubscriptionRequest(userId="user_1", tier="enterprise"),
            x_admin_token="admin-secret",
        )

    assert exc.value.status_code == 400


def test_set_subscription_unknown_account(account) -> None:
    with pytest.raises(HTTPException) as exc:
        entitlement_routes.set_subscription(
            SetSubscriptionRequest(userId="ghost", tier="pro"),
            x_admin_token="admin-secret",
        )

    assert exc.value.status_code == 404


def test_set_subscription_forbidden_without_admin_or_test_mode(account) -> None:
    with pytest.raises(HTTPException) as exc:
        entitlement_routes.set_subscription(
            SetSubscriptionRequest(tier="pro"),
            x_admin_token="wrong",
        )

    assert exc.value.status_code == 403


def test_test_mode_lets_caller_change_own_tier(monkeypatch, account, repository) -> None:
    config = load_app_config({"ALLOW_TEST_TIER_OVERRIDE": "true"})
    monkeypatch.setattr(app_context, "get_config", lambda: config)
    monkeypatch.setattr(entitlement_routes, "_get_current_account", lambda **_: account)

    response = entitlement_routes.set_subscription(
        SetSubscriptionRequest(tier="lifetime"),
        x_admin_token=None,
        session_token="token",
        authorization=None,
    )
    assert response.tier == SubscriptionTier.LIFETIME

    with pytest.raises(HTTPException) as exc:
        entitlement_routes.set_subscription(
            SetSubscriptionRequest(userId="someone-else", tier="pro"),
            x_admin_token=None,
            session_token="token",
            authorization=None,
        )
    assert exc.value.status_code == 403


def test_reset_requires_admin_token() -> None:
    with pytest.raises(HTTPException) as exc:
        entitlement_routes._require_admin(x_admin_token=None)

    assert exc.value.status_code == 403
    entitlement_routes._require_admin(x_admin_token="admin-secret")


def test_reset_runs_usage_reset_job(monkeypatch, repository, engine) -> None:
    repository.add(UserAccount(id="due", external_id="u-due", usage_count=1, usage_period_resets_at=NOW))
    monkeypatch.setattr(usage_reset, "get_entitlement_engine", lambda: engine)
    monkeypatch.setattr(usage_reset, "get_usage_reset_batch_size", lambda: 100)
    usage_reset._reset_metrics_for_testing()

    response = entitlement_routes.reset_usage(_admin=None)

    assert response.accounts_reset == 1
    assert response.failures == 0
    assert repository.get_account("due").usage_count == 0
