"""Tests for account provisioning and the in-memory account store."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tweetcourse.app.accounts import (
    AccountNotFoundError,
    AccountService,
    InMemoryAccountRepository,
    UserAccount,
)
from tweetcourse.app.entitlements import InvalidTierError, SubscriptionTier


NOW = datetime(2024, 1, 31, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def repository() -> InMemoryAccountRepository:
    return InMemoryAccountRepository()


@pytest.fixture
def service(repository) -> AccountService:
    return AccountService(repository, clock=lambda: NOW)


def test_resolve_account_provisions_free_account_once(service, repository) -> None:
    first = service.resolve_account("user_abc", "alice@example.com")
    second = service.resolve_account("user_abc", "alice@example.com")

    assert first.id == second.id
    assert first.subscription_tier == SubscriptionTier.FREE
    assert first.usage_count == 0
    assert first.usage_period_resets_at == datetime(2024, 2, 29, 9, 0, tzinfo=timezone.utc)
    assert repository.get_account_by_external_id("user_abc").email == "alice@example.com"


def test_resolve_account_requires_subject(service) -> None:
    with pytest.raises(ValueError):
        service.resolve_account("")


def test_find_account_accepts_internal_or_external_id(service) -> None:
    account = service.resolve_account("user_xyz")

    assert service.find_account(account.id).id == account.id
    assert service.find_account("user_xyz").id == account.id
    with pytest.raises(AccountNotFoundError):
        service.find_account("missing")


def test_get_account_raises_for_unknown_id(service) -> None:
    with pytest.raises(AccountNotFoundError) as exc:
        service.get_account("nope")

    assert exc.value.account_id == "nope"


def test_increment_respects_limit_and_expected_tier(repository) -> None:
    account = repository.add(UserAccount(id="a1", external_id="u1"))

    assert repository.increment_usage_if_allowed("a1", expected_tier=SubscriptionTier.PRO, limit=None) is None
    assert repository.increment_usage_if_allowed("a1", expected_tier=SubscriptionTier.FREE, limit=1).usage_count == 1
    assert repository.increment_usage_if_allowed("a1", expected_tier=SubscriptionTier.FREE, limit=1) is None
    assert repository.get_account(account.id).usage_count == 1


def test_billing_references_are_kept_when_not_supplied(repository) -> None:
    repository.add(UserAccount(id="a1", external_id="u1"))

    repository.update_billing_references("a1", customer_code="CUS_1", subscription_code="SUB_1")
    updated = repository.update_billing_references("a1", customer_code=None, subscription_code=None)

    assert updated.billing_customer_code == "CUS_1"
    assert repository.get_account_by_subscription_code("SUB_1").id == "a1"


def test_list_accounts_due_for_reset_orders_by_due_date(repository) -> None:
    repository.add(UserAccount(id="late", external_id="u1", usage_period_resets_at=NOW - timedelta(days=1)))
    repository.add(UserAccount(id="later", external_id="u2", usage_period_resets_at=NOW - timedelta(days=5)))
    repository.add(UserAccount(id="future", external_id="u3", usage_period_resets_at=NOW + timedelta(days=5)))
    repository.add(UserAccount(id="never", external_id="u4"))

    due = repository.list_accounts_due_for_reset(NOW, limit=10)

    assert [account.id for account in due] == ["later", "late"]


def test_user_account_rejects_unknown_tier() -> None:
    with pytest.raises(ValueError) as exc:
        UserAccount(id="a1", external_id="u1", subscription_tier="gold")

    assert "gold" in str(exc.value)
    assert issubclass(InvalidTierError, ValueError)


def test_user_account_rejects_negative_usage() -> None:
    with pytest.raises(ValueError):
        UserAccount(id="a1", external_id="u1", usage_count=-1)
