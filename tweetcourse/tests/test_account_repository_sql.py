"""Tests for the SQL issued by the PostgreSQL account repository."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import psycopg2
import pytest

from tweetcourse.app.accounts import AccountStoreError, PostgresAccountRepository, UserAccount
from tweetcourse.app.entitlements import EntitlementEngine, SubscriptionTier
from tweetcourse.app.feature_gates import QuotaExceededError


NOW = datetime(2024, 6, 1, 8, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, *, fetchone_result=None, fetchall_result=None, error=None):
        self.fetchone_result = fetchone_result
        self.fetchall_result = list(fetchall_result or [])
        self.error = error
        self.execute_calls = []
        self.closed = False

    def execute(self, query, params=None):
        self.execute_calls.append((" ".join(query.split()), params))
        if self.error is not None:
            raise self.error

    def fetchone(self):
        return self.fetchone_result

    def fetchall(self):
        return list(self.fetchall_result)

    def close(self):
        self.closed = True


class FakeConnection:
    def __init__(self, *cursors):
        self._cursors = list(cursors)
        self.cursor_calls = []

    def cursor(self, *args, **kwargs):
        self.cursor_calls.append((args, kwargs))
        if not self._cursors:
            raise AssertionError("No cursors configured")
        return self._cursors.pop(0)


class NullEventLogger:
    def log(self, event) -> None:
        pass


def _row(*, tier: str = "free", usage_count: int = 0) -> dict:
    return {
        "id": "acct-1",
        "external_id": "user_1",
        "email": "one@example.com",
        "subscription_tier": tier,
        "usage_count": usage_count,
        "usage_period_resets_at": NOW + timedelta(days=20),
        "last_activity_at": None,
        "billing_customer_code": None,
        "billing_subscription_code": None,
        "created_at": NOW,
        "updated_at": NOW,
    }


def test_increment_usage_is_a_single_guarded_update():
    cursor = FakeCursor(fetchone_result=_row(usage_count=1))
    repository = PostgresAccountRepository(conn=FakeConnection(cursor))

    account = repository.increment_usage_if_allowed(
        "acct-1", expected_tier=SubscriptionTier.FREE, limit=1
    )

    assert account.usage_count == 1
    assert len(cursor.execute_calls) == 1
    query, params = cursor.execute_calls[0]
    assert query.startswith("UPDATE accounts SET usage_count = usage_count + 1")
    assert "WHERE id = %(account_id)s" in query
    assert "AND subscription_tier = %(tier)s" in query
    assert "AND (%(limit)s IS NULL OR usage_count < %(limit)s)" in query
    assert query.endswith("RETURNING *")
    assert params == {"account_id": "acct-1", "tier": "free", "limit": 1}
    assert cursor.closed


def test_increment_usage_passes_null_limit_for_unlimited_tiers():
    cursor = FakeCursor(fetchone_result=_row(tier="pro", usage_count=42))
    repository = PostgresAccountRepository(conn=FakeConnection(cursor))

    account = repository.increment_usage_if_allowed(
        "acct-1", expected_tier=SubscriptionTier.PRO, limit=None
    )

    assert account.subscription_tier == SubscriptionTier.PRO
    assert cursor.execute_calls[0][1] == {"account_id": "acct-1", "tier": "pro", "limit": None}


def test_unaffected_increment_is_reported_as_quota_exceeded():
    increment = FakeCursor(fetchone_result=None)
    reread = FakeCursor(fetchone_result=_row(usage_count=1))
    repository = PostgresAccountRepository(conn=FakeConnection(increment, reread))
    engine = EntitlementEngine(repository, NullEventLogger(), clock=lambda: NOW)

    with pytest.raises(QuotaExceededError) as exc:
        engine.record_usage(UserAccount(**_row()))

    assert exc.value.payload["usageCount"] == 1
    assert increment.execute_calls[0][0].startswith("UPDATE accounts")
    assert reread.execute_calls[0][0].startswith("SELECT * FROM accounts WHERE id = %s")


def test_reset_if_due_guards_on_period_end():
    cursor = FakeCursor(fetchone_result=None)
    repository = PostgresAccountRepository(conn=FakeConnection(cursor))
    next_reset = NOW + timedelta(days=30)

    result = repository.reset_usage_if_due("acct-1", due_at=NOW, next_reset_at=next_reset)

    assert result is None
    query, params = cursor.execute_calls[0]
    assert "AND usage_period_resets_at <= %(due_at)s" in query
    assert params == {"account_id": "acct-1", "due_at": NOW, "next_reset_at": next_reset}


def test_driver_errors_become_retryable_store_errors():
    cursor = FakeCursor(error=psycopg2.OperationalError("server closed the connection"))
    repository = PostgresAccountRepository(conn=FakeConnection(cursor))

    with pytest.raises(AccountStoreError) as exc:
        repository.increment_usage_if_allowed("acct-1", expected_tier=SubscriptionTier.FREE, limit=1)

    assert exc.value.retryable is True
    assert cursor.closed
