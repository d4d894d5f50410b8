from datetime import timedelta

import pytest
from fastapi import HTTPException

import tweetcourse.main as app_main
from tweetcourse.app.accounts import AccountService, AccountStoreError, InMemoryAccountRepository
from tweetcourse.app.entitlements import SubscriptionTier


@pytest.fixture
def repository(monkeypatch):
    repository = InMemoryAccountRepository()
    monkeypatch.setattr(app_main, "get_account_service", lambda: AccountService(repository))
    return repository


def test_get_current_account_missing_token_is_unauthorized(repository):
    with pytest.raises(HTTPException) as exc:
        app_main.get_current_account(session_token=None, authorization=None)

    assert exc.value.status_code == 401


def test_get_current_account_invalid_token_is_unauthorized(repository):
    with pytest.raises(HTTPException) as exc:
        app_main.get_current_account(session_token="not-a-valid-token", authorization=None)

    assert exc.value.status_code == 401


def test_get_current_account_expired_token_is_unauthorized(repository):
    expired = app_main.create_access_token(subject="user_1", expires_delta=timedelta(minutes=-5))

    with pytest.raises(HTTPException):
        app_main.get_current_account(session_token=expired, authorization=None)

    assert repository.get_account_by_external_id("user_1") is None


def test_valid_session_cookie_provisions_free_account(repository):
    token = app_main.create_access_token(subject="user_1", email="one@example.com")

    account = app_main.get_current_account(session_token=token, authorization=None)

    assert account.external_id == "user_1"
    assert account.email == "one@example.com"
    assert account.subscription_tier == SubscriptionTier.FREE
    assert account.usage_count == 0


def test_bearer_header_is_accepted(repository):
    token = app_main.create_access_token(subject="user_2")

    first = app_main.get_current_account(session_token=None, authorization=f"Bearer {token}")
    second = app_main.get_current_account(session_token=None, authorization=f"bearer {token}")

    assert first.id == second.id


def test_non_bearer_authorization_is_ignored(repository):
    token = app_main.create_access_token(subject="user_3")

    with pytest.raises(HTTPException) as exc:
        app_main.get_current_account(session_token=None, authorization=f"Basic {token}")

    assert exc.value.status_code == 401


def test_store_failure_during_resolution_is_service_unavailable(monkeypatch):
    class BrokenService:
        def resolve_account(self, external_id, email=""):
            raise AccountStoreError("connection refused")

    monkeypatch.setattr(app_main, "get_account_service", lambda: BrokenService())
    token = app_main.create_access_token(subject="user_4")

    with pytest.raises(HTTPException) as exc:
        app_main.get_current_account(session_token=token, authorization=None)

    assert exc.value.status_code == 503


def test_resolve_identity_reads_subject_and_email():
    token = app_main.create_access_token(subject="user_5", email="five@example.com")

    identity = app_main.resolve_identity_from_token(token)

    assert identity.subject == "user_5"
    assert identity.email == "five@example.com"
    assert app_main.resolve_identity_from_token("garbage") is None
