"""API routes exposing tier policies, entitlement checks and usage accounting."""
from __future__ import annotations

import hmac
import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, status

from ... import app_context
from ..accounts import AccountNotFoundError, AccountStoreError
from ..entitlements import InvalidTierError, SubscriptionTier, TierChangeReason, parse_action
from ..feature_gates import FeatureGateError
from ..schemas.entitlements import (
    AccountEntitlementsResponse,
    EntitlementCheckRequest,
    EntitlementCheckResponse,
    RecordUsageResponse,
    SetSubscriptionRequest,
    SetSubscriptionResponse,
    TierListResponse,
    TierPolicyOut,
    UsageResetResponse,
    UsageSummaryOut,
)
from ..services.entitlements import get_account_service, get_entitlement_engine

logger = logging.getLogger("entitlements")

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_account(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> Any:
    return app_context.get_current_account(session_token=session_token, authorization=authorization)


def _is_admin(admin_token: Optional[str]) -> bool:
    expected = app_context.get_config().admin_api_token
    if not expected or not admin_token:
        return False
    return hmac.compare_digest(expected, admin_token)


def _require_admin(x_admin_token: Optional[str] = Header(None)) -> None:
    if not _is_admin(x_admin_token):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin token required")


def _store_unavailable(exc: AccountStoreError) -> HTTPException:
    logger.warning("Account store unavailable", extra={"retryable": exc.retryable})
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={"error": "store_unavailable", "message": str(exc), "retryable": exc.retryable},
    )


router = APIRouter(tags=["entitlements"])


@router.get("/api/entitlements/tiers", response_model=TierListResponse)
def list_tiers() -> TierListResponse:
    """Public pricing and feature table."""

    engine = get_entitlement_engine()
    return TierListResponse(
        tiers=[TierPolicyOut.from_policy(policy) for policy in engine.policies.values()]
    )


@router.get("/api/entitlements/me", response_model=AccountEntitlementsResponse)
def get_my_entitlements(
    *,
    current_account=Depends(_get_current_account),
) -> AccountEntitlementsResponse:
    engine = get_entitlement_engine()
    policy = engine.get_policy(current_account.subscription_tier)
    return AccountEntitlementsResponse(
        account_id=current_account.id,
        email=current_account.email,
        tier=policy.tier,
        features=policy.to_flags(),
        usage=UsageSummaryOut.from_summary(engine.usage_summary(current_account)),
    )


@router.post("/api/entitlements/check", response_model=EntitlementCheckResponse)
def check_entitlement(
    payload: EntitlementCheckRequest,
    *,
    current_account=Depends(_get_current_account),
) -> EntitlementCheckResponse:
    engine = get_entitlement_engine()
    try:
        action = parse_action(payload.action)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    tier = SubscriptionTier.parse(current_account.subscription_tier)
    try:
        engine.require(current_account, action)
    except FeatureGateError as exc:
        return EntitlementCheckResponse(
            action=action.value,
            allowed=False,
            tier=tier,
            reason=exc.reason.value if exc.reason else exc.code,
            upgrade_message=engine.upgrade_message(action),
        )
    return EntitlementCheckResponse(action=action.value, allowed=True, tier=tier)


@router.post("/api/usage/generations", response_model=RecordUsageResponse)
def record_generation(
    *,
    current_account=Depends(_get_current_account),
) -> RecordUsageResponse:
    """Consume one generation from the caller's monthly quota."""

    engine = get_entitlement_engine()
    try:
        updated = engine.record_usage(current_account)
    except FeatureGateError as exc:
        raise exc.to_http_exception() from exc
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except AccountStoreError as exc:
        raise _store_unavailable(exc) from exc
    return RecordUsageResponse(
        tier=updated.subscription_tier,
        usage=UsageSummaryOut.from_summary(engine.usage_summary(updated)),
    )


@router.post("/api/users/subscription", response_model=SetSubscriptionResponse)
def set_subscription(
    payload: SetSubscriptionRequest,
    *,
    x_admin_token: Optional[str] = Header(None),
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> SetSubscriptionResponse:
    """Override a tier, either with the admin token or, in test mode, for the caller."""

    try:
        tier = SubscriptionTier.parse(payload.tier)
    except InvalidTierError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid subscription tier. Must be: free, pro, or lifetime",
        ) from exc

    accounts = get_account_service()
    if _is_admin(x_admin_token):
        if not payload.user_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="userId is required")
        reason = TierChangeReason.ADMIN_OVERRIDE
        try:
            account = accounts.find_account(payload.user_id)
        except AccountNotFoundError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    elif app_context.get_config().allow_test_tier_override:
        reason = TierChangeReason.TEST_OVERRIDE
        account = _get_current_account(session_token=session_token, authorization=authorization)
        if payload.user_id and payload.user_id not in {account.id, account.external_id}:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Cannot change the subscription of another user",
            )
    else:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tier overrides are disabled")

    engine = get_entitlement_engine()
    previous_tier = account.subscription_tier
    try:
        updated = engine.change_tier(account, tier, reason)
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except AccountStoreError as exc:
        raise _store_unavailable(exc) from exc
    return SetSubscriptionResponse.from_change(updated, previous_tier)


@router.post("/api/usage/reset", response_model=UsageResetResponse)
def reset_usage(
    *,
    _admin: None = Depends(_require_admin),
) -> UsageResetResponse:
    """Reset every account whose usage period has ended."""

    from ...usage_reset import run_usage_reset_job

    try:
        summary = run_usage_reset_job()
    except AccountStoreError as exc:
        raise _store_unavailable(exc) from exc
    return UsageResetResponse(accounts_reset=summary.accounts_reset, failures=summary.failures)
