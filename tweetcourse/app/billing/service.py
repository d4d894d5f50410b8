"""Maps payment-provider webhooks onto subscription tier changes."""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Protocol

from ..accounts.models import UserAccount
from ..accounts.repository import AccountRepository
from ..entitlements.models import SubscriptionTier, TierChangeReason
from ..entitlements.service import EntitlementEngine
from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    BillingWebhookOutcome,
    BillingWebhookResult,
)

logger = logging.getLogger("billing")

SIGNATURE_HEADER = "x-paystack-signature"

_UPGRADE_EVENTS = {
    BillingWebhookEventType.CHARGE_SUCCESS,
    BillingWebhookEventType.SUBSCRIPTION_CREATE,
    BillingWebhookEventType.SUBSCRIPTION_ENABLE,
}


class WebhookSignatureError(Exception):
    """Raised when a webhook body cannot be authenticated."""

    def __init__(self, message: str, *, missing: bool = False) -> None:
        self.missing = missing
        super().__init__(message)


class BillingEventLogger(Protocol):
    """Captures structured billing audit events."""

    def log(self, event: BillingAuditEvent) -> None:
        ...


class BillingRepository(Protocol):
    """Persistence operations required by the billing service."""

    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        ...

    def release_webhook_event(self, event_id: str) -> None:
        ...


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Return the lowercase hex HMAC-SHA512 of ``raw_body``."""

    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha512).hexdigest()


_dataclass_kwargs = {"slots": True} if sys.version_info >= (3, 10) else {}


@dataclass(**_dataclass_kwargs)
class BillingService:
    """Verifies, de-duplicates and applies billing webhooks."""

    accounts: AccountRepository
    engine: EntitlementEngine
    repository: BillingRepository
    event_logger: BillingEventLogger
    webhook_secret: str = ""

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        if not signature:
            raise WebhookSignatureError("No signature provided", missing=True)
        if not self.webhook_secret:
            raise WebhookSignatureError("Webhook secret is not configured")
        expected = compute_signature(self.webhook_secret, raw_body)
        if not hmac.compare_digest(expected, signature.strip().lower()):
            raise WebhookSignatureError("Invalid signature")

    def parse_event(
        self,
        raw_body: bytes,
        *,
        received_at: Optional[datetime] = None,
    ) -> Optional[BillingWebhookEvent]:
        """Decode a webhook body; returns ``None`` for event types we do not handle."""

        try:
            document = json.loads(raw_body.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ValueError("Webhook body is not valid JSON") from exc
        if not isinstance(document, dict):
            raise ValueError("Webhook body must be a JSON object")

        event_name = str(document.get("event", ""))
        try:
            event_type = BillingWebhookEventType(event_name)
        except ValueError:
            logger.info("Unhandled webhook event", extra={"webhook_event": event_name})
            return None

        data = document.get("data")
        payload: Dict[str, object] = data if isinstance(data, dict) else {}
        provider_id = payload.get("id") or payload.get("reference")
        if provider_id:
            event_id = f"{event_type.value}:{provider_id}"
        else:
            event_id = hashlib.sha256(raw_body).hexdigest()

        return BillingWebhookEvent(
            event_id=event_id,
            event_type=event_type,
            payload=payload,
            received_at=received_at or datetime.now(timezone.utc),
        )

    def handle_webhook(self, event: BillingWebhookEvent) -> BillingWebhookResult:
        stored = self.repository.record_webhook_event(event)
        if not stored:
            logger.info("Duplicate webhook ignored", extra={"event_id": event.event_id})
            return BillingWebhookResult(outcome=BillingWebhookOutcome.DUPLICATE, event_id=event.event_id)

        try:
            result = self._dispatch(event)
        except Exception:
            # Let the provider's retry reprocess the event.
            self.repository.release_webhook_event(event.event_id)
            raise
        if result.outcome == BillingWebhookOutcome.ACCOUNT_NOT_FOUND:
            # The account may be provisioned before the provider redelivers.
            self.repository.release_webhook_event(event.event_id)
        return result

    def _dispatch(self, event: BillingWebhookEvent) -> BillingWebhookResult:
        if event.event_type in _UPGRADE_EVENTS:
            return self._handle_upgrade(event)
        if event.event_type == BillingWebhookEventType.SUBSCRIPTION_DISABLE:
            return self._handle_disable(event)
        if event.event_type == BillingWebhookEventType.INVOICE_PAYMENT_FAILED:
            return self._handle_invoice_event(event, BillingAuditEventType.PAYMENT_FAILED)
        return self._handle_invoice_event(event, BillingAuditEventType.INVOICE_CREATED)

    def _handle_upgrade(self, event: BillingWebhookEvent) -> BillingWebhookResult:
        payload = event.payload
        # Validate the plan before anything is written to the account.
        tier = _tier_from_metadata(payload)
        account = self._account_from_metadata(payload)
        if account is None:
            subscription_code = _optional_str(payload.get("subscription_code"))
            if subscription_code:
                account = self.accounts.get_account_by_subscription_code(subscription_code)
        if account is None:
            logger.error(
                "No account found for billing webhook",
                extra={"event_id": event.event_id, "webhook_event": event.event_type.value},
            )
            return BillingWebhookResult(
                outcome=BillingWebhookOutcome.ACCOUNT_NOT_FOUND,
                event_id=event.event_id,
            )

        customer_code = _customer_code(payload)
        subscription_code = _optional_str(payload.get("subscription_code"))
        if customer_code or subscription_code:
            account = (
                self.accounts.update_billing_references(
                    account.id,
                    customer_code=customer_code,
                    subscription_code=subscription_code,
                )
                or account
            )

        updated = self.engine.change_tier(
            account,
            tier,
            TierChangeReason.BILLING,
            metadata={"event_id": event.event_id, "webhook_event": event.event_type.value},
        )

        audit_type = (
            BillingAuditEventType.PAYMENT_SUCCEEDED
            if event.event_type == BillingWebhookEventType.CHARGE_SUCCESS
            else BillingAuditEventType.SUBSCRIPTION_ACTIVATED
        )
        audit_metadata = {"tier": tier.value}
        reference = _optional_str(payload.get("reference"))
        if reference:
            audit_metadata["reference"] = reference
        if payload.get("amount") is not None:
            audit_metadata["amount"] = str(payload.get("amount"))
        self.event_logger.log(
            BillingAuditEvent(
                event_type=audit_type,
                account_id=updated.id,
                subscription_code=subscription_code,
                metadata=audit_metadata,
            )
        )
        return BillingWebhookResult(
            outcome=BillingWebhookOutcome.TIER_CHANGED,
            event_id=event.event_id,
            account_id=updated.id,
            tier=updated.subscription_tier,
        )

    def _handle_disable(self, event: BillingWebhookEvent) -> BillingWebhookResult:
        subscription_code = _optional_str(event.payload.get("subscription_code"))
        account = None
        if subscription_code:
            account = self.accounts.get_account_by_subscription_code(subscription_code)
        if account is None:
            account = self._account_from_metadata(event.payload)
        if account is None:
            logger.error(
                "No account found for subscription disable",
                extra={"event_id": event.event_id, "subscription_code": subscription_code},
            )
            return BillingWebhookResult(
                outcome=BillingWebhookOutcome.ACCOUNT_NOT_FOUND,
                event_id=event.event_id,
            )

        updated = self.engine.change_tier(
            account,
            SubscriptionTier.FREE,
            TierChangeReason.BILLING,
            metadata={"event_id": event.event_id, "webhook_event": event.event_type.value},
        )
        self.event_logger.log(
            BillingAuditEvent(
                event_type=BillingAuditEventType.SUBSCRIPTION_CANCELED,
                account_id=updated.id,
                subscription_code=subscription_code,
                metadata={"reason": "subscription_disabled"},
            )
        )
        return BillingWebhookResult(
            outcome=BillingWebhookOutcome.TIER_CHANGED,
            event_id=event.event_id,
            account_id=updated.id,
            tier=updated.subscription_tier,
        )

    def _handle_invoice_event(
        self,
        event: BillingWebhookEvent,
        audit_type: BillingAuditEventType,
    ) -> BillingWebhookResult:
        subscription = event.payload.get("subscription")
        subscription_code = _optional_str(event.payload.get("subscription_code"))
        if not subscription_code and isinstance(subscription, Mapping):
            subscription_code = _optional_str(subscription.get("subscription_code"))
        account = (
            self.accounts.get_account_by_subscription_code(subscription_code)
            if subscription_code
            else None
        )
        self.event_logger.log(
            BillingAuditEvent(
                event_type=audit_type,
                account_id=account.id if account else None,
                subscription_code=subscription_code,
                metadata={"event_id": event.event_id},
            )
        )
        return BillingWebhookResult(
            outcome=BillingWebhookOutcome.RECORDED,
            event_id=event.event_id,
            account_id=account.id if account else None,
        )

    def _account_from_metadata(self, payload: Mapping[str, Any]) -> Optional[UserAccount]:
        user_id = _user_id_from_metadata(payload)
        if not user_id:
            return None
        return self.accounts.get_account_by_external_id(user_id) or self.accounts.get_account(user_id)


def _user_id_from_metadata(payload: Mapping[str, Any]) -> Optional[str]:
    metadata = payload.get("metadata")
    if not isinstance(metadata, Mapping):
        return None
    for key in ("user_id", "userId"):
        value = _optional_str(metadata.get(key))
        if value:
            return value
    custom_fields = metadata.get("custom_fields")
    if isinstance(custom_fields, list):
        for field in custom_fields:
            if isinstance(field, Mapping) and field.get("variable_name") == "user_id":
                value = _optional_str(field.get("value"))
                if value:
                    return value
    return None


def _tier_from_metadata(payload: Mapping[str, Any]) -> SubscriptionTier:
    metadata = payload.get("metadata")
    plan = None
    if isinstance(metadata, Mapping):
        plan = metadata.get("plan") or metadata.get("tier")
    if not plan:
        return SubscriptionTier.PRO
    tier = SubscriptionTier.parse(plan)
    if tier == SubscriptionTier.FREE:
        raise ValueError("Paid webhook events cannot grant the free tier")
    return tier


def _customer_code(payload: Mapping[str, Any]) -> Optional[str]:
    customer = payload.get("customer")
    if isinstance(customer, Mapping):
        return _optional_str(customer.get("customer_code"))
    return None


def _optional_str(value: object) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


__all__ = [
    "BillingEventLogger",
    "BillingRepository",
    "BillingService",
    "SIGNATURE_HEADER",
    "WebhookSignatureError",
    "compute_signature",
]
