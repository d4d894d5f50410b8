"""Domain models for payment-provider webhooks."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..entitlements.models import SubscriptionTier


class BillingWebhookEventType(str, Enum):
    """Webhook event types that the application reacts to."""

    CHARGE_SUCCESS = "charge.success"
    SUBSCRIPTION_CREATE = "subscription.create"
    SUBSCRIPTION_ENABLE = "subscription.enable"
    SUBSCRIPTION_DISABLE = "subscription.disable"
    INVOICE_CREATE = "invoice.create"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"


class BillingWebhookEvent(BaseModel):
    """Inbound webhook event recorded for idempotent processing."""

    event_id: str
    event_type: BillingWebhookEventType
    payload: Dict[str, object]
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)


class BillingWebhookOutcome(str, Enum):
    """What happened as a result of processing a webhook."""

    TIER_CHANGED = "tier_changed"
    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    ACCOUNT_NOT_FOUND = "account_not_found"
    IGNORED = "ignored"


class BillingWebhookResult(BaseModel):
    """Result returned to the webhook route."""

    outcome: BillingWebhookOutcome
    event_id: Optional[str] = None
    account_id: Optional[str] = None
    tier: Optional[SubscriptionTier] = None

    model_config = ConfigDict(frozen=True)


class BillingAuditEventType(str, Enum):
    """Audit events emitted for billing-driven changes."""

    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    INVOICE_CREATED = "invoice.created"
    SUBSCRIPTION_ACTIVATED = "subscription.activated"
    SUBSCRIPTION_CANCELED = "subscription.canceled"


class BillingAuditEvent(BaseModel):
    """Captured billing audit event."""

    event_type: BillingAuditEventType
    account_id: Optional[str] = None
    subscription_code: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    model_config = ConfigDict(frozen=True)
