"""Billing domain package translating provider webhooks into tier changes."""

from .models import (
    BillingAuditEvent,
    BillingAuditEventType,
    BillingWebhookEvent,
    BillingWebhookEventType,
    BillingWebhookOutcome,
    BillingWebhookResult,
)
from .repository import InMemoryBillingRepository, PostgresBillingRepository
from .service import (
    SIGNATURE_HEADER,
    BillingEventLogger,
    BillingRepository,
    BillingService,
    WebhookSignatureError,
    compute_signature,
)

__all__ = [
    "SIGNATURE_HEADER",
    "BillingAuditEvent",
    "BillingAuditEventType",
    "BillingEventLogger",
    "BillingRepository",
    "BillingService",
    "BillingWebhookEvent",
    "BillingWebhookEventType",
    "BillingWebhookOutcome",
    "BillingWebhookResult",
    "InMemoryBillingRepository",
    "PostgresBillingRepository",
    "WebhookSignatureError",
    "compute_signature",
]
