"""Application wiring for the billing service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ...app_context import get_config
from ..billing import BillingAuditEvent, BillingAuditEventType, BillingEventLogger, BillingService
from ..billing.repository import PostgresBillingRepository
from .entitlements import get_account_repository, get_entitlement_engine


logger = logging.getLogger("billing")


class LoggingBillingEventLogger(BillingEventLogger):
    """Simple event logger forwarding billing audit events to logging."""

    def log(self, event: BillingAuditEvent) -> None:
        if event.event_type == BillingAuditEventType.PAYMENT_FAILED:
            logger.warning(
                "Payment failed for subscription %s account=%s metadata=%s",
                event.subscription_code,
                event.account_id,
                event.metadata,
            )
            return
        logger.info(
            "Billing event %s subscription=%s account=%s metadata=%s",
            event.event_type.value,
            event.subscription_code,
            event.account_id,
            event.metadata,
        )


@lru_cache(maxsize=1)
def get_billing_service() -> BillingService:
    config = get_config()
    if not config.billing_webhook_secret:
        logger.warning("BILLING_WEBHOOK_SECRET is not set; webhooks will be rejected")
    return BillingService(
        accounts=get_account_repository(),
        engine=get_entitlement_engine(),
        repository=PostgresBillingRepository(),
        event_logger=LoggingBillingEventLogger(),
        webhook_secret=config.billing_webhook_secret,
    )


__all__ = ["get_billing_service", "LoggingBillingEventLogger"]
