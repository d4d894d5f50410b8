"""Application wiring for the entitlement engine and account service."""
from __future__ import annotations

import logging
from functools import lru_cache

from ...app_context import get_config
from ..accounts import AccountService, PostgresAccountRepository
from ..entitlements import (
    EntitlementAuditEvent,
    EntitlementAuditEventType,
    EntitlementEngine,
    EntitlementEventLogger,
)


logger = logging.getLogger("entitlements")


class LoggingEntitlementEventLogger(EntitlementEventLogger):
    """Event logger forwarding entitlement audit events to logging."""

    def log(self, event: EntitlementAuditEvent) -> None:
        extra = {
            "entitlement_event": event.event_type.value,
            "account_id": event.account_id,
            "tier": event.tier.value,
            "usage_count": event.usage_count,
        }
        if event.previous_tier is not None:
            extra["previous_tier"] = event.previous_tier.value
        if event.reason is not None:
            extra["reason"] = event.reason.value
        if event.event_type == EntitlementAuditEventType.QUOTA_REJECTED:
            logger.info("Generation quota exceeded", extra=extra)
            return
        logger.info(
            "Entitlement event %s account=%s metadata=%s",
            event.event_type.value,
            event.account_id,
            event.metadata,
            extra=extra,
        )


@lru_cache(maxsize=1)
def get_account_repository() -> PostgresAccountRepository:
    return PostgresAccountRepository()


@lru_cache(maxsize=1)
def get_entitlement_engine() -> EntitlementEngine:
    return EntitlementEngine(
        repository=get_account_repository(),
        event_logger=LoggingEntitlementEventLogger(),
    )


@lru_cache(maxsize=1)
def get_account_service() -> AccountService:
    return AccountService(repository=get_account_repository())


def get_usage_reset_batch_size() -> int:
    return get_config().usage_reset_batch_size


__all__ = [
    "LoggingEntitlementEventLogger",
    "get_account_repository",
    "get_account_service",
    "get_entitlement_engine",
    "get_usage_reset_batch_size",
]
