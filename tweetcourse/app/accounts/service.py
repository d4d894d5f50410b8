"""Resolution of authenticated identities into user accounts."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Optional

from .exceptions import AccountNotFoundError
from .models import UserAccount, add_months, utcnow
from .repository import AccountRepository

logger = logging.getLogger(__name__)


class AccountService:
    """Provisions accounts on first authentication and loads them afterwards."""

    def __init__(
        self,
        repository: AccountRepository,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or utcnow

    def resolve_account(self, external_id: str, email: str = "") -> UserAccount:
        """Return the account for an identity-provider subject, creating it if needed."""

        if not external_id:
            raise ValueError("external_id must be provided")

        account, created = self._repository.get_or_create_account(
            external_id=external_id,
            email=email,
            usage_period_resets_at=add_months(self._clock(), 1),
        )
        if created:
            logger.info(
                "Provisioned account",
                extra={"account_id": account.id, "tier": account.subscription_tier.value},
            )
            return account

        touched = self._repository.touch_activity(account.id)
        return touched or account

    def get_account(self, account_id: str) -> UserAccount:
        account = self._repository.get_account(account_id)
        if account is None:
            raise AccountNotFoundError(account_id)
        return account

    def find_account(self, identifier: str) -> UserAccount:
        """Look an account up by internal id or identity-provider subject."""

        account = self._repository.get_account(identifier)
        if account is None:
            account = self._repository.get_account_by_external_id(identifier)
        if account is None:
            raise AccountNotFoundError(identifier)
        return account
