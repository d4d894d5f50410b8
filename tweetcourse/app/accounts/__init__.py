"""User accounts and the durable store backing entitlement checks."""

from .exceptions import AccountNotFoundError, AccountStoreError
from .models import UserAccount, add_months
from .repository import (
    AccountRepository,
    InMemoryAccountRepository,
    PostgresAccountRepository,
)
from .service import AccountService

__all__ = [
    "AccountNotFoundError",
    "AccountRepository",
    "AccountService",
    "AccountStoreError",
    "InMemoryAccountRepository",
    "PostgresAccountRepository",
    "UserAccount",
    "add_months",
]
