"""Errors raised by the account store and provisioning layer."""
from __future__ import annotations


class AccountNotFoundError(LookupError):
    """No account exists for the requested identifier."""

    def __init__(self, account_id: str) -> None:
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class AccountStoreError(RuntimeError):
    """The durable account store failed or could not settle an update.

    ``retryable`` errors leave no partial state behind, so callers may repeat
    the whole action from scratch.
    """

    def __init__(self, message: str, *, retryable: bool = True) -> None:
        self.retryable = retryable
        super().__init__(message)
