"""Persistence layer for user accounts."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Dict, Iterable, List, Optional, Protocol, Tuple
from uuid import uuid4

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from ..entitlements.models import SubscriptionTier
from .exceptions import AccountStoreError
from .models import UserAccount, utcnow


class AccountRepository(Protocol):
    """Persistence operations required by the entitlement engine."""

    def get_account(self, account_id: str) -> Optional[UserAccount]:
        ...

    def get_account_by_external_id(self, external_id: str) -> Optional[UserAccount]:
        ...

    def get_account_by_subscription_code(self, subscription_code: str) -> Optional[UserAccount]:
        ...

    def get_or_create_account(
        self,
        *,
        external_id: str,
        email: str,
        usage_period_resets_at: datetime,
    ) -> Tuple[UserAccount, bool]:
        ...

    def increment_usage_if_allowed(
        self,
        account_id: str,
        *,
        expected_tier: SubscriptionTier,
        limit: Optional[int],
    ) -> Optional[UserAccount]:
        """Atomically add one use when the tier still matches and usage < limit."""

    def set_tier(self, account_id: str, tier: SubscriptionTier) -> Optional[UserAccount]:
        ...

    def reset_usage(self, account_id: str, *, next_reset_at: datetime) -> Optional[UserAccount]:
        ...

    def reset_usage_if_due(
        self,
        account_id: str,
        *,
        due_at: datetime,
        next_reset_at: datetime,
    ) -> Optional[UserAccount]:
        """Reset only while the period end is still at or before ``due_at``."""

    def list_accounts_due_for_reset(self, now: datetime, *, limit: int = 500) -> List[UserAccount]:
        ...

    def update_billing_references(
        self,
        account_id: str,
        *,
        customer_code: Optional[str],
        subscription_code: Optional[str],
    ) -> Optional[UserAccount]:
        ...

    def touch_activity(self, account_id: str) -> Optional[UserAccount]:
        ...


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    try:
        connection = get_conn()
    except psycopg2.OperationalError as exc:
        raise AccountStoreError("Account store unavailable") from exc
    try:
        yield connection, True
        connection.commit()
    except Exception:
        if not connection.closed:
            connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_account(row: dict) -> UserAccount:
    return UserAccount(
        id=str(row["id"]),
        external_id=row["external_id"],
        email=row.get("email") or "",
        subscription_tier=row["subscription_tier"],
        usage_count=int(row.get("usage_count") or 0),
        usage_period_resets_at=row.get("usage_period_resets_at"),
        last_activity_at=row.get("last_activity_at"),
        billing_customer_code=row.get("billing_customer_code"),
        billing_subscription_code=row.get("billing_subscription_code"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PostgresAccountRepository:
    """Concrete repository persisting accounts in PostgreSQL.

    Usage increments are a single conditional ``UPDATE`` so concurrent
    requests for the same row serialize on the row lock and re-check the
    predicate before writing.
    """

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        with managed_connection(self._conn) as (connection, managed):
            cursor = connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
                if managed:
                    connection.commit()
            except psycopg2.extensions.TransactionRollbackError as exc:
                if managed:
                    connection.rollback()
                raise AccountStoreError("Account update conflicted; retry the action") from exc
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as exc:
                raise AccountStoreError(f"Account store error: {exc}") from exc
            except Exception:
                if managed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def get_account(self, account_id: str) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM accounts
                WHERE id = %s
                LIMIT 1
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def get_account_by_external_id(self, external_id: str) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM accounts
                WHERE external_id = %s
                LIMIT 1
                """,
                (external_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def get_account_by_subscription_code(self, subscription_code: str) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM accounts
                WHERE billing_subscription_code = %s
                LIMIT 1
                """,
                (subscription_code,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def get_or_create_account(
        self,
        *,
        external_id: str,
        email: str,
        usage_period_resets_at: datetime,
    ) -> Tuple[UserAccount, bool]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO accounts (
                    external_id,
                    email,
                    subscription_tier,
                    usage_count,
                    usage_period_resets_at,
                    last_activity_at
                )
                VALUES (%(external_id)s, %(email)s, %(tier)s, 0, %(resets_at)s, NOW())
                ON CONFLICT (external_id) DO NOTHING
                RETURNING *
                """,
                {
                    "external_id": external_id,
                    "email": email,
                    "tier": SubscriptionTier.FREE.value,
                    "resets_at": usage_period_resets_at,
                },
            )
            row = cursor.fetchone()
            if row:
                return _row_to_account(row), True

            cursor.execute(
                "SELECT * FROM accounts WHERE external_id = %s LIMIT 1",
                (external_id,),
            )
            row = cursor.fetchone()
            if not row:
                raise AccountStoreError("Failed to provision account")
            return _row_to_account(row), False

    def increment_usage_if_allowed(
        self,
        account_id: str,
        *,
        expected_tier: SubscriptionTier,
        limit: Optional[int],
    ) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET usage_count = usage_count + 1,
                    last_activity_at = NOW(),
                    updated_at = NOW()
                WHERE id = %(account_id)s
                  AND subscription_tier = %(tier)s
                  AND (%(limit)s IS NULL OR usage_count < %(limit)s)
                RETURNING *
                """,
                {
                    "account_id": account_id,
                    "tier": expected_tier.value,
                    "limit": limit,
                },
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def set_tier(self, account_id: str, tier: SubscriptionTier) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET subscription_tier = %s,
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (tier.value, account_id),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def reset_usage(self, account_id: str, *, next_reset_at: datetime) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET usage_count = 0,
                    usage_period_resets_at = %s,
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (next_reset_at, account_id),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def reset_usage_if_due(
        self,
        account_id: str,
        *,
        due_at: datetime,
        next_reset_at: datetime,
    ) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET usage_count = 0,
                    usage_period_resets_at = %(next_reset_at)s,
                    updated_at = NOW()
                WHERE id = %(account_id)s
                  AND usage_period_resets_at <= %(due_at)s
                RETURNING *
                """,
                {
                    "account_id": account_id,
                    "due_at": due_at,
                    "next_reset_at": next_reset_at,
                },
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def list_accounts_due_for_reset(self, now: datetime, *, limit: int = 500) -> List[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM accounts
                WHERE usage_period_resets_at <= %s
                ORDER BY usage_period_resets_at ASC
                LIMIT %s
                """,
                (now, limit),
            )
            rows = cursor.fetchall() or []
            return [_row_to_account(row) for row in rows]

    def update_billing_references(
        self,
        account_id: str,
        *,
        customer_code: Optional[str],
        subscription_code: Optional[str],
    ) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET billing_customer_code = COALESCE(%s, billing_customer_code),
                    billing_subscription_code = COALESCE(%s, billing_subscription_code),
                    updated_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (customer_code, subscription_code, account_id),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None

    def touch_activity(self, account_id: str) -> Optional[UserAccount]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE accounts
                SET last_activity_at = NOW()
                WHERE id = %s
                RETURNING *
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _row_to_account(row) if row else None


class InMemoryAccountRepository:
    """Lock-guarded in-memory repository suitable for tests and local development."""

    def __init__(self) -> None:
        self._accounts: Dict[str, UserAccount] = {}
        self._lock = Lock()

    def add(self, account: UserAccount) -> UserAccount:
        with self._lock:
            self._accounts[account.id] = account
        return account

    def get_account(self, account_id: str) -> Optional[UserAccount]:
        with self._lock:
            return self._accounts.get(account_id)

    def get_account_by_external_id(self, external_id: str) -> Optional[UserAccount]:
        with self._lock:
            return self._find(lambda account: account.external_id == external_id)

    def get_account_by_subscription_code(self, subscription_code: str) -> Optional[UserAccount]:
        with self._lock:
            return self._find(lambda account: account.billing_subscription_code == subscription_code)

    def get_or_create_account(
        self,
        *,
        external_id: str,
        email: str,
        usage_period_resets_at: datetime,
    ) -> Tuple[UserAccount, bool]:
        with self._lock:
            existing = self._find(lambda account: account.external_id == external_id)
            if existing is not None:
                return existing, False
            now = utcnow()
            account = UserAccount(
                id=str(uuid4()),
                external_id=external_id,
                email=email,
                subscription_tier=SubscriptionTier.FREE,
                usage_count=0,
                usage_period_resets_at=usage_period_resets_at,
                last_activity_at=now,
                created_at=now,
                updated_at=now,
            )
            self._accounts[account.id] = account
            return account, True

    def increment_usage_if_allowed(
        self,
        account_id: str,
        *,
        expected_tier: SubscriptionTier,
        limit: Optional[int],
    ) -> Optional[UserAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or account.subscription_tier != expected_tier:
                return None
            if limit is not None and account.usage_count >= limit:
                return None
            now = utcnow()
            return self._store(
                account,
                usage_count=account.usage_count + 1,
                last_activity_at=now,
                updated_at=now,
            )

    def set_tier(self, account_id: str, tier: SubscriptionTier) -> Optional[UserAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            return self._store(account, subscription_tier=tier, updated_at=utcnow())

    def reset_usage(self, account_id: str, *, next_reset_at: datetime) -> Optional[UserAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            return self._store(
                account,
                usage_count=0,
                usage_period_resets_at=next_reset_at,
                updated_at=utcnow(),
            )

    def reset_usage_if_due(
        self,
        account_id: str,
        *,
        due_at: datetime,
        next_reset_at: datetime,
    ) -> Optional[UserAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None or not account.period_expired(due_at):
                return None
            return self._store(
                account,
                usage_count=0,
                usage_period_resets_at=next_reset_at,
                updated_at=utcnow(),
            )

    def list_accounts_due_for_reset(self, now: datetime, *, limit: int = 500) -> List[UserAccount]:
        with self._lock:
            due = [account for account in self._accounts.values() if account.period_expired(now)]
        due.sort(key=lambda account: account.usage_period_resets_at)
        return due[:limit]

    def update_billing_references(
        self,
        account_id: str,
        *,
        customer_code: Optional[str],
        subscription_code: Optional[str],
    ) -> Optional[UserAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            return self._store(
                account,
                billing_customer_code=customer_code or account.billing_customer_code,
                billing_subscription_code=subscription_code or account.billing_subscription_code,
                updated_at=utcnow(),
            )

    def touch_activity(self, account_id: str) -> Optional[UserAccount]:
        with self._lock:
            account = self._accounts.get(account_id)
            if account is None:
                return None
            return self._store(account, last_activity_at=utcnow())

    def _find(self, predicate) -> Optional[UserAccount]:
        for account in self._accounts.values():
            if predicate(account):
                return account
        return None

    def _store(self, account: UserAccount, **changes: object) -> UserAccount:
        updated = account.model_copy(update=changes)
        self._accounts[updated.id] = updated
        return updated
