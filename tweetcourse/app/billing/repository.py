"""Persistence layer for billing webhook bookkeeping."""
from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Iterable, Optional, Set

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ..accounts.repository import managed_connection
from .models import BillingWebhookEvent


class PostgresBillingRepository:
    """Records processed webhook events in PostgreSQL."""

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
            except Exception:
                if managed and not connection.closed:
                    connection.rollback()
                raise
            finally:
                cursor.close()

    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        """Store the event, returning ``False`` when it was already processed."""

        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO billing_webhook_events (
                    event_id,
                    event_type,
                    payload,
                    received_at,
                    processed_at
                )
                VALUES (%s, %s, %s, %s, NOW())
                ON CONFLICT (event_id) DO NOTHING
                """,
                (
                    event.event_id,
                    event.event_type.value,
                    psycopg2.extras.Json(event.payload),
                    event.received_at,
                ),
            )
            return cursor.rowcount > 0

    def release_webhook_event(self, event_id: str) -> None:
        """Forget an event whose processing failed so a redelivery is applied."""

        with self._cursor() as cursor:
            cursor.execute("DELETE FROM billing_webhook_events WHERE event_id = %s", (event_id,))


class InMemoryBillingRepository:
    """Webhook bookkeeping kept in process memory."""

    def __init__(self) -> None:
        self._event_ids: Set[str] = set()
        self._lock = Lock()

    def record_webhook_event(self, event: BillingWebhookEvent) -> bool:
        with self._lock:
            if event.event_id in self._event_ids:
                return False
            self._event_ids.add(event.event_id)
            return True

    def release_webhook_event(self, event_id: str) -> None:
        with self._lock:
            self._event_ids.discard(event_id)

    def __contains__(self, event_id: object) -> bool:
        with self._lock:
            return event_id in self._event_ids
