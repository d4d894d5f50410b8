"""Create the tables backing accounts and billing webhook bookkeeping."""
import psycopg2
from dotenv import load_dotenv

from .config import load_app_config

SCHEMA_STATEMENTS = (
    "CREATE EXTENSION IF NOT EXISTS pgcrypto",
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY DEFAULT gen_random_uuid()::text,
        external_id TEXT NOT NULL UNIQUE,
        email TEXT NOT NULL DEFAULT '',
        subscription_tier TEXT NOT NULL DEFAULT 'free'
            CHECK (subscription_tier IN ('free', 'pro', 'lifetime')),
        usage_count INTEGER NOT NULL DEFAULT 0 CHECK (usage_count >= 0),
        usage_period_resets_at TIMESTAMPTZ,
        last_activity_at TIMESTAMPTZ,
        billing_customer_code TEXT,
        billing_subscription_code TEXT,
        created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
        updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS accounts_usage_period_resets_at_idx
        ON accounts (usage_period_resets_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS accounts_billing_subscription_code_idx
        ON accounts (billing_subscription_code)
    """,
    """
    CREATE TABLE IF NOT EXISTS billing_webhook_events (
        event_id TEXT PRIMARY KEY,
        event_type TEXT NOT NULL,
        payload JSONB NOT NULL DEFAULT '{}'::jsonb,
        received_at TIMESTAMPTZ NOT NULL,
        processed_at TIMESTAMPTZ
    )
    """,
)


def main():
    load_dotenv()
    config = load_app_config()
    with psycopg2.connect(**config.db_settings) as conn, conn.cursor() as cur:
        for statement in SCHEMA_STATEMENTS:
            cur.execute(statement)
        conn.commit()
    print("Done. Tables are in place.")


if __name__ == "__main__":
    main()
