"""Manually override an account's subscription tier."""
import argparse
import logging

import psycopg2
from dotenv import load_dotenv

from . import app_context
from .app.accounts import AccountNotFoundError, AccountService, PostgresAccountRepository
from .app.entitlements import EntitlementEngine, InvalidTierError, SubscriptionTier, TierChangeReason
from .app.services.entitlements import LoggingEntitlementEventLogger
from .config import load_app_config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Set the subscription tier for an account.")
    parser.add_argument("user", nargs="?", help="account id or identity-provider subject")
    parser.add_argument("tier", nargs="?", help="free, pro or lifetime")
    return parser


def main(argv=None):
    load_dotenv()
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)

    user = (args.user or input("Account id or subject: ")).strip()
    raw_tier = args.tier or input("New tier (free/pro/lifetime): ")
    try:
        tier = SubscriptionTier.parse(raw_tier)
    except InvalidTierError:
        print("Invalid tier. Must be: free, pro, or lifetime")
        return 2

    config = load_app_config()
    app_context.configure(
        get_conn=lambda: psycopg2.connect(**config.db_settings),
        get_current_account=lambda **_: None,
        config=config,
    )
    repository = PostgresAccountRepository()
    engine = EntitlementEngine(repository, LoggingEntitlementEventLogger())
    try:
        account = AccountService(repository).find_account(user)
    except AccountNotFoundError:
        print(f"No account found for {user!r}")
        return 1

    updated = engine.change_tier(account, tier, TierChangeReason.ADMIN_OVERRIDE)
    print(
        f"Done. {updated.email or updated.external_id}: "
        f"{account.subscription_tier.value} -> {updated.subscription_tier.value} "
        f"(usage this period: {updated.usage_count})"
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
