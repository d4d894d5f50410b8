"""Application configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Tuple
import math
import os


@dataclass(frozen=True)
class AppConfig:
    """Runtime configuration for the entitlements backend."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_connect_timeout: int
    jwt_secret_key: str
    jwt_exp_minutes: int
    session_cookie_name: str
    billing_webhook_secret: str
    admin_api_token: Optional[str]
    allow_test_tier_override: bool
    usage_reset_scheduler_enabled: bool
    usage_reset_interval_seconds: float
    usage_reset_batch_size: int
    cors_origins: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def db_settings(self) -> Dict[str, object]:
        """Keyword arguments accepted by ``psycopg2.connect``."""

        return dict(
            host=self.db_host,
            port=self.db_port,
            dbname=self.db_name,
            user=self.db_user,
            password=self.db_password,
            connect_timeout=self.db_connect_timeout,
        )


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def _parse_connect_timeout(raw_value: Optional[str]) -> int:
    timeout = _to_float(raw_value, default=5.0)
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


def _to_origins(value: Optional[str]) -> Tuple[str, ...]:
    if not value:
        return ("http://localhost:5173",)
    return tuple(origin.strip().rstrip("/") for origin in value.split(",") if origin.strip())


def load_app_config(env: Optional[Mapping[str, str]] = None) -> AppConfig:
    """Load :class:`AppConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    return AppConfig(
        db_host=env_mapping.get("DB_HOST", "127.0.0.1"),
        db_port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        db_name=env_mapping.get("DB_NAME", "tweetcourse_db"),
        db_user=env_mapping.get("DB_USER", "tweetcourse"),
        db_password=env_mapping.get("DB_PASSWORD", "tweetcourse"),
        db_connect_timeout=_parse_connect_timeout(env_mapping.get("DB_CONNECT_TIMEOUT")),
        jwt_secret_key=env_mapping.get("JWT_SECRET_KEY", "dev-secret-change-me"),
        jwt_exp_minutes=max(1, _to_int(env_mapping.get("JWT_EXP_MINUTES"), default=60 * 24 * 7)),
        session_cookie_name=env_mapping.get("SESSION_COOKIE_NAME", "session"),
        billing_webhook_secret=env_mapping.get("BILLING_WEBHOOK_SECRET", ""),
        admin_api_token=env_mapping.get("ADMIN_API_TOKEN") or None,
        allow_test_tier_override=_to_bool(env_mapping.get("ALLOW_TEST_TIER_OVERRIDE"), default=False),
        usage_reset_scheduler_enabled=_to_bool(
            env_mapping.get("USAGE_RESET_SCHEDULER_ENABLED"), default=False
        ),
        usage_reset_interval_seconds=max(
            1.0, _to_float(env_mapping.get("USAGE_RESET_INTERVAL_SECONDS"), default=60.0 * 60.0)
        ),
        usage_reset_batch_size=max(1, _to_int(env_mapping.get("USAGE_RESET_BATCH_SIZE"), default=500)),
        cors_origins=_to_origins(env_mapping.get("CORS_ORIGINS")),
    )


__all__ = ["AppConfig", "load_app_config"]
