import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import psycopg2
from dotenv import load_dotenv
from fastapi import Cookie, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from jose import JWTError, jwt

from . import app_context
from .app.accounts import AccountStoreError, UserAccount
from .app.routes.billing import router as billing_router
from .app.routes.entitlements import router as entitlements_router
from .app.services.entitlements import get_account_service
from .config import load_app_config
from .usage_reset import (
    get_usage_reset_metrics,
    shutdown_usage_reset_scheduler,
    start_usage_reset_scheduler,
)

load_dotenv()

CONFIG = load_app_config()

DB_CFG = CONFIG.db_settings

JWT_SECRET_KEY = CONFIG.jwt_secret_key
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = CONFIG.jwt_exp_minutes
SESSION_COOKIE_NAME = CONFIG.session_cookie_name

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("auth")


def get_conn():
    return psycopg2.connect(**DB_CFG)


@dataclass(frozen=True)
class SessionIdentity:
    """Claims pulled from a verified session token."""

    subject: str
    email: str = ""


def create_access_token(
    *,
    subject: str,
    email: Optional[str] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    payload: Dict[str, Any] = {"sub": subject}
    if email:
        payload["email"] = email
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_identity_from_token(token: str) -> Optional[SessionIdentity]:
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if not subject:
        return None
    return SessionIdentity(subject=str(subject), email=str(payload.get("email") or ""))


def _extract_token(session_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if session_token:
        return session_token
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return None


def get_current_account(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> UserAccount:
    token = _extract_token(session_token, authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    identity = resolve_identity_from_token(token)
    if identity is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    try:
        return get_account_service().resolve_account(identity.subject, identity.email)
    except AccountStoreError as exc:
        logger.warning("Unable to resolve account for session", extra={"retryable": exc.retryable})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "store_unavailable", "message": str(exc), "retryable": exc.retryable},
        ) from exc


app_context.configure(
    get_conn=get_conn,
    get_current_account=get_current_account,
    config=CONFIG,
)

app = FastAPI(title="TweetToCourse Entitlements API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(CONFIG.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(entitlements_router)
app.include_router(billing_router)


@app.on_event("startup")
async def start_background_jobs() -> None:
    if CONFIG.usage_reset_scheduler_enabled:
        start_usage_reset_scheduler(interval=CONFIG.usage_reset_interval_seconds)


@app.on_event("shutdown")
async def stop_background_jobs() -> None:
    shutdown_usage_reset_scheduler()


@app.get("/api/health")
def health() -> Dict[str, Any]:
    return {"status": "ok", "usageReset": get_usage_reset_metrics()}
