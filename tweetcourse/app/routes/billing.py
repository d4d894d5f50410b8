"""API routes exposing billing functionality."""
from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request, status

from ..accounts import AccountNotFoundError, AccountStoreError
from ..billing import SIGNATURE_HEADER, WebhookSignatureError
from ..schemas.billing import BillingWebhookResponse
from ..services.billing import get_billing_service

logger = logging.getLogger("billing")

router = APIRouter(prefix="/api/billing", tags=["billing"])


@router.post("/webhook", response_model=BillingWebhookResponse)
async def receive_webhook(request: Request) -> BillingWebhookResponse:
    """Authenticate a provider webhook and apply the tier change it describes."""

    service = get_billing_service()
    raw_body = await request.body()
    try:
        service.verify_signature(raw_body, request.headers.get(SIGNATURE_HEADER))
    except WebhookSignatureError as exc:
        logger.warning("Rejected billing webhook", extra={"missing_signature": exc.missing})
        status_code = status.HTTP_400_BAD_REQUEST if exc.missing else status.HTTP_401_UNAUTHORIZED
        raise HTTPException(status_code=status_code, detail=str(exc)) from exc

    try:
        event = service.parse_event(raw_body)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if event is None:
        return BillingWebhookResponse.ignored()

    try:
        result = service.handle_webhook(event)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except AccountNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Account not found") from exc
    except AccountStoreError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "store_unavailable", "message": str(exc), "retryable": exc.retryable},
        ) from exc
    return BillingWebhookResponse.from_result(result)
