"""
Inbound signal webhook and webhook-secret admin routes.
"""

import json
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, ValidationError

from signaldesk import metrics
from signaldesk.auth.dependencies import get_admin_user
from signaldesk.auth.models import User
from signaldesk.signals.models import FanOutResult, SignalSource, SignalType
from signaldesk.signals.service import signal_service

from .models import TradingViewPayload, WebhookSecret, WebhookSecretCreate, WebhookSecretUpdate
from .service import generate_secret, webhook_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhook", tags=["Webhooks"])
admin_router = APIRouter(prefix="/api/admin/webhooks", tags=["Webhooks Admin"])


class WebhookAccepted(BaseModel):
    success: bool = True
    signal_id: str
    ticker: str
    signal_type: SignalType
    price: float
    fan_out: FanOutResult


def _unprocessable(detail) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


def _unauthorized(source: str, detail: str) -> HTTPException:
    metrics.WEBHOOK_REQUESTS.labels(source=source, outcome="unauthorized").inc()
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


@router.post("/tradingview", response_model=WebhookAccepted, status_code=status.HTTP_201_CREATED)
async def tradingview_webhook(
    request: Request,
    x_webhook_secret: Optional[str] = Header(default=None),
    x_webhook_signature: Optional[str] = Header(default=None),
):
    """
    Receive a TradingView alert and publish it as a signal.

    The secret is read from the `webhook_secret` body field or the
    `X-Webhook-Secret` header. When `X-Webhook-Signature: sha256=<hex>`
    is present the body HMAC must match the secret.
    """
    body = await request.body()
    # TradingView posts JSON as text/plain, so parse the raw body
    try:
        raw = json.loads(body)
    except ValueError:
        metrics.WEBHOOK_REQUESTS.labels(source="unknown", outcome="malformed").inc()
        raise _unprocessable("Body must be a JSON object")
    if not isinstance(raw, dict):
        metrics.WEBHOOK_REQUESTS.labels(source="unknown", outcome="malformed").inc()
        raise _unprocessable("Body must be a JSON object")

    source = str(raw.get("source") or "tradingview").strip().lower()
    secret = raw.get("webhook_secret") or x_webhook_secret
    if not isinstance(secret, str) or not secret:
        raise _unauthorized(source, "Missing webhook secret")

    matched = webhook_service.authenticate(secret, source, record_usage=False)
    if matched is None:
        raise _unauthorized(source, "Invalid webhook secret")
    if x_webhook_signature is not None and not webhook_service.verify_signature(
        matched.secret, body, x_webhook_signature
    ):
        raise _unauthorized(source, "Invalid signature")

    try:
        payload = TradingViewPayload.model_validate(raw)
        signal_data = payload.to_signal()
    except ValidationError as e:
        metrics.WEBHOOK_REQUESTS.labels(source=source, outcome="malformed").inc()
        raise _unprocessable(e.errors(include_url=False, include_context=False))

    signal = signal_service.create_signal(signal_data, SignalSource.WEBHOOK)
    webhook_service.record_usage(matched)
    result = await signal_service.fan_out(signal)
    metrics.WEBHOOK_REQUESTS.labels(source=source, outcome="accepted").inc()

    logger.info(f"Webhook '{matched.name}' published {signal.signal_type.value} {signal.ticker}")
    return WebhookAccepted(
        signal_id=signal.id,
        ticker=signal.ticker,
        signal_type=signal.signal_type,
        price=signal.price,
        fan_out=result,
    )


# ============== Admin ==============

@admin_router.get("", response_model=List[WebhookSecret])
async def list_secrets(admin: User = Depends(get_admin_user)):
    """Configured secrets with the secret value masked."""
    return [s.masked() for s in webhook_service.list()]


@admin_router.get("/generate")
async def generate(admin: User = Depends(get_admin_user)):
    """A fresh random secret, not stored."""
    return {"secret": generate_secret()}


@admin_router.post("", response_model=WebhookSecret, status_code=status.HTTP_201_CREATED)
async def create_secret(data: WebhookSecretCreate, admin: User = Depends(get_admin_user)):
    """Create a secret; the full value is only returned here and on rotate."""
    try:
        return webhook_service.create(data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@admin_router.put("/{secret_id}", response_model=WebhookSecret)
async def update_secret(
    secret_id: str,
    data: WebhookSecretUpdate,
    admin: User = Depends(get_admin_user),
):
    webhook_secret = webhook_service.update(secret_id, data)
    if webhook_secret is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook secret not found")
    return webhook_secret.masked()


@admin_router.post("/{secret_id}/rotate", response_model=WebhookSecret)
async def rotate_secret(secret_id: str, admin: User = Depends(get_admin_user)):
    webhook_secret = webhook_service.rotate(secret_id)
    if webhook_secret is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook secret not found")
    return webhook_secret


@admin_router.delete("/{secret_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_secret(secret_id: str, admin: User = Depends(get_admin_user)):
    if not webhook_service.delete(secret_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Webhook secret not found")
