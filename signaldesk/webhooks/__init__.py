"""
Webhook module for SignalDesk.

Authenticates inbound TradingView alerts with shared secrets
(and optional HMAC body signatures) and turns them into signals.
"""

from .models import WebhookSecret, WebhookSecretCreate, TradingViewPayload, normalize_ticker
from .service import WebhookService, webhook_service, generate_secret, compute_signature

__all__ = [
    "WebhookSecret",
    "WebhookSecretCreate",
    "TradingViewPayload",
    "normalize_ticker",
    "WebhookService",
    "webhook_service",
    "generate_secret",
    "compute_signature",
]
