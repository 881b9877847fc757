"""
Webhook secret management and inbound request authentication.
"""

import os
import hashlib
import hmac
import logging
import secrets
import threading
import uuid
from datetime import datetime
from typing import Optional, Dict, List

from .models import SECRET_PATTERN, WebhookSecret, WebhookSecretCreate, WebhookSecretUpdate

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def generate_secret() -> str:
    """64 hex chars from the OS CSPRNG"""
    return secrets.token_hex(32)


def compute_signature(secret: str, body: bytes) -> str:
    """`sha256=<hex>` HMAC of a request body"""
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


class WebhookService:
    """Stores webhook secrets and authenticates inbound webhook calls"""

    def __init__(self, bootstrap_secret: Optional[str] = None):
        self._secrets: Dict[str, WebhookSecret] = {}
        self._lock = threading.Lock()

        bootstrap_secret = bootstrap_secret or os.getenv("TRADINGVIEW_WEBHOOK_SECRET", "")
        if bootstrap_secret:
            self._bootstrap(bootstrap_secret)

    def _bootstrap(self, secret: str):
        secret = secret.strip().lower()
        if not SECRET_PATTERN.match(secret):
            logger.error("TRADINGVIEW_WEBHOOK_SECRET is not 64 hex characters, ignoring it")
            return
        self.create(WebhookSecretCreate(
            name="tradingview-default",
            secret=secret,
            description="Configured from environment",
        ))

    def create(self, data: WebhookSecretCreate) -> WebhookSecret:
        with self._lock:
            if any(s.name == data.name for s in self._secrets.values()):
                raise ValueError(f"Webhook secret '{data.name}' already exists")

            now = datetime.utcnow()
            webhook_secret = WebhookSecret(
                id=str(uuid.uuid4()),
                name=data.name,
                secret=data.secret or generate_secret(),
                description=data.description,
                is_active=data.is_active,
                allowed_sources=data.allowed_sources,
                created_at=now,
                updated_at=now,
            )
            self._secrets[webhook_secret.id] = webhook_secret

        logger.info(f"Created webhook secret '{webhook_secret.name}'")
        return webhook_secret

    def get(self, secret_id: str) -> Optional[WebhookSecret]:
        return self._secrets.get(secret_id)

    def list(self) -> List[WebhookSecret]:
        return sorted(self._secrets.values(), key=lambda s: s.created_at)

    def update(self, secret_id: str, data: WebhookSecretUpdate) -> Optional[WebhookSecret]:
        webhook_secret = self.get(secret_id)
        if webhook_secret is None:
            return None
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(webhook_secret, key, value)
        webhook_secret.updated_at = datetime.utcnow()
        return webhook_secret

    def rotate(self, secret_id: str) -> Optional[WebhookSecret]:
        """Replace the secret value; the old value stops working immediately"""
        webhook_secret = self.get(secret_id)
        if webhook_secret is None:
            return None
        webhook_secret.secret = generate_secret()
        webhook_secret.updated_at = datetime.utcnow()
        logger.info(f"Rotated webhook secret '{webhook_secret.name}'")
        return webhook_secret

    def delete(self, secret_id: str) -> bool:
        with self._lock:
            webhook_secret = self._secrets.pop(secret_id, None)
        if webhook_secret is None:
            return False
        logger.info(f"Deleted webhook secret '{webhook_secret.name}'")
        return True

    def authenticate(
        self,
        secret: str,
        source: str = "tradingview",
        record_usage: bool = True,
    ) -> Optional[WebhookSecret]:
        """
        Match a presented secret against active secrets for the source.

        Uses constant-time comparison. Usage is recorded on success unless
        `record_usage` is off, for callers that still have to validate the
        request and call `record_usage` once it is accepted.
        """
        if not secret:
            return None
        presented = secret.strip().lower().encode()
        source = source.lower()

        matched = None
        for candidate in list(self._secrets.values()):
            if not candidate.is_active or not candidate.allows_source(source):
                continue
            if hmac.compare_digest(candidate.secret.encode(), presented):
                matched = candidate

        if matched is None:
            logger.warning(f"Rejected webhook from source '{source}': invalid secret")
            return None

        if record_usage:
            self.record_usage(matched)
        return matched

    def record_usage(self, webhook_secret: WebhookSecret):
        with self._lock:
            webhook_secret.usage_count += 1
            webhook_secret.last_used = datetime.utcnow()

    @staticmethod
    def verify_signature(secret: str, body: bytes, signature: str) -> bool:
        """Check an `X-Webhook-Signature: sha256=<hex>` header"""
        return hmac.compare_digest(compute_signature(secret, body), signature.strip().lower())


# Global webhook service instance
webhook_service = WebhookService()
