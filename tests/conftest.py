"""
Pytest configuration and fixtures for SignalDesk tests.
"""

import os

# The API under test must not start the background delivery worker
os.environ["WORKER_ENABLED"] = "false"
os.environ.pop("TRADINGVIEW_WEBHOOK_SECRET", None)

import uuid
import pytest
from datetime import datetime
from typing import Dict, Generator, AsyncGenerator, Optional

from fastapi.testclient import TestClient
from httpx import AsyncClient, ASGITransport

from app import app
from signaldesk.auth.service import auth_service, AuthService
from signaldesk.auth.models import UserCreate, UserRole
from signaldesk.subscriptions.models import SubscriptionTier
from signaldesk.notifications.channels import ChannelRegistry
from signaldesk.notifications.models import NotificationChannel, QueuedNotification
from signaldesk.notifications.providers import DeliveryResult, NotificationProvider
from signaldesk.notifications.queue import NotificationQueue
from signaldesk.notifications.service import NotificationService
from signaldesk.notifications.templates import TemplateStore
from signaldesk.signals.service import SignalService

ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "admin@signaldesk.io")
TEST_PASSWORD = "TestPass123"


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """Create synchronous test client"""
    with TestClient(app) as c:
        yield c


@pytest.fixture
async def async_client() -> AsyncGenerator[AsyncClient, None]:
    """Create asynchronous test client"""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def fresh_auth_service() -> AuthService:
    """Create a fresh auth service for isolated tests"""
    return AuthService()


@pytest.fixture
def test_user(fresh_auth_service: AuthService):
    """Create a test user and return credentials"""
    user_data = UserCreate(
        email="test@example.com",
        password=TEST_PASSWORD,
    )
    user = fresh_auth_service.create_user(user_data)
    return {
        "user": user,
        "password": TEST_PASSWORD,
        "auth_service": fresh_auth_service,
    }


def _headers_for(service: AuthService, email: str) -> Dict[str, str]:
    token = service.create_access_token(service.get_user(email))
    return {"Authorization": f"Bearer {token.access_token}"}


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    """Bearer headers for the application's default admin"""
    return _headers_for(auth_service, ADMIN_EMAIL)


@pytest.fixture
def make_user():
    """
    Factory registering a user on the application's auth service.

    Returns (user, headers).
    """
    def _make(
        tier: Optional[SubscriptionTier] = None,
        role: UserRole = UserRole.USER,
    ):
        email = f"user-{uuid.uuid4().hex[:10]}@example.com"
        user = auth_service.create_user(
            UserCreate(email=email, password=TEST_PASSWORD),
            role=role,
            subscription_tier=tier,
        )
        return user, _headers_for(auth_service, email)

    return _make


# Notification stack fixtures

class FakeProvider(NotificationProvider):
    """Provider that records sends and fails on demand"""

    def __init__(self, channel: NotificationChannel, delivered: bool = False):
        self.channel = channel
        self.name = f"fake_{channel.value}"
        self.delivered = delivered
        self.sent = []
        self.errors = []  # raised in order, one per send

    async def send(self, item: QueuedNotification) -> DeliveryResult:
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append(item)
        return DeliveryResult(
            provider=self.name,
            provider_message_id=f"msg-{len(self.sent)}",
            delivered=self.delivered,
        )


@pytest.fixture
def notification_stack() -> NotificationService:
    """Isolated notification service with default channels and templates"""
    return NotificationService(
        queue=NotificationQueue(retry_base_delay=30, retry_max_delay=3600),
        templates=TemplateStore(),
        channels=ChannelRegistry(failure_threshold=5, health_cooldown=300),
    )


@pytest.fixture
def fake_providers() -> Dict[NotificationChannel, FakeProvider]:
    return {channel: FakeProvider(channel) for channel in NotificationChannel}


@pytest.fixture
def signal_stack(fresh_auth_service: AuthService, notification_stack: NotificationService) -> SignalService:
    """Signal service wired to isolated auth and notification services"""
    service = SignalService(auth=fresh_auth_service, notifications=notification_stack)
    notification_stack.on_result(service.handle_queue_update)
    return service


@pytest.fixture
def now() -> datetime:
    return datetime(2026, 3, 10, 12, 0, 0)
