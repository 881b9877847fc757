"""
Notification module for SignalDesk.

Provides multi-channel notification delivery with:
- A persistent queue with retry and exponential backoff
- Channel health tracking, failover and rate limiting
- Message templates with {{ variable }} substitution
- User preferences (categories, quiet hours, hourly caps)
- In-app inbox with realtime WebSocket push
"""

from .models import (
    NotificationChannel, NotificationCreate, QueuedNotification, QueueStatus,
    NotificationType, NotificationPriority, TemplateCategory, UserNotification,
)
from .queue import NotificationQueue, compute_backoff
from .service import NotificationService, notification_service
from .worker import DeliveryWorker
from .providers import build_default_providers

__all__ = [
    "NotificationChannel",
    "NotificationCreate",
    "QueuedNotification",
    "QueueStatus",
    "NotificationType",
    "NotificationPriority",
    "TemplateCategory",
    "UserNotification",
    "NotificationQueue",
    "compute_backoff",
    "NotificationService",
    "notification_service",
    "DeliveryWorker",
    "build_default_providers",
]
