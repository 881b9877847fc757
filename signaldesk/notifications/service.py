"""
Notification service tying together queue, templates, channels,
preferences, delivery logs and the in-app inbox.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, List, Any, Callable

from signaldesk import metrics
from .channels import ChannelRegistry
from .inbox import InboxService
from .logs import DeliveryLogStore
from .models import (
    NotificationChannel, NotificationCreate, NotificationPriority, NotificationType,
    QueuedNotification, TemplateCategory, UserNotification, DeliveryReceipt, LogStatus,
    MAX_PRIORITY,
)
from .preferences import PreferenceStore
from .queue import NotificationQueue
from .templates import TemplateStore

logger = logging.getLogger(__name__)

ResultListener = Callable[[QueuedNotification], None]


class NotificationService:
    """
    Entry point for producing notifications.

    Outbound messages go through the queue and are delivered by the
    DeliveryWorker; in-app messages go straight to the inbox.
    """

    def __init__(
        self,
        queue: Optional[NotificationQueue] = None,
        templates: Optional[TemplateStore] = None,
        channels: Optional[ChannelRegistry] = None,
        preferences: Optional[PreferenceStore] = None,
        inbox: Optional[InboxService] = None,
        logs: Optional[DeliveryLogStore] = None,
    ):
        self.queue = queue or NotificationQueue()
        self.templates = templates or TemplateStore()
        self.channels = channels or ChannelRegistry()
        self.preferences = preferences or PreferenceStore()
        self.inbox = inbox or InboxService()
        self.logs = logs or DeliveryLogStore()
        self._listeners: List[ResultListener] = []

    def on_result(self, listener: ResultListener):
        """Register a callback run after every delivery status change"""
        self._listeners.append(listener)

    def emit(self, item: QueuedNotification):
        for listener in self._listeners:
            try:
                listener(item)
            except Exception as e:
                logger.error(f"Result listener failed for {item.id}: {e}", exc_info=True)

    def enqueue(self, data: NotificationCreate, now: Optional[datetime] = None) -> QueuedNotification:
        item = self.queue.enqueue(data, now)
        metrics.NOTIFICATIONS_ENQUEUED.labels(channel=item.channel.value).inc()
        metrics.QUEUE_DEPTH.set(self.queue.depth())
        return item

    def enqueue_from_template(
        self,
        user_id: str,
        channel: NotificationChannel,
        recipient: str,
        category: TemplateCategory,
        variables: Dict[str, Any],
        priority: int = 5,
        alert_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        template_name: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        """Render the matching template for the channel and enqueue the result"""
        if template_name:
            template = self.templates.get_by_name(template_name)
        else:
            template = self.templates.find(category, channel)
        if template is None:
            raise LookupError(f"No active {category.value} template for {channel.value}")

        rendered = self.templates.render(template, variables)
        return self.enqueue(NotificationCreate(
            user_id=user_id,
            channel=channel,
            recipient=recipient,
            subject=rendered.subject,
            message=rendered.text,
            message_html=rendered.html,
            alert_id=alert_id,
            template_id=template.id,
            template_variables=variables,
            priority=priority,
            metadata=metadata,
        ), now)

    def apply_receipt(
        self,
        item_id: str,
        receipt: DeliveryReceipt,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        """Apply a provider delivery receipt to a sent notification"""
        now = now or datetime.utcnow()
        if receipt.status == LogStatus.DELIVERED:
            item = self.queue.mark_delivered(item_id, now)
            if item.channel_id:
                self.channels.record_delivered(item.channel_id)
            self.logs.record(item, LogStatus.DELIVERED, provider_message_id=item.provider_message_id, now=now)
        elif receipt.status == LogStatus.BOUNCED:
            item = self.queue.mark_bounced(item_id, receipt.error or "bounced", now)
            self.logs.record(item, LogStatus.BOUNCED, error_code="bounced", error_message=item.last_error, now=now)
            metrics.NOTIFICATIONS_FAILED.labels(channel=item.channel.value, kind="bounced").inc()
        else:
            raise ValueError(f"Unsupported receipt status '{receipt.status.value}'")

        self.emit(item)
        return item

    async def notify_user(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[UserNotification]:
        """Write an in-app notification unless the user's preferences filter it out"""
        if not self.preferences.allows(user_id, notification_type, priority):
            logger.debug(f"Inbox {notification_type.value}/{priority.value} muted for user {user_id}")
            return None
        return await self.inbox.add(user_id, notification_type, title, message, priority, metadata)

    def send_test(
        self,
        channel_id: str,
        recipient: str,
        message: str,
        user_id: str,
    ) -> QueuedNotification:
        """Queue a top-priority test message on a channel's type"""
        channel = self.channels.get(channel_id)
        if channel is None:
            raise LookupError(f"Channel {channel_id} not found")

        return self.enqueue(NotificationCreate(
            user_id=user_id,
            channel=channel.type,
            recipient=recipient,
            subject="Test notification",
            message=message,
            priority=MAX_PRIORITY,
            max_retries=0,
            metadata={"test": True, "channel_id": channel_id},
        ))

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.queue.stats()
        channels = self.channels.list()
        return {
            "queue": stats.model_dump(),
            "channels": {
                "total": len(channels),
                "enabled": sum(1 for c in channels if c.is_enabled),
                "healthy": sum(1 for c in channels if c.is_healthy),
            },
            "totals": {
                "sent": sum(c.total_sent for c in channels),
                "delivered": sum(c.total_delivered for c in channels),
                "failed": sum(c.total_failed for c in channels),
            },
            "templates": len(self.templates.list()),
        }


# Global notification service instance
notification_service = NotificationService()
