"""
In-app notification inbox.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Dict, List, Any, Callable, Awaitable

from .models import (
    UserNotification, NotificationType, NotificationPriority, InboxStatus,
)

logger = logging.getLogger(__name__)

Broadcast = Callable[[str, Dict[str, Any]], Awaitable[None]]


class InboxService:
    """Stores per-user in-app notifications and pushes new ones to live sockets"""

    def __init__(self):
        self._notifications: Dict[str, UserNotification] = {}
        self._broadcast: Optional[Broadcast] = None

    def set_broadcast(self, callback: Broadcast):
        """Set the realtime push function (user_id, message)"""
        self._broadcast = callback

    async def add(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: str,
        priority: NotificationPriority = NotificationPriority.MEDIUM,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UserNotification:
        now = datetime.utcnow()
        notification = UserNotification(
            id=str(uuid.uuid4()),
            user_id=user_id,
            type=notification_type,
            title=title,
            message=message,
            priority=priority,
            metadata=metadata,
            delivered_at=now,
            created_at=now,
            updated_at=now,
        )
        self._notifications[notification.id] = notification

        if self._broadcast:
            try:
                await self._broadcast(user_id, {
                    "type": "notification",
                    "data": notification.model_dump(mode="json"),
                })
            except Exception as e:
                logger.error(f"Realtime push failed for user {user_id}: {e}")

        return notification

    def get(self, user_id: str, notification_id: str) -> Optional[UserNotification]:
        notification = self._notifications.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return None
        return notification

    def list(
        self,
        user_id: str,
        status: Optional[InboxStatus] = None,
        limit: int = 50,
    ) -> List[UserNotification]:
        """Newest first"""
        items = [
            n for n in self._notifications.values()
            if n.user_id == user_id
            and (status is None or n.status == status)
        ]
        items.sort(key=lambda n: n.created_at, reverse=True)
        return items[:limit]

    def unread_count(self, user_id: str) -> int:
        return sum(
            1 for n in self._notifications.values()
            if n.user_id == user_id and n.status == InboxStatus.UNREAD
        )

    def _set_status(
        self,
        user_id: str,
        notification_id: str,
        status: InboxStatus,
    ) -> Optional[UserNotification]:
        notification = self.get(user_id, notification_id)
        if notification is None:
            return None
        now = datetime.utcnow()
        notification.status = status
        notification.updated_at = now
        if status == InboxStatus.READ:
            notification.read_at = notification.read_at or now
        elif status == InboxStatus.ARCHIVED:
            notification.archived_at = now
            notification.read_at = notification.read_at or now
        return notification

    def mark_read(self, user_id: str, notification_id: str) -> Optional[UserNotification]:
        return self._set_status(user_id, notification_id, InboxStatus.READ)

    def archive(self, user_id: str, notification_id: str) -> Optional[UserNotification]:
        return self._set_status(user_id, notification_id, InboxStatus.ARCHIVED)

    def delete(self, user_id: str, notification_id: str) -> bool:
        """Remove the entry outright"""
        notification = self.get(user_id, notification_id)
        if notification is None:
            return False
        del self._notifications[notification.id]
        return True

    def mark_all_read(self, user_id: str) -> int:
        updated = 0
        for notification in self.list(user_id, InboxStatus.UNREAD, limit=10_000):
            self.mark_read(user_id, notification.id)
            updated += 1
        return updated
