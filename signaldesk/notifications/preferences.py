"""
User notification preferences: categories, priorities, quiet hours and hourly caps.
"""

import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Deque
from zoneinfo import ZoneInfo

from .models import (
    NotificationPreferences, PreferencesUpdate, NotificationType, NotificationPriority,
    NotificationChannel,
)

logger = logging.getLogger(__name__)

CATEGORY_FIELDS = {
    NotificationType.SIGNAL: "category_signals",
    NotificationType.PRICE: "category_price",
    NotificationType.NEWS: "category_news",
    NotificationType.SYSTEM: "category_system",
    NotificationType.ACHIEVEMENT: "category_achievements",
}

PRIORITY_FIELDS = {
    NotificationPriority.LOW: "priority_low",
    NotificationPriority.MEDIUM: "priority_medium",
    NotificationPriority.HIGH: "priority_high",
    NotificationPriority.CRITICAL: "priority_critical",
}


def quiet_hours_end(prefs: NotificationPreferences, now: datetime) -> Optional[datetime]:
    """
    If `now` (naive UTC) falls inside the user's quiet hours, return the
    naive UTC time they end; otherwise None. Windows may wrap midnight.
    """
    if not prefs.quiet_hours_enabled or prefs.quiet_hours_start == prefs.quiet_hours_end:
        return None

    tz = ZoneInfo(prefs.timezone)
    local = now.replace(tzinfo=timezone.utc).astimezone(tz)
    start, end = prefs.quiet_hours_start, prefs.quiet_hours_end
    hour = local.hour

    if start < end:
        inside = start <= hour < end
    else:
        inside = hour >= start or hour < end
    if not inside:
        return None

    end_local = local.replace(hour=end, minute=0, second=0, microsecond=0)
    if end_local <= local:
        end_local = (local + timedelta(days=1)).replace(hour=end, minute=0, second=0, microsecond=0)
    return end_local.astimezone(timezone.utc).replace(tzinfo=None)


class PreferenceStore:
    """Per-user preferences plus the delivery history used for hourly caps"""

    def __init__(self):
        self._prefs: Dict[str, NotificationPreferences] = {}
        self._deliveries: Dict[str, Deque[datetime]] = defaultdict(deque)

    def get(self, user_id: str) -> NotificationPreferences:
        prefs = self._prefs.get(user_id)
        if prefs is None:
            prefs = NotificationPreferences(user_id=user_id)
        return prefs

    def update(self, user_id: str, data: PreferencesUpdate) -> NotificationPreferences:
        current = self.get(user_id)
        merged = current.model_dump()
        merged.update(data.model_dump(exclude_unset=True))
        prefs = NotificationPreferences.model_validate(merged)
        self._prefs[user_id] = prefs
        logger.info(f"Updated notification preferences for user {user_id}")
        return prefs

    def allows(
        self,
        user_id: str,
        notification_type: NotificationType,
        priority: NotificationPriority,
    ) -> bool:
        prefs = self.get(user_id)
        return bool(
            getattr(prefs, CATEGORY_FIELDS[notification_type])
            and getattr(prefs, PRIORITY_FIELDS[priority])
        )

    def recipient_for(self, user_id: str, channel: NotificationChannel) -> Optional[str]:
        """Contact detail stored for a channel (email comes from the account)"""
        prefs = self.get(user_id)
        return {
            NotificationChannel.SMS: prefs.phone_number,
            NotificationChannel.TELEGRAM: prefs.telegram_chat_id,
            NotificationChannel.DISCORD: prefs.discord_webhook_url,
            NotificationChannel.PUSH: prefs.push_token,
        }.get(channel)

    def quiet_until(self, user_id: str, now: Optional[datetime] = None) -> Optional[datetime]:
        return quiet_hours_end(self.get(user_id), now or datetime.utcnow())

    def record_delivery(self, user_id: str, now: Optional[datetime] = None):
        self._deliveries[user_id].append(now or datetime.utcnow())

    def reserve_slot(self, user_id: str, now: Optional[datetime] = None) -> Optional[datetime]:
        """
        Take one slot of the user's hourly cap.

        Returns None when a slot was taken, otherwise the time the oldest
        slot frees up. The slot is held until `release_slot` gives it back.
        """
        now = now or datetime.utcnow()
        cap = self.get(user_id).max_notifications_per_hour
        sent = self._deliveries[user_id]
        while sent and sent[0] <= now - timedelta(hours=1):
            sent.popleft()
        if cap and len(sent) >= cap:
            return sent[0] + timedelta(hours=1)
        sent.append(now)
        return None

    def release_slot(self, user_id: str, at: datetime):
        """Give back a slot taken at `at` for a send that did not go out"""
        sent = self._deliveries[user_id]
        if at in sent:
            sent.remove(at)
