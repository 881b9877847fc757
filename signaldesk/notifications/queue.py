"""
In-memory notification queue with retry bookkeeping.

Items are claimed in priority order (higher first), then by schedule and
creation time. Failed attempts are retried with exponential backoff until
`max_retries` retries have been spent.
"""

import os
import logging
import threading
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Any

from .models import (
    NotificationChannel, NotificationCreate, QueuedNotification,
    QueueStatus, QueueStats,
)
from .state import transition

logger = logging.getLogger(__name__)

RETRY_BASE_DELAY = float(os.getenv("RETRY_BASE_DELAY", "30"))
RETRY_MAX_DELAY = float(os.getenv("RETRY_MAX_DELAY", "3600"))


def compute_backoff(
    attempt: int,
    base: float = RETRY_BASE_DELAY,
    cap: float = RETRY_MAX_DELAY,
) -> float:
    """Exponential backoff: base, 2*base, 4*base, ... capped"""
    delay = base * (2.0 ** max(0, attempt - 1))
    return min(delay, cap)


class NotificationQueue:
    """
    Notification queue holding every outbound message and its state.

    Thread-safe: admin endpoints and the delivery worker share it.
    """

    def __init__(
        self,
        retry_base_delay: float = RETRY_BASE_DELAY,
        retry_max_delay: float = RETRY_MAX_DELAY,
    ):
        self.retry_base_delay = retry_base_delay
        self.retry_max_delay = retry_max_delay
        self._items: Dict[str, QueuedNotification] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        return len(self._items)

    def enqueue(
        self,
        data: NotificationCreate,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        """Add a notification in pending state"""
        now = now or datetime.utcnow()
        recipient = data.recipient.strip()
        if not recipient:
            raise ValueError("Recipient must not be blank")

        item = QueuedNotification(
            id=str(uuid.uuid4()),
            user_id=data.user_id,
            alert_id=data.alert_id,
            channel=data.channel,
            recipient=recipient,
            subject=data.subject,
            message=data.message,
            message_html=data.message_html,
            template_id=data.template_id,
            template_variables=data.template_variables,
            priority=data.priority,
            max_retries=data.max_retries,
            scheduled_for=data.scheduled_for or now,
            metadata=data.metadata,
            created_at=now,
            updated_at=now,
        )

        with self._lock:
            self._items[item.id] = item

        logger.info(
            f"Queued {item.channel.value} notification {item.id} for user {item.user_id} "
            f"(priority {item.priority})"
        )
        return item

    def get(self, item_id: str) -> Optional[QueuedNotification]:
        return self._items.get(item_id)

    def _require(self, item_id: str) -> QueuedNotification:
        item = self._items.get(item_id)
        if item is None:
            raise KeyError(item_id)
        return item

    def list(
        self,
        status: Optional[QueueStatus] = None,
        channel: Optional[NotificationChannel] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[QueuedNotification]:
        """Newest first"""
        items = [
            i for i in self._items.values()
            if (status is None or i.status == status)
            and (channel is None or i.channel == channel)
            and (user_id is None or i.user_id == user_id)
        ]
        items.sort(key=lambda i: i.created_at, reverse=True)
        return items[:limit]

    def claim_due(
        self,
        now: Optional[datetime] = None,
        limit: int = 25,
    ) -> List[QueuedNotification]:
        """Move up to `limit` due items to processing and return them"""
        now = now or datetime.utcnow()
        with self._lock:
            due = [i for i in self._items.values() if i.is_due(now)]
            due.sort(key=lambda i: (-i.priority, i.scheduled_for, i.created_at))
            claimed = due[:limit]
            for item in claimed:
                transition(item, QueueStatus.PROCESSING, now, "claimed")
        return claimed

    def mark_sent(
        self,
        item_id: str,
        provider_message_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        now = now or datetime.utcnow()
        with self._lock:
            item = self._require(item_id)
            transition(item, QueueStatus.SENT, now)
            item.current_attempts += 1
            item.last_attempt_at = now
            item.sent_at = now
            item.next_retry_at = None
            item.provider_message_id = provider_message_id
        return item

    def mark_delivered(
        self,
        item_id: str,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        now = now or datetime.utcnow()
        with self._lock:
            item = self._require(item_id)
            transition(item, QueueStatus.DELIVERED, now)
            item.delivered_at = now
        return item

    def mark_failed(
        self,
        item_id: str,
        error: str,
        permanent: bool = False,
        details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        """
        Record a failed attempt.

        Transient failures with retries left go back to pending with
        `next_retry_at` set; everything else ends in failed.
        """
        now = now or datetime.utcnow()
        with self._lock:
            item = self._require(item_id)
            attempts = item.current_attempts + 1

            if not permanent and attempts - 1 < item.max_retries:
                delay = compute_backoff(attempts, self.retry_base_delay, self.retry_max_delay)
                transition(item, QueueStatus.PENDING, now, f"retry in {delay:.0f}s")
                item.next_retry_at = now + timedelta(seconds=delay)
                logger.warning(
                    f"Notification {item.id} attempt {attempts} failed: {error}; "
                    f"retrying in {delay:.0f}s"
                )
            else:
                transition(item, QueueStatus.FAILED, now, error)
                item.next_retry_at = None

            item.current_attempts = attempts
            item.last_attempt_at = now
            item.last_error = error
            item.error_details = details

            if item.status == QueueStatus.FAILED:
                logger.error(
                    f"Notification {item.id} failed after {item.current_attempts} attempt(s): {error}"
                )
        return item

    def mark_bounced(
        self,
        item_id: str,
        error: str,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        """Provider reported a sent message as undeliverable"""
        now = now or datetime.utcnow()
        with self._lock:
            item = self._require(item_id)
            transition(item, QueueStatus.FAILED, now, "bounced")
            item.last_error = error
        return item

    def defer(
        self,
        item_id: str,
        until: datetime,
        reason: str,
        now: Optional[datetime] = None,
    ) -> QueuedNotification:
        """Put a claimed item back without spending an attempt"""
        now = now or datetime.utcnow()
        with self._lock:
            item = self._require(item_id)
            transition(item, QueueStatus.PENDING, now, f"deferred: {reason}")
            item.next_retry_at = until
        logger.info(f"Deferred notification {item.id} until {until.isoformat()}: {reason}")
        return item

    def cancel(self, item_id: str, now: Optional[datetime] = None) -> QueuedNotification:
        now = now or datetime.utcnow()
        with self._lock:
            item = self._require(item_id)
            transition(item, QueueStatus.CANCELLED, now)
        logger.info(f"Cancelled notification {item.id}")
        return item

    def requeue(self, item_id: str, now: Optional[datetime] = None) -> QueuedNotification:
        """Manually retry a failed item with a fresh attempt budget"""
        now = now or datetime.utcnow()
        with self._lock:
            item = self._require(item_id)
            transition(item, QueueStatus.PENDING, now, "manual retry")
            item.current_attempts = 0
            item.next_retry_at = None
            item.scheduled_for = now
        logger.info(f"Requeued notification {item.id}")
        return item

    def release_processing(self, now: Optional[datetime] = None) -> int:
        """Return items stuck in processing to pending (worker shutdown/crash)"""
        now = now or datetime.utcnow()
        released = 0
        with self._lock:
            for item in self._items.values():
                if item.status == QueueStatus.PROCESSING:
                    transition(item, QueueStatus.PENDING, now, "released")
                    released += 1
        if released:
            logger.info(f"Released {released} in-flight notification(s)")
        return released

    def depth(self) -> int:
        return sum(1 for i in self._items.values() if i.status == QueueStatus.PENDING)

    def stats(self, now: Optional[datetime] = None) -> QueueStats:
        now = now or datetime.utcnow()
        items = list(self._items.values())
        by_status = Counter(i.status.value for i in items)
        by_channel = Counter(i.channel.value for i in items)
        return QueueStats(
            total=len(items),
            due=sum(1 for i in items if i.is_due(now)),
            by_status={s.value: by_status.get(s.value, 0) for s in QueueStatus},
            by_channel={c.value: by_channel.get(c.value, 0) for c in NotificationChannel},
        )


