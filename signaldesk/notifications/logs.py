"""
Delivery log: one row per delivery attempt outcome.
"""

import uuid
from collections import deque
from datetime import datetime
from typing import Optional, List, Dict, Any

from .models import DeliveryLog, LogStatus, NotificationChannel, QueuedNotification


class DeliveryLogStore:
    """Bounded in-memory delivery log, newest last"""

    def __init__(self, maxlen: int = 10_000):
        self._logs: deque = deque(maxlen=maxlen)

    def record(
        self,
        item: QueuedNotification,
        status: LogStatus,
        provider: Optional[str] = None,
        provider_message_id: Optional[str] = None,
        provider_response: Optional[Dict[str, Any]] = None,
        processing_time_ms: Optional[int] = None,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> DeliveryLog:
        now = now or datetime.utcnow()
        entry = DeliveryLog(
            id=str(uuid.uuid4()),
            queue_id=item.id,
            user_id=item.user_id,
            channel=item.channel,
            recipient=item.recipient,
            status=status,
            provider=provider,
            provider_message_id=provider_message_id,
            provider_response=provider_response,
            processing_time_ms=processing_time_ms,
            error_code=error_code,
            error_message=error_message,
            sent_at=now if status in (LogStatus.SENT, LogStatus.DELIVERED) else None,
            delivered_at=now if status == LogStatus.DELIVERED else None,
            created_at=now,
        )
        self._logs.append(entry)
        return entry

    def list(
        self,
        channel: Optional[NotificationChannel] = None,
        status: Optional[LogStatus] = None,
        queue_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[DeliveryLog]:
        """Newest first"""
        matches = [
            log for log in reversed(self._logs)
            if (channel is None or log.channel == channel)
            and (status is None or log.status == status)
            and (queue_id is None or log.queue_id == queue_id)
        ]
        return matches[:limit]
