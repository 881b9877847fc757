"""
Tests for the notification queue and its state machine.
"""

import pytest
from datetime import timedelta

from signaldesk.notifications.errors import InvalidTransitionError
from signaldesk.notifications.models import NotificationChannel, NotificationCreate, QueueStatus
from signaldesk.notifications.queue import NotificationQueue, compute_backoff
from signaldesk.notifications.state import TERMINAL_STATES, can_transition


def create(**overrides) -> NotificationCreate:
    data = {
        "user_id": "user-1",
        "channel": NotificationChannel.EMAIL,
        "recipient": "trader@example.com",
        "message": "BUY BTCUSDT",
    }
    data.update(overrides)
    return NotificationCreate(**data)


@pytest.fixture
def queue() -> NotificationQueue:
    return NotificationQueue(retry_base_delay=30, retry_max_delay=3600)


class TestStateMachine:

    def test_terminal_states(self):
        assert TERMINAL_STATES == {QueueStatus.DELIVERED, QueueStatus.CANCELLED}

    @pytest.mark.parametrize("from_status,to_status,allowed", [
        (QueueStatus.PENDING, QueueStatus.PROCESSING, True),
        (QueueStatus.PENDING, QueueStatus.CANCELLED, True),
        (QueueStatus.PENDING, QueueStatus.SENT, False),
        (QueueStatus.PROCESSING, QueueStatus.DELIVERED, False),
        (QueueStatus.SENT, QueueStatus.DELIVERED, True),
        (QueueStatus.PROCESSING, QueueStatus.CANCELLED, False),
        (QueueStatus.SENT, QueueStatus.FAILED, True),
        (QueueStatus.FAILED, QueueStatus.PENDING, True),
        (QueueStatus.DELIVERED, QueueStatus.PENDING, False),
        (QueueStatus.CANCELLED, QueueStatus.PENDING, False),
    ])
    def test_transitions(self, from_status, to_status, allowed):
        ok, reason = can_transition(from_status, to_status)
        assert ok is allowed
        assert reason


class TestBackoff:

    def test_doubles_from_base(self):
        assert compute_backoff(1, 30, 3600) == 30
        assert compute_backoff(2, 30, 3600) == 60
        assert compute_backoff(3, 30, 3600) == 120

    def test_capped(self):
        assert compute_backoff(20, 30, 3600) == 3600


class TestNotificationQueue:

    def test_enqueue_defaults(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(recipient="  trader@example.com "), now)

        assert item.status == QueueStatus.PENDING
        assert item.recipient == "trader@example.com"
        assert item.priority == 5
        assert item.max_retries == 3
        assert item.current_attempts == 0
        assert item.scheduled_for == now
        assert queue.depth() == 1

    def test_blank_recipient_rejected(self, queue: NotificationQueue):
        with pytest.raises(ValueError):
            queue.enqueue(create(recipient="   "))

    def test_priority_out_of_range(self):
        with pytest.raises(ValueError):
            create(priority=11)

    def test_claim_order(self, queue: NotificationQueue, now):
        low = queue.enqueue(create(priority=2), now)
        high = queue.enqueue(create(priority=9), now + timedelta(seconds=1))
        mid_early = queue.enqueue(create(priority=5), now)
        mid_late = queue.enqueue(create(priority=5, scheduled_for=now + timedelta(seconds=5)), now)

        claimed = queue.claim_due(now + timedelta(seconds=10), limit=10)

        assert [i.id for i in claimed] == [high.id, mid_early.id, mid_late.id, low.id]
        assert all(i.status == QueueStatus.PROCESSING for i in claimed)

    def test_future_items_not_claimed(self, queue: NotificationQueue, now):
        queue.enqueue(create(scheduled_for=now + timedelta(minutes=5)), now)
        assert queue.claim_due(now) == []

    def test_claim_limit(self, queue: NotificationQueue, now):
        for _ in range(5):
            queue.enqueue(create(), now)
        assert len(queue.claim_due(now, limit=2)) == 2
        assert queue.depth() == 3

    def test_transient_failure_schedules_retry(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.claim_due(now)

        queue.mark_failed(item.id, "timeout", now=now)

        assert item.status == QueueStatus.PENDING
        assert item.current_attempts == 1
        assert item.last_error == "timeout"
        assert item.next_retry_at == now + timedelta(seconds=30)
        assert not item.is_due(now + timedelta(seconds=29))
        assert item.is_due(now + timedelta(seconds=30))

    def test_retries_exhausted(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(max_retries=2), now)
        delays = []

        t = now
        for _ in range(3):
            assert queue.claim_due(t) == [item]
            queue.mark_failed(item.id, "boom", now=t)
            if item.next_retry_at:
                delays.append((item.next_retry_at - t).total_seconds())
                t = item.next_retry_at

        assert delays == [30, 60]
        assert item.status == QueueStatus.FAILED
        assert item.current_attempts == 3
        assert item.next_retry_at is None

    def test_permanent_failure_skips_retries(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.claim_due(now)

        queue.mark_failed(item.id, "bad address", permanent=True, now=now)

        assert item.status == QueueStatus.FAILED
        assert item.current_attempts == 1

    def test_sent_then_delivered(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.claim_due(now)

        queue.mark_sent(item.id, "provider-1", now)
        assert item.status == QueueStatus.SENT
        assert item.current_attempts == 1
        assert item.provider_message_id == "provider-1"

        later = now + timedelta(seconds=3)
        queue.mark_delivered(item.id, later)
        assert item.status == QueueStatus.DELIVERED
        assert item.delivered_at == later
        assert item.current_attempts == 1

    def test_delivered_requires_sent(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.claim_due(now)

        with pytest.raises(InvalidTransitionError):
            queue.mark_delivered(item.id, now)
        assert item.status == QueueStatus.PROCESSING
        assert item.delivered_at is None

    def test_bounce(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.claim_due(now)
        queue.mark_sent(item.id, None, now)

        queue.mark_bounced(item.id, "mailbox full", now)

        assert item.status == QueueStatus.FAILED
        assert item.last_error == "mailbox full"

    def test_defer_keeps_attempts(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.claim_due(now)
        until = now + timedelta(hours=2)

        queue.defer(item.id, until, "quiet hours", now)

        assert item.status == QueueStatus.PENDING
        assert item.current_attempts == 0
        assert item.next_retry_at == until

    def test_cancel_only_pending(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.cancel(item.id, now)
        assert item.status == QueueStatus.CANCELLED

        with pytest.raises(InvalidTransitionError):
            queue.cancel(item.id, now)

    def test_requeue_resets_budget(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(max_retries=0), now)
        queue.claim_due(now)
        queue.mark_failed(item.id, "boom", now=now)
        assert item.status == QueueStatus.FAILED

        later = now + timedelta(minutes=1)
        queue.requeue(item.id, later)

        assert item.status == QueueStatus.PENDING
        assert item.current_attempts == 0
        assert item.scheduled_for == later
        assert item.is_due(later)

    def test_requeue_rejects_delivered(self, queue: NotificationQueue, now):
        item = queue.enqueue(create(), now)
        queue.claim_due(now)
        queue.mark_sent(item.id, None, now)
        queue.mark_delivered(item.id, now)
        with pytest.raises(InvalidTransitionError):
            queue.requeue(item.id, now)

    def test_unknown_item(self, queue: NotificationQueue):
        with pytest.raises(KeyError):
            queue.cancel("missing")

    def test_release_processing(self, queue: NotificationQueue, now):
        queue.enqueue(create(), now)
        queue.enqueue(create(), now)
        queue.claim_due(now)

        assert queue.release_processing(now) == 2
        assert queue.depth() == 2

    def test_list_and_stats(self, queue: NotificationQueue, now):
        a = queue.enqueue(create(channel=NotificationChannel.SMS, recipient="+15550001"), now)
        queue.enqueue(create(), now + timedelta(seconds=1))
        queue.cancel(a.id, now)

        assert len(queue.list(status=QueueStatus.PENDING)) == 1
        assert queue.list(channel=NotificationChannel.SMS)[0].id == a.id

        stats = queue.stats(now + timedelta(seconds=5))
        assert stats.total == 2
        assert stats.due == 1
        assert stats.by_status["cancelled"] == 1
        assert stats.by_channel["sms"] == 1
        assert stats.by_channel["telegram"] == 0
