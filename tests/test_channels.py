"""
Tests for channel rate limits, health tracking and failover.
"""

import pytest
from datetime import timedelta

from signaldesk.notifications.channels import ChannelRegistry
from signaldesk.notifications.models import ChannelCreate, ChannelUpdate, NotificationChannel


@pytest.fixture
def registry() -> ChannelRegistry:
    return ChannelRegistry(failure_threshold=5, health_cooldown=300)


def default_email(registry: ChannelRegistry):
    return registry.for_type(NotificationChannel.EMAIL)[0]


class TestHealth:

    def test_unhealthy_after_threshold(self, registry, now):
        channel = default_email(registry)

        for _ in range(4):
            registry.record_failure(channel.id, "timeout", now=now)
        assert channel.is_healthy

        registry.record_failure(channel.id, "timeout", now=now)
        assert not channel.is_healthy
        assert channel.consecutive_failures == 5
        assert channel.total_failed == 5

    def test_permanent_failures_do_not_affect_health(self, registry, now):
        channel = default_email(registry)
        for _ in range(10):
            registry.record_failure(channel.id, "bad address", transient=False, now=now)

        assert channel.is_healthy
        assert channel.consecutive_failures == 0
        assert channel.total_failed == 10

    def test_success_resets_failures(self, registry, now):
        channel = default_email(registry)
        for _ in range(3):
            registry.record_failure(channel.id, "timeout", now=now)
        registry.record_success(channel.id, latency_ms=120, now=now)

        assert channel.consecutive_failures == 0
        assert channel.total_sent == 1
        assert channel.avg_delivery_time_ms == 120

    def test_unhealthy_channel_deferred_until_cooldown(self, registry, now):
        channel = default_email(registry)
        for _ in range(5):
            registry.record_failure(channel.id, "timeout", now=now)

        blocked = registry.acquire(NotificationChannel.EMAIL, now)
        assert not blocked.ok
        assert blocked.retry_at == now + timedelta(seconds=300)
        assert "unhealthy" in blocked.reason

        # Half-open: one probe after the cooldown, the next waits again
        probe_time = now + timedelta(seconds=300)
        assert registry.acquire(NotificationChannel.EMAIL, probe_time).ok
        assert not registry.acquire(NotificationChannel.EMAIL, probe_time).ok

        registry.record_success(channel.id, latency_ms=50, now=probe_time)
        assert channel.is_healthy
        assert registry.acquire(NotificationChannel.EMAIL, probe_time).ok

    def test_failover_to_healthy_channel(self, registry, now):
        primary = default_email(registry)
        backup = registry.create(ChannelCreate(
            name="backup-email", type=NotificationChannel.EMAIL, provider="smtp",
        ))
        for _ in range(5):
            registry.record_failure(primary.id, "timeout", now=now)

        availability = registry.acquire(NotificationChannel.EMAIL, now)
        assert availability.ok
        assert availability.channel_id == backup.id


class TestRateLimits:

    def test_per_minute_limit(self, registry, now):
        channel = default_email(registry)
        registry.update(channel.id, ChannelUpdate(rate_limit_per_minute=2))

        assert registry.acquire(NotificationChannel.EMAIL, now).ok
        assert registry.acquire(NotificationChannel.EMAIL, now).ok

        limited = registry.acquire(NotificationChannel.EMAIL, now)
        assert not limited.ok
        assert limited.retry_at == now + timedelta(minutes=1)

        assert registry.acquire(NotificationChannel.EMAIL, now + timedelta(minutes=1)).ok

    def test_per_hour_limit(self, registry, now):
        channel = default_email(registry)
        registry.update(channel.id, ChannelUpdate(rate_limit_per_hour=3))

        for minute in range(3):
            assert registry.acquire(NotificationChannel.EMAIL, now + timedelta(minutes=minute)).ok

        limited = registry.acquire(NotificationChannel.EMAIL, now + timedelta(minutes=3))
        assert not limited.ok
        assert limited.retry_at == now + timedelta(hours=1)

    def test_rate_limited_channel_fails_over(self, registry, now):
        primary = default_email(registry)
        registry.update(primary.id, ChannelUpdate(rate_limit_per_minute=1))
        backup = registry.create(ChannelCreate(
            name="backup-email", type=NotificationChannel.EMAIL, provider="smtp",
        ))

        assert registry.acquire(NotificationChannel.EMAIL, now).channel_id == primary.id
        assert registry.acquire(NotificationChannel.EMAIL, now).channel_id == backup.id


def test_no_enabled_channel(registry, now):
    channel = registry.for_type(NotificationChannel.SMS)[0]
    registry.update(channel.id, ChannelUpdate(is_enabled=False))

    availability = registry.acquire(NotificationChannel.SMS, now)
    assert not availability.ok
    assert "no enabled sms channel" in availability.reason


def test_duplicate_channel_name(registry):
    with pytest.raises(ValueError):
        registry.create(ChannelCreate(
            name="default-email", type=NotificationChannel.EMAIL, provider="smtp",
        ))
