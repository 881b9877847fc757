"""
Delivery channel registry: configuration, rate limits and health.

A channel is marked unhealthy after CHANNEL_FAILURE_THRESHOLD consecutive
transient failures. While unhealthy, deliveries are deferred until the
cooldown has passed; then one probe delivery is let through and its
outcome decides whether the channel recovers.
"""

import os
import logging
import threading
import uuid
from collections import defaultdict, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Dict, List, Deque

from .models import ChannelConfig, ChannelCreate, ChannelUpdate, NotificationChannel

logger = logging.getLogger(__name__)

CHANNEL_FAILURE_THRESHOLD = int(os.getenv("CHANNEL_FAILURE_THRESHOLD", "5"))
CHANNEL_HEALTH_COOLDOWN = float(os.getenv("CHANNEL_HEALTH_COOLDOWN", "300"))

MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)

DEFAULT_PROVIDERS = {
    NotificationChannel.EMAIL: "smtp",
    NotificationChannel.SMS: "http_gateway",
    NotificationChannel.PUSH: "http_gateway",
    NotificationChannel.TELEGRAM: "telegram_bot",
    NotificationChannel.DISCORD: "discord_webhook",
}


@dataclass
class Availability:
    """Result of asking whether a channel can send right now"""
    ok: bool
    channel_id: Optional[str] = None
    retry_at: Optional[datetime] = None
    reason: str = ""


class ChannelRegistry:
    """Channel configurations with sliding-window rate limits and health tracking"""

    def __init__(
        self,
        failure_threshold: int = CHANNEL_FAILURE_THRESHOLD,
        health_cooldown: float = CHANNEL_HEALTH_COOLDOWN,
        seed_defaults: bool = True,
    ):
        self.failure_threshold = failure_threshold
        self.health_cooldown = timedelta(seconds=health_cooldown)
        self._channels: Dict[str, ChannelConfig] = {}
        self._sends: Dict[str, Deque[datetime]] = defaultdict(deque)
        self._lock = threading.RLock()

        if seed_defaults:
            for channel_type, provider in DEFAULT_PROVIDERS.items():
                self.create(ChannelCreate(
                    name=f"default-{channel_type.value}",
                    type=channel_type,
                    provider=provider,
                ))

    def create(self, data: ChannelCreate) -> ChannelConfig:
        if any(c.name == data.name for c in self._channels.values()):
            raise ValueError(f"Channel '{data.name}' already exists")

        now = datetime.utcnow()
        channel = ChannelConfig(
            id=str(uuid.uuid4()),
            name=data.name,
            type=data.type,
            provider=data.provider,
            is_enabled=data.is_enabled,
            config=data.config,
            rate_limit_per_minute=data.rate_limit_per_minute,
            rate_limit_per_hour=data.rate_limit_per_hour,
            created_at=now,
            updated_at=now,
        )
        self._channels[channel.id] = channel
        logger.info(f"Registered channel {channel.name} ({channel.type.value}/{channel.provider})")
        return channel

    def get(self, channel_id: str) -> Optional[ChannelConfig]:
        return self._channels.get(channel_id)

    def list(self) -> List[ChannelConfig]:
        return sorted(self._channels.values(), key=lambda c: (c.type.value, c.created_at))

    def update(self, channel_id: str, data: ChannelUpdate) -> Optional[ChannelConfig]:
        channel = self._channels.get(channel_id)
        if channel is None:
            return None
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(channel, key, value)
        channel.updated_at = datetime.utcnow()
        return channel

    def for_type(self, channel_type: NotificationChannel) -> List[ChannelConfig]:
        """Enabled channels of a type, healthy ones first"""
        channels = [
            c for c in self._channels.values()
            if c.type == channel_type and c.is_enabled
        ]
        channels.sort(key=lambda c: (not c.is_healthy, c.created_at))
        return channels

    def _prune(self, channel_id: str, now: datetime) -> Deque[datetime]:
        sends = self._sends[channel_id]
        while sends and sends[0] <= now - HOUR:
            sends.popleft()
        return sends

    def _rate_limit_until(self, channel: ChannelConfig, now: datetime) -> Optional[datetime]:
        sends = self._prune(channel.id, now)
        if len(sends) >= channel.rate_limit_per_hour:
            return sends[0] + HOUR

        last_minute = [t for t in sends if t > now - MINUTE]
        if len(last_minute) >= channel.rate_limit_per_minute:
            return last_minute[0] + MINUTE
        return None

    def acquire(self, channel_type: NotificationChannel, now: Optional[datetime] = None) -> Availability:
        """
        Pick a channel of the given type that can send now and reserve a slot.

        Falls over to the next channel of the same type when one is
        unhealthy or rate limited.
        """
        now = now or datetime.utcnow()
        with self._lock:
            candidates = self.for_type(channel_type)
            if not candidates:
                return Availability(ok=False, retry_at=now + self.health_cooldown,
                                    reason=f"no enabled {channel_type.value} channel")

            earliest: Optional[datetime] = None
            reasons = []
            for channel in candidates:
                if not channel.is_healthy:
                    probe_at = (channel.last_health_check or now) + self.health_cooldown
                    if probe_at > now:
                        reasons.append(f"{channel.name} unhealthy")
                        earliest = min(earliest or probe_at, probe_at)
                        continue
                    # Half-open: let one probe through, hold the others back
                    channel.last_health_check = now
                    logger.info(f"Probing unhealthy channel {channel.name}")

                limited_until = self._rate_limit_until(channel, now)
                if limited_until is not None:
                    reasons.append(f"{channel.name} rate limited")
                    earliest = min(earliest or limited_until, limited_until)
                    continue

                self._sends[channel.id].append(now)
                return Availability(ok=True, channel_id=channel.id)

            return Availability(ok=False, retry_at=earliest, reason=", ".join(reasons))

    def record_success(
        self,
        channel_id: str,
        latency_ms: int,
        delivered: bool = False,
        now: Optional[datetime] = None,
    ):
        now = now or datetime.utcnow()
        with self._lock:
            channel = self._channels.get(channel_id)
            if channel is None:
                return
            channel.total_sent += 1
            if delivered:
                channel.total_delivered += 1
            # Running mean over successful sends
            channel.avg_delivery_time_ms = int(
                channel.avg_delivery_time_ms
                + (latency_ms - channel.avg_delivery_time_ms) / channel.total_sent
            )
            if not channel.is_healthy:
                logger.info(f"Channel {channel.name} recovered")
            channel.consecutive_failures = 0
            channel.is_healthy = True
            channel.last_health_check = now
            channel.updated_at = now

    def record_delivered(self, channel_id: str):
        channel = self._channels.get(channel_id)
        if channel is not None:
            channel.total_delivered += 1

    def record_failure(
        self,
        channel_id: str,
        error: str,
        transient: bool = True,
        now: Optional[datetime] = None,
    ):
        """Count a failure; only transient ones affect health"""
        now = now or datetime.utcnow()
        with self._lock:
            channel = self._channels.get(channel_id)
            if channel is None:
                return
            channel.total_failed += 1
            channel.last_error = error
            channel.updated_at = now
            if not transient:
                return

            channel.consecutive_failures += 1
            if channel.is_healthy and channel.consecutive_failures >= self.failure_threshold:
                channel.is_healthy = False
                logger.warning(
                    f"Channel {channel.name} marked unhealthy after "
                    f"{channel.consecutive_failures} consecutive failures: {error}"
                )
            if not channel.is_healthy:
                channel.last_health_check = now
