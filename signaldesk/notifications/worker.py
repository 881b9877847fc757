"""Background worker that delivers notifications from the queue."""

import os
import asyncio
import logging
import time
from datetime import datetime
from typing import Optional, Dict

from signaldesk import metrics
from .errors import DeliveryError, PermanentDeliveryError
from .models import (
    NotificationChannel, QueuedNotification, QueueStatus, LogStatus, CRITICAL_PRIORITY,
)
from .providers import NotificationProvider
from .service import NotificationService

logger = logging.getLogger(__name__)

WORKER_POLL_INTERVAL = float(os.getenv("WORKER_POLL_INTERVAL", "2.0"))
WORKER_BATCH_SIZE = int(os.getenv("WORKER_BATCH_SIZE", "25"))
WORKER_CONCURRENCY = int(os.getenv("WORKER_CONCURRENCY", "5"))


class DeliveryWorker:
    """
    Claims due notifications and hands them to channel providers.

    Per item:
    1. Quiet hours and hourly caps defer non-critical items
    2. The channel registry picks a healthy, non-rate-limited channel
       (otherwise the item is deferred without spending an attempt)
    3. The provider sends; transient failures are retried with backoff,
       permanent ones fail the item
    """

    def __init__(
        self,
        service: NotificationService,
        providers: Dict[NotificationChannel, NotificationProvider],
        poll_interval: float = WORKER_POLL_INTERVAL,
        batch_size: int = WORKER_BATCH_SIZE,
        concurrency: int = WORKER_CONCURRENCY,
    ):
        self.service = service
        self.providers = providers
        self.poll_interval = poll_interval
        self.batch_size = batch_size
        self.concurrency = max(1, concurrency)

        self.processed = 0
        self.last_run_at: Optional[datetime] = None

    async def run(self, shutdown_event: asyncio.Event):
        """Main delivery loop."""
        logger.info(
            f"Delivery worker started (poll={self.poll_interval}s, batch={self.batch_size}, "
            f"concurrency={self.concurrency})"
        )
        while not shutdown_event.is_set():
            try:
                processed = await self.process_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("Delivery loop failure, retrying", exc_info=True)
                processed = 0

            if processed == 0:
                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass

        self.service.queue.release_processing()
        logger.info("Delivery worker stopped")

    async def process_once(self, now: Optional[datetime] = None) -> int:
        """Claim and deliver one batch; returns the number of items handled"""
        now = now or datetime.utcnow()
        self.last_run_at = now
        batch = self.service.queue.claim_due(now, self.batch_size)
        if not batch:
            metrics.QUEUE_DEPTH.set(self.service.queue.depth())
            return 0

        semaphore = asyncio.Semaphore(self.concurrency)

        async def _guarded(item: QueuedNotification):
            async with semaphore:
                await self._dispatch(item, now)

        await asyncio.gather(*(_guarded(item) for item in batch))

        self.processed += len(batch)
        metrics.QUEUE_DEPTH.set(self.service.queue.depth())
        for channel in self.service.channels.list():
            metrics.CHANNEL_HEALTHY.labels(channel=channel.name).set(1 if channel.is_healthy else 0)
        return len(batch)

    def _defer(self, item: QueuedNotification, until: datetime, reason: str, now: datetime):
        self.service.queue.defer(item.id, until, reason, now)
        metrics.NOTIFICATIONS_DEFERRED.labels(channel=item.channel.value, reason=reason.split(":")[0]).inc()

    async def _dispatch(self, item: QueuedNotification, now: datetime):
        queue = self.service.queue
        prefs = self.service.preferences
        # An hourly-cap slot taken for this item, given back unless the send succeeds
        reserved = False
        sent = False

        try:
            if item.priority < CRITICAL_PRIORITY:
                quiet_until = prefs.quiet_until(item.user_id, now)
                if quiet_until:
                    self._defer(item, quiet_until, "quiet hours", now)
                    return
                cap_until = prefs.reserve_slot(item.user_id, now)
                if cap_until:
                    self._defer(item, cap_until, "hourly cap", now)
                    return
                reserved = True

            provider = self.providers.get(item.channel)
            if provider is None:
                queue.mark_failed(item.id, f"No provider for {item.channel.value}", permanent=True, now=now)
                self.service.logs.record(item, LogStatus.FAILED, error_code="no_provider",
                                         error_message=queue.get(item.id).last_error, now=now)
                metrics.NOTIFICATIONS_FAILED.labels(channel=item.channel.value, kind="permanent").inc()
                self.service.emit(item)
                return

            availability = self.service.channels.acquire(item.channel, now)
            if not availability.ok:
                self._defer(item, availability.retry_at or now, f"channel unavailable: {availability.reason}", now)
                return

            sent = await self._send(item, provider, availability.channel_id, now)
            if sent and not reserved:
                prefs.record_delivery(item.user_id, now)

        except Exception:
            # Never leave an item stuck in processing
            logger.error(f"Unexpected error dispatching {item.id}", exc_info=True)
            if item.status == QueueStatus.PROCESSING:
                queue.mark_failed(item.id, "internal error", now=now)
                self.service.emit(item)
        finally:
            if reserved and not sent:
                prefs.release_slot(item.user_id, now)

    async def _send(
        self,
        item: QueuedNotification,
        provider: NotificationProvider,
        channel_id: str,
        now: datetime,
    ) -> bool:
        """Send through the provider; True when the message went out"""
        queue = self.service.queue
        channels = self.service.channels
        started = time.monotonic()
        item.channel_id = channel_id

        try:
            result = await provider.send(item)
        except DeliveryError as e:
            elapsed_ms = int((time.monotonic() - started) * 1000)
            permanent = isinstance(e, PermanentDeliveryError)
            channels.record_failure(channel_id, str(e), transient=not permanent, now=now)
            queue.mark_failed(
                item.id, str(e), permanent=permanent,
                details={"code": e.code, **e.details}, now=now,
            )
            self.service.logs.record(
                item, LogStatus.FAILED, provider=provider.name,
                processing_time_ms=elapsed_ms, error_code=e.code, error_message=str(e), now=now,
            )
            metrics.NOTIFICATIONS_FAILED.labels(
                channel=item.channel.value, kind="permanent" if permanent else "transient"
            ).inc()
            self.service.emit(item)
            return False

        elapsed = time.monotonic() - started
        elapsed_ms = int(elapsed * 1000)

        queue.mark_sent(item.id, result.provider_message_id, now)
        if result.delivered:
            queue.mark_delivered(item.id, now)

        channels.record_success(channel_id, elapsed_ms, delivered=result.delivered, now=now)
        self.service.logs.record(
            item,
            LogStatus.DELIVERED if result.delivered else LogStatus.SENT,
            provider=result.provider,
            provider_message_id=result.provider_message_id,
            provider_response=result.response or None,
            processing_time_ms=elapsed_ms,
            now=now,
        )
        metrics.NOTIFICATIONS_SENT.labels(channel=item.channel.value).inc()
        metrics.DELIVERY_LATENCY.labels(channel=item.channel.value).observe(elapsed)
        self.service.emit(item)
        return True
