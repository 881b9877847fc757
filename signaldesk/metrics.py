"""
Prometheus metrics for signal ingestion and notification delivery.

Exposed in Prometheus text format at /metrics.
"""

from prometheus_client import (
    Counter, Gauge, Histogram,
    generate_latest, CONTENT_TYPE_LATEST,
)

SIGNALS_CREATED = Counter(
    "signaldesk_signals_created_total",
    "Trading signals stored",
    ["source"],
)

WEBHOOK_REQUESTS = Counter(
    "signaldesk_webhook_requests_total",
    "Inbound signal webhooks by outcome",
    ["source", "outcome"],
)

NOTIFICATIONS_ENQUEUED = Counter(
    "signaldesk_notifications_enqueued_total",
    "Notifications added to the delivery queue",
    ["channel"],
)

NOTIFICATIONS_SENT = Counter(
    "signaldesk_notifications_sent_total",
    "Notifications handed off to a provider",
    ["channel"],
)

NOTIFICATIONS_FAILED = Counter(
    "signaldesk_notifications_failed_total",
    "Failed delivery attempts",
    ["channel", "kind"],
)

NOTIFICATIONS_DEFERRED = Counter(
    "signaldesk_notifications_deferred_total",
    "Deliveries postponed without spending an attempt",
    ["channel", "reason"],
)

DELIVERY_LATENCY = Histogram(
    "signaldesk_delivery_latency_seconds",
    "Provider round-trip time",
    ["channel"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

QUEUE_DEPTH = Gauge(
    "signaldesk_queue_pending",
    "Pending notifications in the queue",
)

CHANNEL_HEALTHY = Gauge(
    "signaldesk_channel_healthy",
    "1 if the channel is healthy",
    ["channel"],
)


def render_latest() -> tuple:
    """(body, content type) for the /metrics endpoint"""
    return generate_latest(), CONTENT_TYPE_LATEST
