"""Configuration for the SignalDesk server"""
import os

# ============================================================
# WEB SERVER
# ============================================================
WEB_HOST = os.getenv("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.getenv("WEB_PORT", "8000"))

# Logging level for the application loggers
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ============================================================
# DELIVERY WORKER
# ============================================================
# Set to "false" to run the API without delivering queued notifications
# (tests, or a separate worker process)
WORKER_ENABLED = os.getenv("WORKER_ENABLED", "true").lower() in ("1", "true", "yes")

# Other service settings are read where they are used:
#   JWT_SECRET, JWT_ALGORITHM, JWT_EXPIRY_HOURS, ADMIN_EMAIL, ADMIN_PASSWORD  (signaldesk.auth.service)
#   RETRY_BASE_DELAY, RETRY_MAX_DELAY                                         (signaldesk.notifications.queue)
#   CHANNEL_FAILURE_THRESHOLD, CHANNEL_HEALTH_COOLDOWN                        (signaldesk.notifications.channels)
#   WORKER_POLL_INTERVAL, WORKER_BATCH_SIZE, WORKER_CONCURRENCY               (signaldesk.notifications.worker)
#   PROVIDER_TIMEOUT, SMTP_*, TELEGRAM_BOT_TOKEN, DISCORD_WEBHOOK_URL,
#   SMS_GATEWAY_*, PUSH_GATEWAY_*                                             (signaldesk.notifications.providers)
#   TRADINGVIEW_WEBHOOK_SECRET                                                (signaldesk.webhooks.service)
