"""
Notification error taxonomy.

Delivery errors are split by whether a retry can help:
- TransientDeliveryError: timeouts, 5xx, rate limits, network failures
- PermanentDeliveryError: bad recipient, rejected payload, blocked bot
"""

from typing import Optional, Dict, Any, List


class NotificationError(Exception):
    """Base class for notification errors"""


class InvalidTransitionError(NotificationError):
    """Queue status change not allowed by the state machine"""

    def __init__(self, item_id: str, from_status: str, to_status: str):
        self.item_id = item_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Notification {item_id}: cannot transition {from_status} -> {to_status}"
        )


class TemplateRenderError(NotificationError):
    """Template references variables that were not supplied"""

    def __init__(self, template: str, missing: List[str]):
        self.template = template
        self.missing = missing
        super().__init__(
            f"Template '{template}' is missing variables: {', '.join(missing)}"
        )


class DeliveryError(NotificationError):
    """Provider failed to deliver a notification"""

    retryable = True

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}


class TransientDeliveryError(DeliveryError):
    retryable = True


class PermanentDeliveryError(DeliveryError):
    retryable = False
