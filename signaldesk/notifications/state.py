"""
Notification queue state machine.

    pending ──► processing ──► sent ──► delivered
       │            │            └────► failed      (bounce)
       │            ├──► pending                    (retry scheduled / deferred)
       │            └──► failed                     (retries exhausted / permanent)
       └──► cancelled

    failed ──► pending                              (manual requeue)

delivered and cancelled are terminal.
"""

import logging
from datetime import datetime
from typing import Dict, Set, Tuple

from .errors import InvalidTransitionError
from .models import QueueStatus, QueuedNotification

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[QueueStatus, Set[QueueStatus]] = {
    QueueStatus.PENDING: {
        QueueStatus.PROCESSING,
        QueueStatus.CANCELLED,
    },
    QueueStatus.PROCESSING: {
        QueueStatus.SENT,
        QueueStatus.FAILED,
        QueueStatus.PENDING,
    },
    QueueStatus.SENT: {
        QueueStatus.DELIVERED,
        QueueStatus.FAILED,
    },
    QueueStatus.FAILED: {
        QueueStatus.PENDING,
    },
    QueueStatus.DELIVERED: set(),
    QueueStatus.CANCELLED: set(),
}

TERMINAL_STATES = frozenset(
    status for status, targets in VALID_TRANSITIONS.items() if not targets
)


def can_transition(from_status: QueueStatus, to_status: QueueStatus) -> Tuple[bool, str]:
    """Check if a transition is allowed, with the reason"""
    if to_status in VALID_TRANSITIONS.get(from_status, set()):
        return True, "Valid transition"
    if from_status in TERMINAL_STATES:
        return False, f"Cannot transition from terminal state {from_status.value}"
    return False, f"Invalid transition: {from_status.value} -> {to_status.value}"


def transition(
    item: QueuedNotification,
    to_status: QueueStatus,
    now: datetime,
    reason: str = "",
) -> QueuedNotification:
    """Move an item to a new status or raise InvalidTransitionError"""
    allowed, why = can_transition(item.status, to_status)
    if not allowed:
        logger.warning(f"Rejected transition for {item.id}: {why}")
        raise InvalidTransitionError(item.id, item.status.value, to_status.value)

    from_status = item.status
    item.status = to_status
    item.updated_at = now
    logger.debug(
        f"Notification {item.id} [{item.channel.value}] "
        f"{from_status.value} -> {to_status.value}" + (f" ({reason})" if reason else "")
    )
    return item
