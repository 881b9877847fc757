"""
Subscription tiers and the feature access matrix.
"""

from .models import SubscriptionTier, SubscriptionStatus, FeatureAccess, SubscriptionPlan
from .access import (
    AccessDeniedError,
    get_feature_access,
    has_access,
    effective_tier,
    user_has_access,
    channel_allowed,
    can_add_ticker,
    can_receive_signal,
    get_upgrade_message,
)

__all__ = [
    "SubscriptionTier",
    "SubscriptionStatus",
    "FeatureAccess",
    "SubscriptionPlan",
    "AccessDeniedError",
    "get_feature_access",
    "has_access",
    "effective_tier",
    "user_has_access",
    "channel_allowed",
    "can_add_ticker",
    "can_receive_signal",
    "get_upgrade_message",
]
