"""
Subscription tier access-control matrix.

Every feature lookup in the application goes through this module:
- `has_access(tier, feature)` for route and endpoint gating
- `effective_tier(user)` to collapse billing state into a tier
- limit checks for tickers, daily signals and delivery channels
"""

import logging
from datetime import datetime
from typing import Optional, Dict, List, Any, Union

from .models import (
    SubscriptionTier, SubscriptionStatus, FeatureAccess,
    SubscriptionPlan, NavItem,
)

logger = logging.getLogger(__name__)

UNLIMITED = -1

TierLike = Union[SubscriptionTier, str, None]


class AccessDeniedError(Exception):
    """Raised when the user's tier does not include a feature"""

    def __init__(self, feature: str, tier: SubscriptionTier):
        self.feature = feature
        self.tier = tier
        super().__init__(get_upgrade_message(feature))


SUBSCRIPTION_FEATURES: Dict[SubscriptionTier, FeatureAccess] = {
    SubscriptionTier.FREE: FeatureAccess(
        basic_signals=True,
        real_time_alerts=True,
        trading_dashboard=True,
        basic_charts=True,
        trading_playground=True,
        email_alerts=True,
        push_notifications=True,
        historical_data=True,
        max_tickers=3,
        max_signals_per_day=5,
    ),
    SubscriptionTier.BASIC: FeatureAccess(
        basic_signals=True,
        premium_signals=True,
        real_time_alerts=True,
        trading_dashboard=True,
        basic_charts=True,
        advanced_charts=True,
        trading_playground=True,
        email_alerts=True,
        sms_alerts=True,
        push_notifications=True,
        historical_data=True,
        max_tickers=10,
        max_signals_per_day=50,
    ),
    SubscriptionTier.PREMIUM: FeatureAccess(
        basic_signals=True,
        premium_signals=True,
        real_time_alerts=True,
        trading_dashboard=True,
        basic_charts=True,
        advanced_charts=True,
        heatmap_analysis=True,
        cycle_forecasting=True,
        trading_playground=True,
        email_alerts=True,
        sms_alerts=True,
        telegram_alerts=True,
        push_notifications=True,
        discord_alerts=True,
        webhook_alerts=True,
        advanced_alerts=True,
        advanced_analytics=True,
        historical_data=True,
        live_streaming=True,
        priority_support=True,
        custom_indicators=True,
        max_tickers=25,
        max_signals_per_day=200,
    ),
    SubscriptionTier.PRO: FeatureAccess(
        basic_signals=True,
        premium_signals=True,
        real_time_alerts=True,
        trading_dashboard=True,
        basic_charts=True,
        advanced_charts=True,
        heatmap_analysis=True,
        cycle_forecasting=True,
        trading_playground=True,
        email_alerts=True,
        sms_alerts=True,
        telegram_alerts=True,
        push_notifications=True,
        discord_alerts=True,
        webhook_alerts=True,
        advanced_alerts=True,
        multi_channel_alerts=True,
        advanced_analytics=True,
        historical_data=True,
        live_streaming=True,
        api_access=True,
        priority_support=True,
        custom_indicators=True,
        max_tickers=UNLIMITED,
        max_signals_per_day=UNLIMITED,
    ),
    SubscriptionTier.ELITE: FeatureAccess(
        basic_signals=True,
        premium_signals=True,
        real_time_alerts=True,
        trading_dashboard=True,
        basic_charts=True,
        advanced_charts=True,
        heatmap_analysis=True,
        cycle_forecasting=True,
        trading_playground=True,
        email_alerts=True,
        sms_alerts=True,
        telegram_alerts=True,
        push_notifications=True,
        discord_alerts=True,
        webhook_alerts=True,
        advanced_alerts=True,
        multi_channel_alerts=True,
        advanced_analytics=True,
        historical_data=True,
        live_streaming=True,
        api_access=True,
        priority_support=True,
        custom_indicators=True,
        white_label=True,
        max_tickers=UNLIMITED,
        max_signals_per_day=UNLIMITED,
    ),
}

LIMIT_FEATURES = {"max_tickers", "max_signals_per_day"}

# Delivery channel -> feature that unlocks it
CHANNEL_FEATURES: Dict[str, str] = {
    "email": "email_alerts",
    "sms": "sms_alerts",
    "telegram": "telegram_alerts",
    "push": "push_notifications",
    "discord": "discord_alerts",
}

PAID_STATUSES = {SubscriptionStatus.ACTIVE, SubscriptionStatus.TRIALING}

SUBSCRIPTION_PLANS: List[SubscriptionPlan] = [
    SubscriptionPlan(
        id="free",
        name="Free Tier",
        tier=SubscriptionTier.FREE,
        monthly_price=0,
        yearly_price=0,
        description="Get started with basic crypto analytics",
        features=SUBSCRIPTION_FEATURES[SubscriptionTier.FREE],
    ),
    SubscriptionPlan(
        id="basic",
        name="Basic Plan",
        tier=SubscriptionTier.BASIC,
        monthly_price=2999,
        yearly_price=29999,
        description="Essential tools for serious traders",
        features=SUBSCRIPTION_FEATURES[SubscriptionTier.BASIC],
    ),
    SubscriptionPlan(
        id="premium",
        name="Premium Plan",
        tier=SubscriptionTier.PREMIUM,
        monthly_price=5999,
        yearly_price=59999,
        description="Advanced analytics for professional traders",
        is_popular=True,
        features=SUBSCRIPTION_FEATURES[SubscriptionTier.PREMIUM],
    ),
    SubscriptionPlan(
        id="pro",
        name="Pro Plan",
        tier=SubscriptionTier.PRO,
        monthly_price=9999,
        yearly_price=99999,
        description="Complete toolkit for institutional traders",
        features=SUBSCRIPTION_FEATURES[SubscriptionTier.PRO],
    ),
    SubscriptionPlan(
        id="elite",
        name="Elite Plan",
        tier=SubscriptionTier.ELITE,
        monthly_price=19999,
        yearly_price=199999,
        description="White-label solution for trading firms",
        features=SUBSCRIPTION_FEATURES[SubscriptionTier.ELITE],
    ),
]

UPGRADE_MESSAGES: Dict[str, str] = {
    "basic_signals": "access trading signals",
    "premium_signals": "access premium trading signals",
    "real_time_alerts": "access real-time alerts",
    "trading_dashboard": "access the trading dashboard",
    "advanced_charts": "unlock advanced chart features",
    "heatmap_analysis": "view 200-week heatmap analysis",
    "cycle_forecasting": "access cycle forecasting",
    "sms_alerts": "enable SMS alerts",
    "telegram_alerts": "enable Telegram notifications",
    "discord_alerts": "enable Discord notifications",
    "webhook_alerts": "enable webhook integrations",
    "advanced_alerts": "create advanced alert conditions",
    "multi_channel_alerts": "deliver alerts on multiple channels",
    "advanced_analytics": "unlock advanced analytics",
    "live_streaming": "stream live market data",
    "api_access": "access API features",
    "custom_indicators": "create custom indicators",
    "white_label": "get the white-label solution",
    "max_tickers": "follow more tickers",
    "max_signals_per_day": "receive more daily signals",
}

# Dashboard navigation and the feature guarding each route
NAVIGATION: List[NavItem] = [
    NavItem(path="/dashboard", label="Dashboard", feature="trading_dashboard"),
    NavItem(path="/signals", label="Signals", feature="basic_signals"),
    NavItem(path="/charts", label="Charts", feature="basic_charts"),
    NavItem(path="/charts/advanced", label="Advanced Charts", feature="advanced_charts"),
    NavItem(path="/heatmap", label="Heatmap Analyzer", feature="heatmap_analysis"),
    NavItem(path="/cycle-forecast", label="Cycle Forecasting", feature="cycle_forecasting"),
    NavItem(path="/playground", label="Trading Playground", feature="trading_playground"),
    NavItem(path="/analytics", label="Analytics", feature="advanced_analytics"),
    NavItem(path="/alerts", label="Alerts", feature="real_time_alerts"),
    NavItem(path="/api-keys", label="API Access", feature="api_access"),
    NavItem(path="/notifications", label="Notifications"),
    NavItem(path="/subscription", label="Subscription"),
    NavItem(path="/admin", label="Admin", feature="admin_access", admin_only=True),
    NavItem(path="/admin/notifications", label="Notification Management", admin_only=True),
    NavItem(path="/admin/webhooks", label="Webhook Management", admin_only=True),
    NavItem(path="/admin/signals", label="Signal Management", admin_only=True),
    NavItem(path="/admin/users", label="User Management", admin_only=True),
]


def normalize_tier(tier: TierLike) -> SubscriptionTier:
    """Coerce a tier value, falling back to free for unknown input"""
    if isinstance(tier, SubscriptionTier):
        return tier
    if tier:
        try:
            return SubscriptionTier(str(tier).lower())
        except ValueError:
            logger.debug(f"Unknown subscription tier '{tier}', using free")
    return SubscriptionTier.FREE


def get_feature_access(tier: TierLike = SubscriptionTier.FREE) -> FeatureAccess:
    """Get the feature matrix row for a tier"""
    return SUBSCRIPTION_FEATURES[normalize_tier(tier)]


def has_access(tier: TierLike, feature: str) -> bool:
    """Check whether a tier includes a feature (unknown features are denied)"""
    access = get_feature_access(tier)
    if feature not in FeatureAccess.model_fields:
        return False
    return bool(getattr(access, feature))


def _within_limit(limit: int, current: int) -> bool:
    return limit == UNLIMITED or current < limit


def can_add_ticker(tier: TierLike, current_count: int) -> bool:
    return _within_limit(get_feature_access(tier).max_tickers, current_count)


def can_receive_signal(tier: TierLike, delivered_today: int) -> bool:
    return _within_limit(get_feature_access(tier).max_signals_per_day, delivered_today)


def channel_allowed(tier: TierLike, channel: Any) -> bool:
    """Check whether a delivery channel is unlocked for a tier"""
    value = getattr(channel, "value", channel)
    feature = CHANNEL_FEATURES.get(str(value))
    if feature is None:
        return False
    return has_access(tier, feature)


def is_admin(user: Any) -> bool:
    role = getattr(user, "role", None)
    return getattr(role, "value", role) == "admin"


def effective_tier(user: Any, now: Optional[datetime] = None) -> SubscriptionTier:
    """
    Collapse a user's billing state into the tier that applies right now.

    A paid tier only counts while the subscription is active or trialing
    and has not ended. Admins are treated as elite.
    """
    if user is None:
        return SubscriptionTier.FREE
    if is_admin(user):
        return SubscriptionTier.ELITE

    tier = normalize_tier(getattr(user, "subscription_tier", None))
    if tier == SubscriptionTier.FREE:
        return tier

    status = getattr(user, "subscription_status", None)
    try:
        status = SubscriptionStatus(getattr(status, "value", status)) if status else None
    except ValueError:
        status = None
    if status not in PAID_STATUSES:
        return SubscriptionTier.FREE

    ends_at = getattr(user, "subscription_ends_at", None)
    now = now or datetime.utcnow()
    if ends_at is not None and ends_at <= now:
        return SubscriptionTier.FREE

    return tier


def user_feature_access(user: Any, now: Optional[datetime] = None) -> FeatureAccess:
    """Feature matrix for a user, with admin access layered on for admins"""
    access = get_feature_access(effective_tier(user, now))
    if is_admin(user):
        access = access.model_copy(update={"admin_access": True})
    return access


def user_has_access(user: Any, feature: str, now: Optional[datetime] = None) -> bool:
    if feature not in FeatureAccess.model_fields:
        return False
    return bool(getattr(user_feature_access(user, now), feature))


def require_access(user: Any, feature: str, now: Optional[datetime] = None):
    """Raise AccessDeniedError unless the user has the feature"""
    if not user_has_access(user, feature, now):
        raise AccessDeniedError(feature, effective_tier(user, now))


def minimum_tier_for(feature: str) -> Optional[SubscriptionTier]:
    """Lowest tier that includes a feature"""
    for tier in SubscriptionTier:
        if has_access(tier, feature):
            return tier
    return None


def get_upgrade_message(feature: str) -> str:
    tier = minimum_tier_for(feature)
    plan_name = tier.value.capitalize() if tier else "a higher"
    action = UPGRADE_MESSAGES.get(feature, "access this feature")
    return f"Upgrade to {plan_name} plan to {action}"


def accessible_routes(user: Any, now: Optional[datetime] = None) -> List[NavItem]:
    """Navigation entries visible to a user"""
    access = user_feature_access(user, now)
    admin = is_admin(user)

    routes = []
    for item in NAVIGATION:
        if item.admin_only and not admin:
            continue
        if item.feature and not getattr(access, item.feature, False):
            continue
        routes.append(item)
    return routes


def can_access_route(user: Any, path: str, now: Optional[datetime] = None) -> bool:
    """Check a dashboard path against the navigation table (longest prefix wins)"""
    matches = [
        item for item in NAVIGATION
        if path == item.path or path.startswith(item.path.rstrip("/") + "/")
    ]
    if not matches:
        return True
    item = max(matches, key=lambda i: len(i.path))
    return item in accessible_routes(user, now)
