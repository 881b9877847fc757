"""
Subscription tier data models.
"""

from typing import List, Optional
from pydantic import BaseModel
from enum import Enum


class SubscriptionTier(str, Enum):
    """Paid plan levels, lowest first"""
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    PRO = "pro"
    ELITE = "elite"


class SubscriptionStatus(str, Enum):
    """Billing status mirrored from the payment provider"""
    ACTIVE = "active"
    CANCELED = "canceled"
    PAST_DUE = "past_due"
    TRIALING = "trialing"
    INCOMPLETE = "incomplete"


class FeatureAccess(BaseModel):
    """Feature switches and limits granted by a tier"""
    # Signals
    basic_signals: bool = False
    premium_signals: bool = False
    real_time_alerts: bool = False

    # Dashboard and charts
    trading_dashboard: bool = False
    basic_charts: bool = False
    advanced_charts: bool = False
    heatmap_analysis: bool = False
    cycle_forecasting: bool = False
    trading_playground: bool = False

    # Alert channels
    email_alerts: bool = False
    sms_alerts: bool = False
    telegram_alerts: bool = False
    push_notifications: bool = False
    discord_alerts: bool = False
    webhook_alerts: bool = False
    advanced_alerts: bool = False
    multi_channel_alerts: bool = False

    # Analytics
    advanced_analytics: bool = False
    historical_data: bool = False
    live_streaming: bool = False

    # Premium
    admin_access: bool = False
    api_access: bool = False
    priority_support: bool = False
    custom_indicators: bool = False
    white_label: bool = False

    # Limits (-1 = unlimited)
    max_tickers: int = 0
    max_signals_per_day: int = 0


class SubscriptionPlan(BaseModel):
    """Plan catalog entry (prices in cents)"""
    id: str
    name: str
    tier: SubscriptionTier
    monthly_price: int
    yearly_price: int
    description: str
    is_popular: bool = False
    features: FeatureAccess


class NavItem(BaseModel):
    """Dashboard route and the feature that gates it"""
    path: str
    label: str
    feature: Optional[str] = None
    admin_only: bool = False


class AccessSummary(BaseModel):
    """What the current user can see and do"""
    tier: SubscriptionTier
    status: Optional[SubscriptionStatus] = None
    is_admin: bool = False
    features: FeatureAccess
    routes: List[NavItem]


class FeatureCheck(BaseModel):
    feature: str
    allowed: bool
    tier: SubscriptionTier
    upgrade_message: Optional[str] = None
