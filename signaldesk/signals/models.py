"""
Signal, ticker and subscription data models.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, List
from pydantic import BaseModel, Field, field_validator

from signaldesk.notifications.models import NotificationChannel


class Timeframe(str, Enum):
    M30 = "30M"
    H1 = "1H"
    H4 = "4H"
    H8 = "8H"
    H12 = "12H"
    D1 = "1D"
    W1 = "1W"
    MN1 = "1M"


class SignalType(str, Enum):
    BUY = "buy"
    SELL = "sell"


class SignalSource(str, Enum):
    MANUAL = "manual"
    ALGORITHM = "algorithm"
    WEBHOOK = "webhook"
    COPY_TRADING = "copy_trading"


class TickerCategory(str, Enum):
    CRYPTOCURRENCY = "cryptocurrency"
    FOREX = "forex"
    STOCKS = "stocks"
    COMMODITIES = "commodities"
    OTHER = "other"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


def _upper_symbol(v: str) -> str:
    v = v.strip().upper()
    if not v:
        raise ValueError('Symbol must not be blank')
    return v


# Tickers

class Ticker(BaseModel):
    """Tradable symbol in the catalog"""
    symbol: str
    description: str
    category: TickerCategory = TickerCategory.OTHER
    market_cap_rank: int = 999
    is_enabled: bool = True
    timeframes: List[Timeframe] = list(Timeframe)
    created_at: datetime
    updated_at: datetime


class TickerCreate(BaseModel):
    symbol: str = Field(..., min_length=1, max_length=20)
    description: str = Field(..., min_length=1, max_length=200)
    category: TickerCategory = TickerCategory.OTHER
    market_cap_rank: int = Field(default=999, ge=1)
    is_enabled: bool = True
    timeframes: List[Timeframe] = list(Timeframe)

    @field_validator('symbol')
    @classmethod
    def symbol_upper(cls, v: str) -> str:
        return _upper_symbol(v)


class TickerUpdate(BaseModel):
    description: Optional[str] = Field(default=None, max_length=200)
    category: Optional[TickerCategory] = None
    market_cap_rank: Optional[int] = Field(default=None, ge=1)
    is_enabled: Optional[bool] = None
    timeframes: Optional[List[Timeframe]] = None


# Signals

class SignalCreate(BaseModel):
    """Signal published by an admin or an inbound webhook"""
    ticker: str = Field(..., min_length=1, max_length=20)
    signal_type: SignalType
    price: float = Field(..., gt=0)
    timeframe: Optional[Timeframe] = None
    timestamp: Optional[datetime] = None
    note: Optional[str] = Field(default=None, max_length=500)
    entry_price: Optional[float] = Field(default=None, gt=0)
    stop_loss: Optional[float] = Field(default=None, gt=0)
    take_profit: Optional[float] = Field(default=None, gt=0)
    confidence: int = Field(default=75, ge=1, le=100)
    tags: List[str] = []

    @field_validator('ticker')
    @classmethod
    def ticker_upper(cls, v: str) -> str:
        return _upper_symbol(v)

    @field_validator('signal_type', mode='before')
    @classmethod
    def signal_type_lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v


class Signal(BaseModel):
    """Stored trading signal"""
    id: str
    ticker: str
    signal_type: SignalType
    price: float
    timeframe: Optional[Timeframe] = None
    timestamp: datetime
    source: SignalSource = SignalSource.MANUAL
    note: Optional[str] = None

    entry_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    confidence: int = 75
    tags: List[str] = []

    created_by: Optional[str] = None
    is_active: bool = True

    # Tracking
    sent_to_users: int = 0
    delivery_stats: Dict[str, int] = {}

    created_at: datetime
    updated_at: datetime


# Subscriptions

class TickerSubscriptionCreate(BaseModel):
    ticker_symbol: str = Field(..., min_length=1, max_length=20)
    timeframe: Timeframe
    delivery_methods: List[NotificationChannel] = [NotificationChannel.EMAIL]
    max_alerts_per_day: int = Field(default=50, ge=1, le=200)
    telegram_chat_id: Optional[str] = None
    custom_webhook: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator('ticker_symbol')
    @classmethod
    def symbol_upper(cls, v: str) -> str:
        return _upper_symbol(v)

    @field_validator('delivery_methods')
    @classmethod
    def unique_methods(cls, v: List[NotificationChannel]) -> List[NotificationChannel]:
        return list(dict.fromkeys(v))


class TickerSubscriptionUpdate(BaseModel):
    is_active: Optional[bool] = None
    delivery_methods: Optional[List[NotificationChannel]] = None
    max_alerts_per_day: Optional[int] = Field(default=None, ge=1, le=200)
    telegram_chat_id: Optional[str] = None
    custom_webhook: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)


class TickerSubscription(BaseModel):
    """A user's subscription to one ticker/timeframe"""
    id: str
    user_id: str
    ticker_symbol: str
    timeframe: Timeframe
    is_active: bool = True
    max_alerts_per_day: int = 50
    delivery_methods: List[NotificationChannel] = []
    telegram_chat_id: Optional[str] = None
    custom_webhook: Optional[str] = None
    notes: Optional[str] = None
    subscribed_at: datetime
    updated_at: datetime


# Delivery tracking

class SignalDelivery(BaseModel):
    """Which user received which signal on which channel"""
    id: str
    signal_id: str
    user_id: str
    subscription_id: Optional[str] = None
    queue_id: Optional[str] = None
    delivery_method: NotificationChannel
    delivery_status: DeliveryStatus = DeliveryStatus.PENDING
    delivery_timestamp: Optional[datetime] = None
    error_message: Optional[str] = None

    viewed: bool = False
    viewed_at: Optional[datetime] = None
    clicked: bool = False
    clicked_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime


class FanOutResult(BaseModel):
    """Summary of distributing one signal to subscribers"""
    signal_id: str
    matched_subscriptions: int = 0
    notified_users: int = 0
    deliveries_queued: int = 0
    skipped: Dict[str, int] = {}
