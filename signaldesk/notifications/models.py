"""
Notification data models.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, Field, field_validator
from enum import Enum
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class NotificationChannel(str, Enum):
    """Outbound delivery channels"""
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"
    TELEGRAM = "telegram"
    DISCORD = "discord"


class QueueStatus(str, Enum):
    """Lifecycle of a queued notification"""
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class TemplateCategory(str, Enum):
    SIGNAL = "signal"
    PRICE_ALERT = "price_alert"
    PORTFOLIO = "portfolio"
    SYSTEM = "system"
    MARKETING = "marketing"


class LogStatus(str, Enum):
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class NotificationType(str, Enum):
    """Inbox notification categories"""
    SIGNAL = "signal"
    PRICE = "price"
    NEWS = "news"
    SYSTEM = "system"
    ACHIEVEMENT = "achievement"


class NotificationPriority(str, Enum):
    """Inbox priority levels"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class InboxStatus(str, Enum):
    UNREAD = "unread"
    READ = "read"
    ARCHIVED = "archived"
    DELETED = "deleted"


MIN_PRIORITY = 1
MAX_PRIORITY = 10
DEFAULT_PRIORITY = 5
CRITICAL_PRIORITY = 9


# Queue

class NotificationCreate(BaseModel):
    """Request to enqueue an outbound notification"""
    user_id: str
    channel: NotificationChannel
    recipient: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    subject: Optional[str] = None
    message_html: Optional[str] = None
    alert_id: Optional[str] = None
    template_id: Optional[str] = None
    template_variables: Optional[Dict[str, Any]] = None
    priority: int = Field(default=DEFAULT_PRIORITY, ge=MIN_PRIORITY, le=MAX_PRIORITY)
    max_retries: int = Field(default=3, ge=0, le=20)
    scheduled_for: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None


class QueuedNotification(BaseModel):
    """Row of the notification queue"""
    id: str
    user_id: str
    alert_id: Optional[str] = None

    channel: NotificationChannel
    recipient: str

    subject: Optional[str] = None
    message: str
    message_html: Optional[str] = None
    template_id: Optional[str] = None
    template_variables: Optional[Dict[str, Any]] = None

    status: QueueStatus = QueueStatus.PENDING

    # Retry bookkeeping
    priority: int = DEFAULT_PRIORITY
    max_retries: int = 3
    current_attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None

    scheduled_for: datetime
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None

    last_error: Optional[str] = None
    error_details: Optional[Dict[str, Any]] = None

    metadata: Optional[Dict[str, Any]] = None
    provider_message_id: Optional[str] = None
    channel_id: Optional[str] = None  # channel used for the last attempt

    created_at: datetime
    updated_at: datetime

    def is_due(self, now: datetime) -> bool:
        if self.status != QueueStatus.PENDING:
            return False
        if self.scheduled_for > now:
            return False
        return self.next_retry_at is None or self.next_retry_at <= now


class QueueStats(BaseModel):
    total: int
    due: int
    by_status: Dict[str, int]
    by_channel: Dict[str, int]


class DeliveryReceipt(BaseModel):
    """Provider callback confirming or rejecting a sent message"""
    status: LogStatus
    error: Optional[str] = None


# Templates

class NotificationTemplate(BaseModel):
    id: str
    name: str
    type: NotificationChannel
    category: TemplateCategory
    subject: Optional[str] = None
    body_text: str
    body_html: Optional[str] = None
    variables: List[str] = []
    is_active: bool = True
    is_system: bool = False
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: NotificationChannel
    category: TemplateCategory
    subject: Optional[str] = None
    body_text: str = Field(..., min_length=1)
    body_html: Optional[str] = None
    description: Optional[str] = None


class TemplateUpdate(BaseModel):
    subject: Optional[str] = None
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    is_active: Optional[bool] = None
    description: Optional[str] = None


class RenderedMessage(BaseModel):
    subject: Optional[str] = None
    text: str
    html: Optional[str] = None


# Channels

class ChannelConfig(BaseModel):
    """Delivery channel configuration and health"""
    id: str
    name: str
    type: NotificationChannel
    provider: str

    is_enabled: bool = True
    is_healthy: bool = True
    last_health_check: Optional[datetime] = None

    config: Dict[str, Any] = {}
    rate_limit_per_minute: int = 60
    rate_limit_per_hour: int = 1000

    total_sent: int = 0
    total_delivered: int = 0
    total_failed: int = 0
    avg_delivery_time_ms: int = 0

    consecutive_failures: int = 0
    last_error: Optional[str] = None

    created_at: datetime
    updated_at: datetime


class ChannelCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: NotificationChannel
    provider: str
    config: Dict[str, Any] = {}
    is_enabled: bool = True
    rate_limit_per_minute: int = Field(default=60, ge=1)
    rate_limit_per_hour: int = Field(default=1000, ge=1)


class ChannelUpdate(BaseModel):
    is_enabled: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None
    rate_limit_per_minute: Optional[int] = Field(default=None, ge=1)
    rate_limit_per_hour: Optional[int] = Field(default=None, ge=1)


class ChannelTest(BaseModel):
    recipient: str = Field(..., min_length=1)
    message: str = "SignalDesk test notification"


# Logs

class DeliveryLog(BaseModel):
    id: str
    queue_id: str
    user_id: str
    channel: NotificationChannel
    recipient: str
    status: LogStatus
    provider: Optional[str] = None
    provider_message_id: Optional[str] = None
    provider_response: Optional[Dict[str, Any]] = None
    processing_time_ms: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime


# Inbox

class UserNotification(BaseModel):
    """In-app notification shown in the user's notification center"""
    id: str
    user_id: str
    type: NotificationType
    title: str
    message: str
    status: InboxStatus = InboxStatus.UNREAD
    channel: str = "in_app"
    priority: NotificationPriority = NotificationPriority.MEDIUM
    metadata: Optional[Dict[str, Any]] = None
    delivered_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_read(self) -> bool:
        return self.status != InboxStatus.UNREAD


# Preferences

class NotificationPreferences(BaseModel):
    """User notification preferences and contact details"""
    user_id: str

    # Contact details per channel
    phone_number: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    push_token: Optional[str] = None

    # Categories
    category_signals: bool = True
    category_price: bool = True
    category_news: bool = True
    category_system: bool = True
    category_achievements: bool = True

    # Priorities
    priority_low: bool = True
    priority_medium: bool = True
    priority_high: bool = True
    priority_critical: bool = True

    # Quiet hours (local time of `timezone`)
    quiet_hours_enabled: bool = False
    quiet_hours_start: int = Field(default=22, ge=0, le=23)
    quiet_hours_end: int = Field(default=8, ge=0, le=23)
    timezone: str = "UTC"

    max_notifications_per_hour: int = Field(default=0, ge=0)  # 0 = no cap

    @field_validator('timezone')
    @classmethod
    def known_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone '{v}'")
        return v


class PreferencesUpdate(BaseModel):
    phone_number: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    discord_webhook_url: Optional[str] = None
    push_token: Optional[str] = None
    category_signals: Optional[bool] = None
    category_price: Optional[bool] = None
    category_news: Optional[bool] = None
    category_system: Optional[bool] = None
    category_achievements: Optional[bool] = None
    priority_low: Optional[bool] = None
    priority_medium: Optional[bool] = None
    priority_high: Optional[bool] = None
    priority_critical: Optional[bool] = None
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[int] = Field(default=None, ge=0, le=23)
    quiet_hours_end: Optional[int] = Field(default=None, ge=0, le=23)
    timezone: Optional[str] = None
    max_notifications_per_hour: Optional[int] = Field(default=None, ge=0)
