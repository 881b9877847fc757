"""
Webhook secret and inbound payload models.
"""

import re
from datetime import datetime, timezone
from typing import Optional, List, Union
from pydantic import BaseModel, Field, field_validator

from signaldesk.signals.models import SignalCreate, SignalType, Timeframe

SECRET_PATTERN = re.compile(r"^[0-9a-f]{64}$")

# TradingView {{interval}} values -> timeframes
INTERVAL_ALIASES = {
    "30": Timeframe.M30,
    "60": Timeframe.H1,
    "240": Timeframe.H4,
    "480": Timeframe.H8,
    "720": Timeframe.H12,
    "D": Timeframe.D1,
    "W": Timeframe.W1,
    "M": Timeframe.MN1,
}


def _normalize_sources(sources: List[str]) -> List[str]:
    return list(dict.fromkeys(s.strip().lower() for s in sources if s.strip()))


def normalize_ticker(value: str) -> str:
    """Upper-case, drop any `EXCHANGE:` prefix and the `.P` perpetual suffix"""
    ticker = value.strip().upper()
    if ":" in ticker:
        ticker = ticker.rsplit(":", 1)[1]
    if ticker.endswith(".P"):
        ticker = ticker[:-2]
    return ticker


class WebhookSecret(BaseModel):
    """Shared secret that authenticates inbound signal webhooks"""
    id: str
    name: str
    secret: str
    description: Optional[str] = None
    is_active: bool = True
    allowed_sources: List[str] = []  # empty = any source
    created_at: datetime
    updated_at: datetime
    last_used: Optional[datetime] = None
    usage_count: int = 0

    def allows_source(self, source: str) -> bool:
        return not self.allowed_sources or source.lower() in self.allowed_sources

    def masked(self) -> "WebhookSecret":
        return self.model_copy(update={"secret": self.secret[:8] + "*" * (len(self.secret) - 8)})


class WebhookSecretCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    secret: Optional[str] = None  # generated when omitted
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: bool = True
    allowed_sources: List[str] = []

    @field_validator('secret')
    @classmethod
    def secret_format(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().lower()
        if not SECRET_PATTERN.match(v):
            raise ValueError('Secret must be exactly 64 hexadecimal characters')
        return v

    @field_validator('allowed_sources')
    @classmethod
    def sources_lower(cls, v: List[str]) -> List[str]:
        return _normalize_sources(v)


class WebhookSecretUpdate(BaseModel):
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None
    allowed_sources: Optional[List[str]] = None

    @field_validator('allowed_sources')
    @classmethod
    def sources_lower(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return _normalize_sources(v) if v is not None else v


class TradingViewPayload(BaseModel):
    """
    Alert body posted by TradingView.

    Example:
        {"ticker": "BINANCE:BTCUSDT.P", "signal_type": "BUY", "price": "43250.5",
         "timeframe": "240", "webhook_secret": "<64 hex>"}
    """
    ticker: str = Field(..., min_length=1)
    signal_type: SignalType
    price: float = Field(..., gt=0)
    timestamp: Optional[datetime] = None
    timeframe: Optional[Timeframe] = None
    note: Optional[str] = Field(default=None, max_length=500)
    webhook_secret: Optional[str] = None
    source: str = "tradingview"

    @field_validator('ticker')
    @classmethod
    def ticker_normalized(cls, v: str) -> str:
        ticker = normalize_ticker(v)
        if not ticker:
            raise ValueError('Ticker must not be blank')
        return ticker

    @field_validator('signal_type', mode='before')
    @classmethod
    def signal_type_lower(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('price', mode='before')
    @classmethod
    def price_from_string(cls, v: Union[str, float, int]):
        if isinstance(v, str):
            try:
                return float(v.strip().replace(",", ""))
            except ValueError:
                raise ValueError(f"Invalid price '{v}'")
        return v

    @field_validator('timeframe', mode='before')
    @classmethod
    def timeframe_alias(cls, v):
        if v is None:
            return v
        v = str(v).strip().upper()
        if not v:
            return None
        return INTERVAL_ALIASES.get(v, v)

    @field_validator('timestamp')
    @classmethod
    def timestamp_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v

    @field_validator('source')
    @classmethod
    def source_lower(cls, v: str) -> str:
        return v.strip().lower() or "tradingview"

    def to_signal(self) -> SignalCreate:
        return SignalCreate(
            ticker=self.ticker,
            signal_type=self.signal_type,
            price=self.price,
            timeframe=self.timeframe,
            timestamp=self.timestamp,
            note=self.note,
            tags=[self.source],
        )
