"""
Signals module for SignalDesk.

Ticker catalog, per-user ticker/timeframe subscriptions, signal storage
and fan-out of new signals to subscribers.
"""

from .models import (
    Timeframe, SignalType, SignalSource, Ticker, Signal, SignalCreate,
    TickerSubscription, SignalDelivery, DeliveryStatus, FanOutResult,
)
from .service import SignalService, signal_service

__all__ = [
    "Timeframe",
    "SignalType",
    "SignalSource",
    "Ticker",
    "Signal",
    "SignalCreate",
    "TickerSubscription",
    "SignalDelivery",
    "DeliveryStatus",
    "FanOutResult",
    "SignalService",
    "signal_service",
]
