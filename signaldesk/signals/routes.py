"""
Signal, ticker and ticker-subscription API routes.
"""

from typing import Dict, List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from signaldesk.auth.dependencies import get_current_active_user, get_admin_user, require_feature
from signaldesk.auth.models import User
from signaldesk.subscriptions.access import AccessDeniedError

from .models import (
    FanOutResult, Signal, SignalCreate, SignalDelivery, SignalSource, Ticker, TickerCategory,
    TickerCreate, TickerSubscription, TickerSubscriptionCreate, TickerSubscriptionUpdate,
    TickerUpdate, Timeframe,
)
from .service import SubscriptionConflictError, signal_service

router = APIRouter(prefix="/api/signals", tags=["Signals"])
tickers_router = APIRouter(prefix="/api/tickers", tags=["Tickers"])
subscriptions_router = APIRouter(prefix="/api/subscriptions/tickers", tags=["Ticker Subscriptions"])
admin_signals_router = APIRouter(prefix="/api/admin/signals", tags=["Signals Admin"])
admin_tickers_router = APIRouter(prefix="/api/admin/tickers", tags=["Tickers Admin"])


class PublishedSignal(BaseModel):
    signal: Signal
    fan_out: FanOutResult


def _forbidden(e: AccessDeniedError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(e))


def _not_found(what: str, key: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} {key} not found")


# ============== Signals ==============

@router.get("", response_model=List[Signal])
async def list_signals(
    ticker: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    current_user: User = Depends(require_feature("basic_signals")),
):
    """Recent signals, newest first."""
    return signal_service.list_signals(ticker, limit)


@router.get("/latest", response_model=Dict[str, Signal])
async def latest_signals(current_user: User = Depends(require_feature("basic_signals"))):
    """Most recent active signal per ticker."""
    return signal_service.latest_per_ticker()


@router.get("/deliveries", response_model=List[SignalDelivery])
async def my_deliveries(
    limit: int = Query(default=100, ge=1, le=1000),
    current_user: User = Depends(get_current_active_user),
):
    return signal_service.list_deliveries(user_id=current_user.id, limit=limit)


@router.post("/deliveries/{delivery_id}/viewed", response_model=SignalDelivery)
async def delivery_viewed(delivery_id: str, current_user: User = Depends(get_current_active_user)):
    delivery = signal_service.mark_viewed(current_user.id, delivery_id)
    if delivery is None:
        raise _not_found("Delivery", delivery_id)
    return delivery


@router.post("/deliveries/{delivery_id}/clicked", response_model=SignalDelivery)
async def delivery_clicked(delivery_id: str, current_user: User = Depends(get_current_active_user)):
    delivery = signal_service.mark_clicked(current_user.id, delivery_id)
    if delivery is None:
        raise _not_found("Delivery", delivery_id)
    return delivery


@router.get("/{signal_id}", response_model=Signal)
async def get_signal(signal_id: str, current_user: User = Depends(require_feature("basic_signals"))):
    signal = signal_service.get_signal(signal_id)
    if signal is None:
        raise _not_found("Signal", signal_id)
    return signal


# ============== Tickers ==============

@tickers_router.get("", response_model=List[Ticker])
async def list_tickers(
    category: Optional[TickerCategory] = None,
    current_user: User = Depends(get_current_active_user),
):
    """Enabled tickers available for subscription."""
    return signal_service.list_tickers(enabled_only=True, category=category)


@tickers_router.get("/{symbol}", response_model=Ticker)
async def get_ticker(symbol: str, current_user: User = Depends(get_current_active_user)):
    ticker = signal_service.get_ticker(symbol)
    if ticker is None or not ticker.is_enabled:
        raise _not_found("Ticker", symbol)
    return ticker


# ============== Ticker subscriptions ==============

@subscriptions_router.get("", response_model=List[TickerSubscription])
async def list_my_subscriptions(
    active_only: bool = False,
    current_user: User = Depends(get_current_active_user),
):
    return signal_service.list_subscriptions(current_user.id, active_only)


@subscriptions_router.post("", response_model=TickerSubscription, status_code=status.HTTP_201_CREATED)
async def subscribe(
    data: TickerSubscriptionCreate,
    current_user: User = Depends(get_current_active_user),
):
    """
    Subscribe to a ticker/timeframe.

    The plan limits the number of active subscriptions and which
    delivery methods may be used.
    """
    try:
        return signal_service.subscribe(current_user, data)
    except AccessDeniedError as e:
        raise _forbidden(e)
    except LookupError:
        raise _not_found("Ticker", data.ticker_symbol)
    except SubscriptionConflictError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


@subscriptions_router.put("/{subscription_id}", response_model=TickerSubscription)
async def update_subscription(
    subscription_id: str,
    data: TickerSubscriptionUpdate,
    current_user: User = Depends(get_current_active_user),
):
    try:
        sub = signal_service.update_subscription(current_user, subscription_id, data)
    except AccessDeniedError as e:
        raise _forbidden(e)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if sub is None:
        raise _not_found("Subscription", subscription_id)
    return sub


@subscriptions_router.delete("/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unsubscribe(subscription_id: str, current_user: User = Depends(get_current_active_user)):
    if not signal_service.unsubscribe(current_user.id, subscription_id):
        raise _not_found("Subscription", subscription_id)


# ============== Admin: signals ==============

@admin_signals_router.get("", response_model=List[Signal])
async def admin_list_signals(
    ticker: Optional[str] = None,
    include_inactive: bool = True,
    limit: int = Query(default=100, ge=1, le=1000),
    admin: User = Depends(get_admin_user),
):
    return signal_service.list_signals(ticker, limit, active_only=not include_inactive)


@admin_signals_router.post("", response_model=PublishedSignal, status_code=status.HTTP_201_CREATED)
async def publish_signal(data: SignalCreate, admin: User = Depends(get_admin_user)):
    """Create a signal and distribute it to subscribers."""
    signal = signal_service.create_signal(data, SignalSource.MANUAL, created_by=admin.id)
    result = await signal_service.fan_out(signal)
    return PublishedSignal(signal=signal, fan_out=result)


@admin_signals_router.post("/{signal_id}/deactivate", response_model=Signal)
async def deactivate_signal(signal_id: str, admin: User = Depends(get_admin_user)):
    signal = signal_service.deactivate_signal(signal_id)
    if signal is None:
        raise _not_found("Signal", signal_id)
    return signal


@admin_signals_router.get("/{signal_id}/deliveries", response_model=List[SignalDelivery])
async def signal_deliveries(
    signal_id: str,
    limit: int = Query(default=500, ge=1, le=5000),
    admin: User = Depends(get_admin_user),
):
    if signal_service.get_signal(signal_id) is None:
        raise _not_found("Signal", signal_id)
    return signal_service.list_deliveries(signal_id=signal_id, limit=limit)


# ============== Admin: tickers ==============

@admin_tickers_router.get("", response_model=List[Ticker])
async def admin_list_tickers(admin: User = Depends(get_admin_user)):
    return signal_service.list_tickers()


@admin_tickers_router.post("", response_model=Ticker, status_code=status.HTTP_201_CREATED)
async def create_ticker(data: TickerCreate, admin: User = Depends(get_admin_user)):
    try:
        return signal_service.create_ticker(data)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))


@admin_tickers_router.put("/{symbol}", response_model=Ticker)
async def update_ticker(symbol: str, data: TickerUpdate, admin: User = Depends(get_admin_user)):
    ticker = signal_service.update_ticker(symbol, data)
    if ticker is None:
        raise _not_found("Ticker", symbol)
    return ticker


@admin_tickers_router.put("/{symbol}/timeframes", response_model=Ticker)
async def set_timeframes(
    symbol: str,
    timeframes: List[Timeframe],
    admin: User = Depends(get_admin_user),
):
    """Replace the timeframes offered for a ticker."""
    ticker = signal_service.update_ticker(symbol, TickerUpdate(timeframes=timeframes))
    if ticker is None:
        raise _not_found("Ticker", symbol)
    return ticker


@admin_tickers_router.delete("/{symbol}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticker(symbol: str, admin: User = Depends(get_admin_user)):
    if not signal_service.delete_ticker(symbol):
        raise _not_found("Ticker", symbol)
