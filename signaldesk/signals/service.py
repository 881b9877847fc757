"""
Signal service: ticker catalog, user subscriptions, signal storage and fan-out.
"""

import logging
import threading
import uuid
from collections import defaultdict, deque
from datetime import datetime
from typing import Optional, Dict, List, Any, Tuple, Deque

from signaldesk import metrics
from signaldesk.auth.models import User
from signaldesk.auth.service import AuthService, auth_service
from signaldesk.subscriptions.access import (
    AccessDeniedError, CHANNEL_FEATURES, can_add_ticker, can_receive_signal,
    channel_allowed, effective_tier,
)
from signaldesk.notifications.errors import TemplateRenderError
from signaldesk.notifications.models import (
    NotificationChannel, NotificationPriority, NotificationType, QueuedNotification,
    QueueStatus, TemplateCategory,
)
from signaldesk.notifications.service import NotificationService, notification_service

from .models import (
    DeliveryStatus, FanOutResult, Signal, SignalCreate, SignalDelivery, SignalSource,
    Ticker, TickerCategory, TickerCreate, TickerSubscription, TickerSubscriptionCreate,
    TickerSubscriptionUpdate, TickerUpdate,
)

logger = logging.getLogger(__name__)

SIGNAL_QUEUE_PRIORITY = 7

DEFAULT_TICKERS = [
    TickerCreate(symbol="BTCUSDT", description="Bitcoin / Tether", category=TickerCategory.CRYPTOCURRENCY, market_cap_rank=1),
    TickerCreate(symbol="ETHUSDT", description="Ethereum / Tether", category=TickerCategory.CRYPTOCURRENCY, market_cap_rank=2),
    TickerCreate(symbol="SOLUSDT", description="Solana / Tether", category=TickerCategory.CRYPTOCURRENCY, market_cap_rank=5),
    TickerCreate(symbol="XRPUSDT", description="XRP / Tether", category=TickerCategory.CRYPTOCURRENCY, market_cap_rank=4),
    TickerCreate(symbol="ADAUSDT", description="Cardano / Tether", category=TickerCategory.CRYPTOCURRENCY, market_cap_rank=9),
    TickerCreate(symbol="EURUSD", description="Euro / US Dollar", category=TickerCategory.FOREX),
    TickerCreate(symbol="XAUUSD", description="Gold / US Dollar", category=TickerCategory.COMMODITIES),
    TickerCreate(symbol="AAPL", description="Apple Inc.", category=TickerCategory.STOCKS),
]

# Queue status -> signal delivery status
QUEUE_TO_DELIVERY = {
    QueueStatus.PENDING: DeliveryStatus.PENDING,
    QueueStatus.SENT: DeliveryStatus.SENT,
    QueueStatus.DELIVERED: DeliveryStatus.DELIVERED,
    QueueStatus.FAILED: DeliveryStatus.FAILED,
    QueueStatus.CANCELLED: DeliveryStatus.FAILED,
}


class SubscriptionConflictError(ValueError):
    """The user already has an active subscription for the ticker/timeframe"""


def _start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _format_price(price: float) -> str:
    if price >= 1:
        return f"{price:,.2f}"
    return f"{price:.8f}".rstrip("0")


class SignalService:
    """
    Stores tickers, signals and subscriptions and distributes new signals.

    Distribution goes through the notification service: one queued message
    per allowed delivery method plus an in-app inbox entry per user.
    """

    def __init__(
        self,
        auth: Optional[AuthService] = None,
        notifications: Optional[NotificationService] = None,
        seed_tickers: bool = True,
    ):
        self.auth = auth or auth_service
        self.notifications = notifications or notification_service

        self._tickers: Dict[str, Ticker] = {}
        self._signals: Dict[str, Signal] = {}
        self._subscriptions: Dict[str, TickerSubscription] = {}
        self._deliveries: Dict[str, SignalDelivery] = {}
        self._delivery_by_queue_id: Dict[str, str] = {}
        # user_id -> (subscription_id, signal_id, at) for signals received since midnight UTC
        self._received: Dict[str, Deque[Tuple[str, str, datetime]]] = defaultdict(deque)
        self._lock = threading.RLock()

        if seed_tickers:
            for data in DEFAULT_TICKERS:
                self.create_ticker(data)

    # ============== Tickers ==============

    def create_ticker(self, data: TickerCreate) -> Ticker:
        with self._lock:
            if data.symbol in self._tickers:
                raise ValueError(f"Ticker {data.symbol} already exists")
            now = datetime.utcnow()
            ticker = Ticker(**data.model_dump(), created_at=now, updated_at=now)
            self._tickers[ticker.symbol] = ticker
        logger.info(f"Added ticker {ticker.symbol}")
        return ticker

    def get_ticker(self, symbol: str) -> Optional[Ticker]:
        return self._tickers.get(symbol.upper())

    def list_tickers(
        self,
        enabled_only: bool = False,
        category: Optional[TickerCategory] = None,
    ) -> List[Ticker]:
        tickers = [
            t for t in self._tickers.values()
            if (not enabled_only or t.is_enabled)
            and (category is None or t.category == category)
        ]
        tickers.sort(key=lambda t: (t.market_cap_rank, t.symbol))
        return tickers

    def update_ticker(self, symbol: str, data: TickerUpdate) -> Optional[Ticker]:
        ticker = self.get_ticker(symbol)
        if ticker is None:
            return None
        update = data.model_dump(exclude_unset=True)
        if "timeframes" in update:
            update["timeframes"] = list(dict.fromkeys(update["timeframes"]))
        for key, value in update.items():
            setattr(ticker, key, value)
        ticker.updated_at = datetime.utcnow()
        logger.info(f"Updated ticker {ticker.symbol}: {sorted(update)}")
        return ticker

    def delete_ticker(self, symbol: str) -> bool:
        """Remove a ticker and deactivate every subscription to it"""
        with self._lock:
            ticker = self._tickers.pop(symbol.upper(), None)
            if ticker is None:
                return False
            for sub in self._subscriptions.values():
                if sub.ticker_symbol == ticker.symbol and sub.is_active:
                    sub.is_active = False
                    sub.updated_at = datetime.utcnow()
        logger.info(f"Deleted ticker {ticker.symbol}")
        return True

    # ============== Subscriptions ==============

    def list_subscriptions(self, user_id: str, active_only: bool = False) -> List[TickerSubscription]:
        subs = [
            s for s in self._subscriptions.values()
            if s.user_id == user_id and (not active_only or s.is_active)
        ]
        subs.sort(key=lambda s: s.subscribed_at)
        return subs

    def get_subscription(self, user_id: str, subscription_id: str) -> Optional[TickerSubscription]:
        sub = self._subscriptions.get(subscription_id)
        if sub is None or sub.user_id != user_id:
            return None
        return sub

    def _check_channels(self, user: User, methods: List[NotificationChannel]):
        tier = effective_tier(user)
        for method in methods:
            if not channel_allowed(tier, method):
                raise AccessDeniedError(CHANNEL_FEATURES[method.value], tier)

    def _check_ticker_limit(self, user: User):
        tier = effective_tier(user)
        active = len(self.list_subscriptions(user.id, active_only=True))
        if not can_add_ticker(tier, active):
            raise AccessDeniedError("max_tickers", tier)

    def subscribe(self, user: User, data: TickerSubscriptionCreate) -> TickerSubscription:
        """
        Subscribe a user to a ticker/timeframe.

        Raises:
            LookupError: unknown ticker
            ValueError: ticker disabled or timeframe not offered
            SubscriptionConflictError: already subscribed
            AccessDeniedError: tier limit or channel not in the plan
        """
        ticker = self.get_ticker(data.ticker_symbol)
        if ticker is None:
            raise LookupError(f"Ticker {data.ticker_symbol} not found")
        if not ticker.is_enabled:
            raise ValueError(f"Ticker {ticker.symbol} is not available")
        if data.timeframe not in ticker.timeframes:
            raise ValueError(f"Timeframe {data.timeframe.value} is not offered for {ticker.symbol}")
        if not data.delivery_methods:
            raise ValueError("At least one delivery method is required")

        with self._lock:
            for sub in self.list_subscriptions(user.id, active_only=True):
                if sub.ticker_symbol == ticker.symbol and sub.timeframe == data.timeframe:
                    raise SubscriptionConflictError(
                        f"Already subscribed to {ticker.symbol} {data.timeframe.value}"
                    )

            self._check_ticker_limit(user)
            self._check_channels(user, data.delivery_methods)

            now = datetime.utcnow()
            sub = TickerSubscription(
                id=str(uuid.uuid4()),
                user_id=user.id,
                ticker_symbol=ticker.symbol,
                timeframe=data.timeframe,
                max_alerts_per_day=data.max_alerts_per_day,
                delivery_methods=data.delivery_methods,
                telegram_chat_id=data.telegram_chat_id,
                custom_webhook=data.custom_webhook,
                notes=data.notes,
                subscribed_at=now,
                updated_at=now,
            )
            self._subscriptions[sub.id] = sub

        logger.info(f"User {user.id} subscribed to {sub.ticker_symbol} {sub.timeframe.value}")
        return sub

    def update_subscription(
        self,
        user: User,
        subscription_id: str,
        data: TickerSubscriptionUpdate,
    ) -> Optional[TickerSubscription]:
        sub = self.get_subscription(user.id, subscription_id)
        if sub is None:
            return None

        update = data.model_dump(exclude_unset=True)
        if "delivery_methods" in update:
            if not update["delivery_methods"]:
                raise ValueError("At least one delivery method is required")
            update["delivery_methods"] = list(dict.fromkeys(update["delivery_methods"]))
            self._check_channels(user, update["delivery_methods"])
        if update.get("is_active") and not sub.is_active:
            self._check_ticker_limit(user)

        for key, value in update.items():
            setattr(sub, key, value)
        sub.updated_at = datetime.utcnow()
        return sub

    def unsubscribe(self, user_id: str, subscription_id: str) -> bool:
        with self._lock:
            sub = self.get_subscription(user_id, subscription_id)
            if sub is None:
                return False
            del self._subscriptions[sub.id]
        logger.info(f"User {user_id} unsubscribed from {sub.ticker_symbol} {sub.timeframe.value}")
        return True

    # ============== Signals ==============

    def create_signal(
        self,
        data: SignalCreate,
        source: SignalSource = SignalSource.MANUAL,
        created_by: Optional[str] = None,
    ) -> Signal:
        now = datetime.utcnow()
        risk_reward = None
        if data.entry_price and data.stop_loss and data.take_profit and data.entry_price != data.stop_loss:
            risk_reward = round(
                abs(data.take_profit - data.entry_price) / abs(data.entry_price - data.stop_loss), 2
            )

        if self.get_ticker(data.ticker) is None:
            logger.warning(f"Signal for {data.ticker} which is not in the ticker catalog")

        signal = Signal(
            id=str(uuid.uuid4()),
            ticker=data.ticker,
            signal_type=data.signal_type,
            price=data.price,
            timeframe=data.timeframe,
            timestamp=data.timestamp or now,
            source=source,
            note=data.note,
            entry_price=data.entry_price,
            stop_loss=data.stop_loss,
            take_profit=data.take_profit,
            risk_reward_ratio=risk_reward,
            confidence=data.confidence,
            tags=data.tags,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._signals[signal.id] = signal

        metrics.SIGNALS_CREATED.labels(source=source.value).inc()
        logger.info(
            f"New {signal.signal_type.value} signal {signal.id} for {signal.ticker} "
            f"@ {signal.price} ({source.value})"
        )
        return signal

    def get_signal(self, signal_id: str) -> Optional[Signal]:
        return self._signals.get(signal_id)

    def list_signals(
        self,
        ticker: Optional[str] = None,
        limit: int = 50,
        active_only: bool = True,
    ) -> List[Signal]:
        """Newest first"""
        ticker = ticker.upper() if ticker else None
        signals = [
            s for s in self._signals.values()
            if (ticker is None or s.ticker == ticker)
            and (not active_only or s.is_active)
        ]
        signals.sort(key=lambda s: (s.timestamp, s.created_at), reverse=True)
        return signals[:limit]

    def latest_per_ticker(self) -> Dict[str, Signal]:
        latest: Dict[str, Signal] = {}
        for signal in self.list_signals(limit=len(self._signals) or 1):
            latest.setdefault(signal.ticker, signal)
        return latest

    def deactivate_signal(self, signal_id: str) -> Optional[Signal]:
        signal = self.get_signal(signal_id)
        if signal is None:
            return None
        signal.is_active = False
        signal.updated_at = datetime.utcnow()
        logger.info(f"Deactivated signal {signal_id}")
        return signal

    # ============== Fan-out ==============

    def _received_today(self, now: datetime, user_id: str, subscription_id: Optional[str] = None) -> int:
        start = _start_of_day(now)
        with self._lock:
            received = self._received[user_id]
            while received and received[0][2] < start:
                received.popleft()
            return len({
                signal_id for sub_id, signal_id, at in received
                if at >= start and (subscription_id is None or sub_id == subscription_id)
            })

    def _recipient(
        self,
        user: User,
        sub: TickerSubscription,
        method: NotificationChannel,
    ) -> Optional[str]:
        if method == NotificationChannel.EMAIL:
            return user.email
        if method == NotificationChannel.TELEGRAM and sub.telegram_chat_id:
            return sub.telegram_chat_id
        if method == NotificationChannel.DISCORD and sub.custom_webhook:
            return sub.custom_webhook
        return self.notifications.preferences.recipient_for(user.id, method)

    @staticmethod
    def template_variables(signal: Signal) -> Dict[str, Any]:
        return {
            "ticker": signal.ticker,
            "signal_type": signal.signal_type.value,
            "signal_type_upper": signal.signal_type.value.upper(),
            "timeframe": signal.timeframe.value if signal.timeframe else "",
            "price": _format_price(signal.price),
            "timestamp": signal.timestamp.strftime("%Y-%m-%d %H:%M UTC"),
            "note": signal.note or "",
        }

    def _matching_subscriptions(self, signal: Signal) -> Dict[str, TickerSubscription]:
        """Earliest matching active subscription per user"""
        matches: Dict[str, TickerSubscription] = {}
        for sub in sorted(self._subscriptions.values(), key=lambda s: s.subscribed_at):
            if not sub.is_active or sub.ticker_symbol != signal.ticker:
                continue
            if signal.timeframe is not None and sub.timeframe != signal.timeframe:
                continue
            matches.setdefault(sub.user_id, sub)
        return matches

    async def fan_out(self, signal: Signal, now: Optional[datetime] = None) -> FanOutResult:
        """
        Distribute a signal to every matching subscriber.

        Per user: check the tier's daily signal allowance and the
        subscription's own daily cap, then queue one message per delivery
        method the tier unlocks and add an inbox entry.
        """
        now = now or datetime.utcnow()
        result = FanOutResult(signal_id=signal.id)
        skipped: Dict[str, int] = defaultdict(int)

        if not signal.is_active:
            skipped["inactive_signal"] += 1
            result.skipped = dict(skipped)
            return result

        matches = self._matching_subscriptions(signal)
        result.matched_subscriptions = len(matches)
        variables = self.template_variables(signal)
        stats: Dict[str, int] = defaultdict(int, signal.delivery_stats)

        for user_id, sub in matches.items():
            user = self.auth.get_user_by_id(user_id)
            if user is None or not user.is_active:
                skipped["inactive_user"] += 1
                continue

            tier = effective_tier(user, now)
            if not can_receive_signal(tier, self._received_today(now, user_id)):
                skipped["daily_limit"] += 1
                continue
            if self._received_today(now, user_id, sub.id) >= sub.max_alerts_per_day:
                skipped["subscription_limit"] += 1
                continue
            # Count the signal before any await so a concurrent fan-out sees it
            with self._lock:
                self._received[user_id].append((sub.id, signal.id, now))

            for method in sub.delivery_methods:
                if not channel_allowed(tier, method):
                    skipped["channel_not_allowed"] += 1
                    continue
                recipient = self._recipient(user, sub, method)
                if not recipient:
                    skipped["no_recipient"] += 1
                    continue

                try:
                    item = self.notifications.enqueue_from_template(
                        user_id=user_id,
                        channel=method,
                        recipient=recipient,
                        category=TemplateCategory.SIGNAL,
                        variables=variables,
                        priority=SIGNAL_QUEUE_PRIORITY,
                        alert_id=signal.id,
                        metadata={"signal_id": signal.id, "subscription_id": sub.id},
                        now=now,
                    )
                except (LookupError, TemplateRenderError, ValueError) as e:
                    logger.error(f"Could not queue {method.value} signal for user {user_id}: {e}")
                    skipped["template_error"] += 1
                    continue

                self._record_delivery(signal, user_id, sub.id, method, item, now)
                stats[method.value] += 1
                result.deliveries_queued += 1

            await self.notifications.notify_user(
                user_id,
                NotificationType.SIGNAL,
                f"{variables['signal_type_upper']} signal: {signal.ticker}",
                " ".join(p for p in (
                    signal.ticker, variables["timeframe"], signal.signal_type.value, "@", variables["price"],
                ) if p),
                NotificationPriority.HIGH,
                {"signal_id": signal.id, "ticker": signal.ticker},
            )

            result.notified_users += 1

        signal.sent_to_users += result.notified_users
        signal.delivery_stats = dict(stats)
        signal.updated_at = now
        result.skipped = dict(skipped)

        logger.info(
            f"Fanned out signal {signal.id}: {result.notified_users} users, "
            f"{result.deliveries_queued} deliveries, skipped {result.skipped}"
        )
        return result

    # ============== Delivery tracking ==============

    def _record_delivery(
        self,
        signal: Signal,
        user_id: str,
        subscription_id: str,
        method: NotificationChannel,
        item: QueuedNotification,
        now: datetime,
    ) -> SignalDelivery:
        delivery = SignalDelivery(
            id=str(uuid.uuid4()),
            signal_id=signal.id,
            user_id=user_id,
            subscription_id=subscription_id,
            queue_id=item.id,
            delivery_method=method,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            self._deliveries[delivery.id] = delivery
            self._delivery_by_queue_id[item.id] = delivery.id
        return delivery

    def handle_queue_update(self, item: QueuedNotification):
        """Mirror a queue status change onto the matching signal delivery"""
        delivery_id = self._delivery_by_queue_id.get(item.id)
        if delivery_id is None:
            return
        delivery = self._deliveries[delivery_id]

        new_status = QUEUE_TO_DELIVERY.get(item.status)
        if new_status is None:
            return
        if new_status == DeliveryStatus.FAILED and delivery.delivery_status == DeliveryStatus.SENT:
            new_status = DeliveryStatus.BOUNCED

        delivery.delivery_status = new_status
        delivery.updated_at = item.updated_at
        if new_status in (DeliveryStatus.SENT, DeliveryStatus.DELIVERED):
            delivery.delivery_timestamp = item.delivered_at or item.sent_at
            delivery.error_message = None
        elif item.status == QueueStatus.CANCELLED:
            delivery.error_message = "cancelled"
        else:
            delivery.error_message = item.last_error

    def list_deliveries(
        self,
        signal_id: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 100,
    ) -> List[SignalDelivery]:
        deliveries = [
            d for d in self._deliveries.values()
            if (signal_id is None or d.signal_id == signal_id)
            and (user_id is None or d.user_id == user_id)
        ]
        deliveries.sort(key=lambda d: d.created_at, reverse=True)
        return deliveries[:limit]

    def _track(self, user_id: str, delivery_id: str, field: str) -> Optional[SignalDelivery]:
        delivery = self._deliveries.get(delivery_id)
        if delivery is None or delivery.user_id != user_id:
            return None
        now = datetime.utcnow()
        if not getattr(delivery, field):
            setattr(delivery, field, True)
            setattr(delivery, f"{field}_at", now)
            delivery.updated_at = now
        return delivery

    def mark_viewed(self, user_id: str, delivery_id: str) -> Optional[SignalDelivery]:
        return self._track(user_id, delivery_id, "viewed")

    def mark_clicked(self, user_id: str, delivery_id: str) -> Optional[SignalDelivery]:
        delivery = self._track(user_id, delivery_id, "clicked")
        if delivery is not None:
            self._track(user_id, delivery_id, "viewed")
        return delivery


# Global signal service instance
signal_service = SignalService()
