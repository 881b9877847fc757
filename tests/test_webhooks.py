"""
Tests for webhook secrets, TradingView payload parsing and the webhook endpoint.
"""

import json
import uuid
import pytest
from datetime import datetime

from signaldesk.signals.models import SignalType, Timeframe
from signaldesk.subscriptions.models import SubscriptionTier
from signaldesk.webhooks.models import TradingViewPayload, WebhookSecretCreate, WebhookSecretUpdate, normalize_ticker
from signaldesk.webhooks.service import WebhookService, compute_signature, generate_secret

SECRET = "ab" * 32


@pytest.mark.parametrize("raw,expected", [
    ("btcusdt", "BTCUSDT"),
    ("BINANCE:BTCUSDT", "BTCUSDT"),
    ("BINANCE:BTCUSDT.P", "BTCUSDT"),
    (" oanda:eurusd ", "EURUSD"),
    ("AAPL", "AAPL"),
])
def test_normalize_ticker(raw, expected):
    assert normalize_ticker(raw) == expected


class TestTradingViewPayload:

    def test_parses_tradingview_alert(self):
        payload = TradingViewPayload.model_validate({
            "ticker": "BYBIT:ETHUSDT.P",
            "signal_type": " SELL ",
            "price": "3,250.75",
            "timeframe": "240",
            "timestamp": "2026-03-10T14:00:00+02:00",
            "source": "TradingView",
        })

        assert payload.ticker == "ETHUSDT"
        assert payload.signal_type == SignalType.SELL
        assert payload.price == 3250.75
        assert payload.timeframe == Timeframe.H4
        assert payload.timestamp == datetime(2026, 3, 10, 12, 0)
        assert payload.source == "tradingview"

        signal = payload.to_signal()
        assert signal.ticker == "ETHUSDT"
        assert signal.tags == ["tradingview"]

    @pytest.mark.parametrize("interval,expected", [
        ("D", Timeframe.D1),
        ("1d", Timeframe.D1),
        ("60", Timeframe.H1),
        ("30M", Timeframe.M30),
        ("", None),
    ])
    def test_interval_aliases(self, interval, expected):
        payload = TradingViewPayload(ticker="BTCUSDT", signal_type="buy", price=1, timeframe=interval)
        assert payload.timeframe == expected

    @pytest.mark.parametrize("field,value", [
        ("price", "abc"),
        ("price", "-5"),
        ("signal_type", "hold"),
        ("timeframe", "7"),
        ("ticker", "BINANCE:"),
    ])
    def test_rejects_bad_values(self, field, value):
        data = {"ticker": "BTCUSDT", "signal_type": "buy", "price": "100"}
        data[field] = value
        with pytest.raises(ValueError):
            TradingViewPayload.model_validate(data)


class TestWebhookService:

    def test_generate_secret(self):
        secret = generate_secret()
        assert len(secret) == 64
        assert secret != generate_secret()

    def test_secret_format_validated(self):
        with pytest.raises(ValueError):
            WebhookSecretCreate(name="bad", secret="not-hex")
        assert WebhookSecretCreate(name="ok", secret=SECRET.upper()).secret == SECRET

    def test_bootstrap_from_environment_value(self):
        service = WebhookService(bootstrap_secret=SECRET)
        assert [s.name for s in service.list()] == ["tradingview-default"]
        assert service.authenticate(SECRET) is not None

    def test_invalid_bootstrap_ignored(self):
        assert WebhookService(bootstrap_secret="short").list() == []

    def test_authenticate_records_usage(self):
        service = WebhookService()
        created = service.create(WebhookSecretCreate(name="tv"))

        assert service.authenticate("0" * 64) is None
        matched = service.authenticate(created.secret.upper())

        assert matched.id == created.id
        assert matched.usage_count == 1
        assert matched.last_used is not None

    def test_inactive_and_source_restricted(self):
        service = WebhookService()
        created = service.create(WebhookSecretCreate(name="tv", allowed_sources=[" TradingView ", "tradingview"]))
        assert created.allowed_sources == ["tradingview"]

        assert service.authenticate(created.secret, "custom") is None
        assert service.authenticate(created.secret, "TRADINGVIEW") is not None

        service.update(created.id, WebhookSecretUpdate(is_active=False))
        assert service.authenticate(created.secret) is None

    def test_rotate_invalidates_old_secret(self):
        service = WebhookService()
        created = service.create(WebhookSecretCreate(name="tv"))
        old = created.secret

        service.rotate(created.id)

        assert created.secret != old
        assert service.authenticate(old) is None
        assert service.authenticate(created.secret) is not None

    def test_duplicate_name(self):
        service = WebhookService()
        service.create(WebhookSecretCreate(name="tv"))
        with pytest.raises(ValueError):
            service.create(WebhookSecretCreate(name="tv"))

    def test_masked(self):
        service = WebhookService()
        masked = service.create(WebhookSecretCreate(name="tv", secret=SECRET)).masked()
        assert masked.secret == "abababab" + "*" * 56

    def test_signature(self):
        body = b'{"ticker": "BTCUSDT"}'
        signature = compute_signature(SECRET, body)

        assert signature.startswith("sha256=")
        assert WebhookService.verify_signature(SECRET, body, signature)
        assert WebhookService.verify_signature(SECRET, body, signature.upper().replace("SHA256", "sha256"))
        assert not WebhookService.verify_signature(SECRET, body + b" ", signature)


class TestWebhookEndpoint:

    @pytest.fixture
    def secret(self, client, admin_headers) -> str:
        response = client.post(
            "/api/admin/webhooks",
            json={"name": f"tv-{uuid.uuid4().hex[:8]}", "allowed_sources": ["tradingview"]},
            headers=admin_headers,
        )
        assert response.status_code == 201
        return response.json()["secret"]

    @pytest.fixture
    def ticker(self, client, admin_headers) -> str:
        symbol = f"ZZ{uuid.uuid4().hex[:6].upper()}"
        response = client.post(
            "/api/admin/tickers",
            json={"symbol": symbol, "description": "Test instrument"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        return symbol

    def post(self, client, payload, headers=None):
        return client.post(
            "/api/webhook/tradingview",
            content=json.dumps(payload),
            headers={"Content-Type": "text/plain", **(headers or {})},
        )

    def test_publishes_and_fans_out(self, client, make_user, secret, ticker):
        user, headers = make_user(SubscriptionTier.PREMIUM)
        response = client.post(
            "/api/subscriptions/tickers",
            json={"ticker_symbol": ticker, "timeframe": "4H", "delivery_methods": ["email"]},
            headers=headers,
        )
        assert response.status_code == 201

        response = self.post(client, {
            "ticker": f"BINANCE:{ticker}.P",
            "signal_type": "BUY",
            "price": "1,234.5",
            "timeframe": "240",
            "webhook_secret": secret,
        })

        assert response.status_code == 201
        data = response.json()
        assert data["ticker"] == ticker
        assert data["price"] == 1234.5
        assert data["fan_out"]["notified_users"] == 1
        assert data["fan_out"]["deliveries_queued"] == 1

        deliveries = client.get("/api/signals/deliveries", headers=headers).json()
        assert [d["signal_id"] for d in deliveries] == [data["signal_id"]]

        inbox = client.get("/api/notifications", headers=headers).json()
        assert inbox[0]["title"] == f"BUY signal: {ticker}"

        signal = client.get(f"/api/signals/{data['signal_id']}", headers=headers).json()
        assert signal["source"] == "webhook"

    def test_secret_in_header(self, client, secret, ticker):
        response = self.post(
            client,
            {"ticker": ticker, "signal_type": "sell", "price": 10},
            headers={"X-Webhook-Secret": secret},
        )
        assert response.status_code == 201
        assert response.json()["fan_out"]["matched_subscriptions"] == 0

    def test_signature_checked(self, client, secret, ticker):
        body = json.dumps({"ticker": ticker, "signal_type": "buy", "price": 10, "webhook_secret": secret})

        good = client.post(
            "/api/webhook/tradingview", content=body,
            headers={"X-Webhook-Signature": compute_signature(secret, body.encode())},
        )
        assert good.status_code == 201

        bad = client.post(
            "/api/webhook/tradingview", content=body,
            headers={"X-Webhook-Signature": "sha256=" + "0" * 64},
        )
        assert bad.status_code == 401

    def test_missing_and_invalid_secret(self, client, ticker):
        payload = {"ticker": ticker, "signal_type": "buy", "price": 10}
        assert self.post(client, payload).status_code == 401
        assert self.post(client, {**payload, "webhook_secret": "f" * 64}).status_code == 401

    def test_source_not_allowed(self, client, secret, ticker):
        response = self.post(client, {
            "ticker": ticker, "signal_type": "buy", "price": 10,
            "webhook_secret": secret, "source": "custom-bot",
        })
        assert response.status_code == 401

    def test_malformed_body(self, client, secret):
        response = client.post("/api/webhook/tradingview", content="not json")
        assert response.status_code == 422

        response = client.post("/api/webhook/tradingview", content="[1, 2]")
        assert response.status_code == 422

    def test_invalid_payload(self, client, secret):
        response = self.post(client, {
            "ticker": "BTCUSDT", "signal_type": "buy", "price": "abc", "webhook_secret": secret,
        })
        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["price"]

    def test_usage_counts_accepted_requests_only(self, client, admin_headers, ticker):
        created = client.post(
            "/api/admin/webhooks",
            json={"name": f"tv-{uuid.uuid4().hex[:8]}"},
            headers=admin_headers,
        ).json()
        secret = created["secret"]
        body = json.dumps({"ticker": ticker, "signal_type": "buy", "price": 10, "webhook_secret": secret})

        assert client.post(
            "/api/webhook/tradingview", content=body,
            headers={"X-Webhook-Signature": "sha256=" + "0" * 64},
        ).status_code == 401
        assert self.post(client, {
            "ticker": ticker, "signal_type": "buy", "price": "abc", "webhook_secret": secret,
        }).status_code == 422
        assert client.post("/api/webhook/tradingview", content=body).status_code == 201

        listed = client.get("/api/admin/webhooks", headers=admin_headers).json()
        entry = next(s for s in listed if s["id"] == created["id"])
        assert entry["usage_count"] == 1
        assert entry["last_used"] is not None


class TestWebhookAdmin:

    def test_requires_admin(self, client, make_user):
        _, headers = make_user()
        assert client.get("/api/admin/webhooks", headers=headers).status_code == 403

    def test_lifecycle(self, client, admin_headers):
        name = f"tv-{uuid.uuid4().hex[:8]}"
        created = client.post("/api/admin/webhooks", json={"name": name}, headers=admin_headers).json()
        assert len(created["secret"]) == 64

        assert client.post(
            "/api/admin/webhooks", json={"name": name}, headers=admin_headers,
        ).status_code == 409

        listed = client.get("/api/admin/webhooks", headers=admin_headers).json()
        entry = next(s for s in listed if s["id"] == created["id"])
        assert entry["secret"].endswith("*" * 56)

        rotated = client.post(f"/api/admin/webhooks/{created['id']}/rotate", headers=admin_headers).json()
        assert rotated["secret"] != created["secret"]

        updated = client.put(
            f"/api/admin/webhooks/{created['id']}",
            json={"is_active": False},
            headers=admin_headers,
        ).json()
        assert updated["is_active"] is False
        assert "*" in updated["secret"]

        assert client.delete(f"/api/admin/webhooks/{created['id']}", headers=admin_headers).status_code == 204
        assert client.delete(f"/api/admin/webhooks/{created['id']}", headers=admin_headers).status_code == 404

    def test_generate(self, client, admin_headers):
        secret = client.get("/api/admin/webhooks/generate", headers=admin_headers).json()["secret"]
        assert len(secret) == 64
