"""
API tests for health, metrics, notification admin, inbox, tickers and the realtime socket.
"""

import asyncio
import uuid
import pytest
from starlette.websockets import WebSocketDisconnect

from signaldesk.notifications.models import NotificationPriority, NotificationType
from signaldesk.notifications.service import notification_service
from signaldesk.notifications.worker import DeliveryWorker
from signaldesk.subscriptions.models import SubscriptionTier


def queue_payload(user_id="user-1", **overrides):
    data = {
        "user_id": user_id,
        "channel": "email",
        "recipient": "trader@example.com",
        "subject": "Hello",
        "message": "Queued from the admin API",
    }
    data.update(overrides)
    return data


@pytest.fixture
def ticker(client, admin_headers) -> str:
    symbol = f"QQ{uuid.uuid4().hex[:6].upper()}"
    response = client.post(
        "/api/admin/tickers",
        json={"symbol": symbol, "description": "API test instrument"},
        headers=admin_headers,
    )
    assert response.status_code == 201
    return symbol


class TestSystemEndpoints:

    def test_health(self, client):
        data = client.get("/health").json()
        assert data["status"] == "ok"
        assert data["worker"]["running"] is False
        assert "queue_pending" in data

    def test_metrics(self, client, admin_headers):
        client.post("/api/admin/notifications/queue", json=queue_payload(), headers=admin_headers)

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "signaldesk_notifications_enqueued_total" in response.text
        assert "signaldesk_queue_pending" in response.text

    async def test_shutdown_cancels_stuck_worker(self, monkeypatch):
        import app as app_module

        cancelled = []

        class StuckWorker:
            processed = 0
            last_run_at = None

            def __init__(self, *args, **kwargs):
                pass

            async def run(self, shutdown_event):
                try:
                    await asyncio.Event().wait()
                except asyncio.CancelledError:
                    cancelled.append(True)
                    raise

        monkeypatch.setattr(app_module, "WORKER_ENABLED", True)
        monkeypatch.setattr(app_module, "WORKER_SHUTDOWN_TIMEOUT", 0.01)
        monkeypatch.setattr(app_module, "DeliveryWorker", StuckWorker)

        async with app_module.lifespan(app_module.app):
            assert isinstance(app_module.app.state.worker, StuckWorker)
            await asyncio.sleep(0)

        assert cancelled == [True]
        app_module.app.state.worker = None


class TestNotificationAdmin:

    def test_requires_admin(self, client, make_user):
        _, headers = make_user()
        assert client.get("/api/admin/notifications/queue", headers=headers).status_code == 403
        assert client.get("/api/admin/notifications/queue").status_code == 401

    def test_queue_lifecycle(self, client, admin_headers):
        created = client.post(
            "/api/admin/notifications/queue", json=queue_payload(priority=8), headers=admin_headers,
        )
        assert created.status_code == 201
        item = created.json()
        assert item["status"] == "pending"
        assert item["priority"] == 8

        fetched = client.get(f"/api/admin/notifications/queue/{item['id']}", headers=admin_headers)
        assert fetched.json()["id"] == item["id"]

        # Pending items can be cancelled but not retried
        assert client.post(
            f"/api/admin/notifications/queue/{item['id']}/retry", headers=admin_headers,
        ).status_code == 409
        cancelled = client.post(f"/api/admin/notifications/queue/{item['id']}/cancel", headers=admin_headers)
        assert cancelled.json()["status"] == "cancelled"
        assert client.post(
            f"/api/admin/notifications/queue/{item['id']}/cancel", headers=admin_headers,
        ).status_code == 409

        listed = client.get(
            "/api/admin/notifications/queue", params={"status": "cancelled"}, headers=admin_headers,
        ).json()
        assert item["id"] in [i["id"] for i in listed]

    def test_invalid_enqueue(self, client, admin_headers):
        assert client.post(
            "/api/admin/notifications/queue", json=queue_payload(priority=11), headers=admin_headers,
        ).status_code == 422
        assert client.post(
            "/api/admin/notifications/queue", json=queue_payload(recipient="   "), headers=admin_headers,
        ).status_code == 400

    def test_unknown_item(self, client, admin_headers):
        assert client.get("/api/admin/notifications/queue/nope", headers=admin_headers).status_code == 404
        assert client.post("/api/admin/notifications/queue/nope/cancel", headers=admin_headers).status_code == 404

    def test_receipt_requires_sent_item(self, client, admin_headers):
        item = client.post("/api/admin/notifications/queue", json=queue_payload(), headers=admin_headers).json()
        response = client.post(
            f"/api/admin/notifications/queue/{item['id']}/receipt",
            json={"status": "delivered"},
            headers=admin_headers,
        )
        assert response.status_code == 409

    def test_process_without_worker(self, client, admin_headers):
        assert client.post("/api/admin/notifications/process", headers=admin_headers).status_code == 503

    def test_process_and_receipt(self, client, admin_headers, fake_providers):
        item = client.post("/api/admin/notifications/queue", json=queue_payload(priority=10), headers=admin_headers).json()
        client.app.state.worker = DeliveryWorker(notification_service, fake_providers)
        try:
            response = client.post("/api/admin/notifications/process", headers=admin_headers)
        finally:
            client.app.state.worker = None

        assert response.status_code == 200
        assert response.json()["processed"] >= 1

        sent = client.get(f"/api/admin/notifications/queue/{item['id']}", headers=admin_headers).json()
        assert sent["status"] == "sent"

        bounced = client.post(
            f"/api/admin/notifications/queue/{item['id']}/receipt",
            json={"status": "bounced", "error": "mailbox full"},
            headers=admin_headers,
        ).json()
        assert bounced["status"] == "failed"

        logs = client.get(
            "/api/admin/notifications/logs", params={"queue_id": item["id"]}, headers=admin_headers,
        ).json()
        assert [log["status"] for log in logs] == ["bounced", "sent"]

        retried = client.post(f"/api/admin/notifications/queue/{item['id']}/retry", headers=admin_headers)
        assert retried.json()["status"] == "pending"
        assert retried.json()["current_attempts"] == 0

    def test_stats(self, client, admin_headers):
        stats = client.get("/api/admin/notifications/stats", headers=admin_headers).json()
        assert set(stats) == {"queue", "channels", "totals", "templates"}
        assert stats["channels"]["total"] >= 5

    def test_channels(self, client, admin_headers):
        channels = client.get("/api/admin/notifications/channels", headers=admin_headers).json()
        assert {c["type"] for c in channels} >= {"email", "sms", "push", "telegram", "discord"}

        name = f"backup-{uuid.uuid4().hex[:6]}"
        created = client.post(
            "/api/admin/notifications/channels",
            json={"name": name, "type": "sms", "provider": "http_gateway", "rate_limit_per_minute": 10},
            headers=admin_headers,
        )
        assert created.status_code == 201
        channel = created.json()
        assert client.post(
            "/api/admin/notifications/channels",
            json={"name": name, "type": "sms", "provider": "http_gateway"},
            headers=admin_headers,
        ).status_code == 409

        updated = client.put(
            f"/api/admin/notifications/channels/{channel['id']}",
            json={"is_enabled": False},
            headers=admin_headers,
        ).json()
        assert updated["is_enabled"] is False
        assert client.put(
            "/api/admin/notifications/channels/nope", json={}, headers=admin_headers,
        ).status_code == 404

        test = client.post(
            f"/api/admin/notifications/channels/{channel['id']}/test",
            json={"recipient": "+15550100"},
            headers=admin_headers,
        )
        assert test.status_code == 202
        assert test.json()["priority"] == 10
        assert test.json()["channel"] == "sms"

        assert client.post(
            "/api/admin/notifications/channels/nope/test",
            json={"recipient": "+15550100"},
            headers=admin_headers,
        ).status_code == 404

    def test_templates(self, client, admin_headers):
        system = client.get(
            "/api/admin/notifications/templates", params={"category": "signal", "channel": "email"},
            headers=admin_headers,
        ).json()
        assert system[0]["is_system"] is True
        assert client.delete(
            f"/api/admin/notifications/templates/{system[0]['id']}", headers=admin_headers,
        ).status_code == 400

        name = f"promo-{uuid.uuid4().hex[:6]}"
        created = client.post(
            "/api/admin/notifications/templates",
            json={"name": name, "type": "email", "category": "marketing", "body_text": "Hi {{name}}"},
            headers=admin_headers,
        )
        assert created.status_code == 201
        template = created.json()
        assert template["variables"] == ["name"]

        assert client.post(
            "/api/admin/notifications/templates",
            json={"name": name, "type": "email", "category": "marketing", "body_text": "x"},
            headers=admin_headers,
        ).status_code == 409

        updated = client.put(
            f"/api/admin/notifications/templates/{template['id']}",
            json={"subject": "For {{name}} on {{date}}"},
            headers=admin_headers,
        ).json()
        assert updated["variables"] == ["name", "date"]

        assert client.delete(
            f"/api/admin/notifications/templates/{template['id']}", headers=admin_headers,
        ).status_code == 204
        assert client.delete(
            f"/api/admin/notifications/templates/{template['id']}", headers=admin_headers,
        ).status_code == 404


class TestInbox:

    async def test_inbox_flow(self, async_client, make_user):
        user, headers = make_user()
        first = await notification_service.notify_user(
            user.id, NotificationType.SYSTEM, "Maintenance", "Tonight at 22:00 UTC",
        )
        second = await notification_service.notify_user(
            user.id, NotificationType.PRICE, "Price alert", "BTCUSDT crossed 70k", NotificationPriority.HIGH,
        )

        listed = (await async_client.get("/api/notifications", headers=headers)).json()
        assert {n["id"] for n in listed} == {first.id, second.id}
        assert (await async_client.get("/api/notifications/unread-count", headers=headers)).json() == {"unread_count": 2}

        read = await async_client.post(f"/api/notifications/{first.id}/read", headers=headers)
        assert read.json()["status"] == "read"

        archived = await async_client.post(f"/api/notifications/{second.id}/archive", headers=headers)
        assert archived.json()["status"] == "archived"
        assert archived.json()["read_at"] is not None

        unread = (await async_client.get("/api/notifications", params={"status": "unread"}, headers=headers)).json()
        assert unread == []

        assert (await async_client.delete(f"/api/notifications/{first.id}", headers=headers)).status_code == 204
        assert (await async_client.post(f"/api/notifications/{first.id}/read", headers=headers)).status_code == 404
        assert first.id not in notification_service.inbox._notifications
        deleted = (await async_client.get("/api/notifications", params={"status": "deleted"}, headers=headers)).json()
        assert deleted == []

    async def test_other_users_notifications_hidden(self, async_client, make_user):
        owner, _ = make_user()
        _, stranger_headers = make_user()
        note = await notification_service.notify_user(owner.id, NotificationType.NEWS, "News", "Fed meeting")

        response = await async_client.post(f"/api/notifications/{note.id}/read", headers=stranger_headers)
        assert response.status_code == 404

    async def test_read_all(self, async_client, make_user):
        user, headers = make_user()
        for i in range(3):
            await notification_service.notify_user(user.id, NotificationType.ACHIEVEMENT, f"Badge {i}", "Nice")

        assert (await async_client.post("/api/notifications/read-all", headers=headers)).json() == {"updated": 3}
        assert (await async_client.get("/api/notifications/unread-count", headers=headers)).json()["unread_count"] == 0

    def test_preferences(self, client, make_user):
        _, headers = make_user()
        prefs = client.get("/api/notifications/preferences", headers=headers).json()
        assert prefs["timezone"] == "UTC"
        assert prefs["quiet_hours_enabled"] is False

        updated = client.put(
            "/api/notifications/preferences",
            json={"quiet_hours_enabled": True, "timezone": "Europe/London", "phone_number": "+447700900000"},
            headers=headers,
        ).json()
        assert updated["quiet_hours_enabled"] is True
        assert updated["timezone"] == "Europe/London"

        bad = client.put("/api/notifications/preferences", json={"timezone": "Mars/Olympus"}, headers=headers)
        assert bad.status_code == 422

        assert client.put(
            "/api/notifications/preferences", json={"quiet_hours_start": 24}, headers=headers,
        ).status_code == 422


class TestTickersAndSubscriptions:

    def test_ticker_admin(self, client, admin_headers, ticker):
        assert client.post(
            "/api/admin/tickers",
            json={"symbol": ticker.lower(), "description": "dup"},
            headers=admin_headers,
        ).status_code == 409

        response = client.put(
            f"/api/admin/tickers/{ticker}/timeframes", json=["4H", "1D", "4H"], headers=admin_headers,
        )
        assert response.json()["timeframes"] == ["4H", "1D"]

        assert client.put(
            "/api/admin/tickers/NOPE/timeframes", json=["4H"], headers=admin_headers,
        ).status_code == 404

    def test_public_ticker_list_hides_disabled(self, client, admin_headers, make_user, ticker):
        _, headers = make_user()
        client.put(f"/api/admin/tickers/{ticker}", json={"is_enabled": False}, headers=admin_headers)

        symbols = [t["symbol"] for t in client.get("/api/tickers", headers=headers).json()]
        assert ticker not in symbols
        assert client.get(f"/api/tickers/{ticker}", headers=headers).status_code == 404

    def test_subscription_errors(self, client, admin_headers, make_user, ticker):
        _, headers = make_user()
        url = "/api/subscriptions/tickers"
        client.put(f"/api/admin/tickers/{ticker}/timeframes", json=["4H"], headers=admin_headers)

        assert client.post(url, json={"ticker_symbol": "NOPE", "timeframe": "4H"}, headers=headers).status_code == 404
        assert client.post(url, json={"ticker_symbol": ticker, "timeframe": "1D"}, headers=headers).status_code == 400
        assert client.post(
            url, json={"ticker_symbol": ticker, "timeframe": "4H", "delivery_methods": ["sms"]}, headers=headers,
        ).status_code == 403

        created = client.post(url, json={"ticker_symbol": ticker, "timeframe": "4H"}, headers=headers)
        assert created.status_code == 201
        assert client.post(url, json={"ticker_symbol": ticker, "timeframe": "4H"}, headers=headers).status_code == 409

        sub_id = created.json()["id"]
        assert client.put(f"{url}/{sub_id}", json={"max_alerts_per_day": 5}, headers=headers).json()["max_alerts_per_day"] == 5
        assert client.delete(f"{url}/{sub_id}", headers=headers).status_code == 204
        assert client.delete(f"{url}/{sub_id}", headers=headers).status_code == 404

    def test_publish_and_track(self, client, admin_headers, make_user, ticker):
        _, headers = make_user(SubscriptionTier.BASIC)
        client.post(
            "/api/subscriptions/tickers",
            json={"ticker_symbol": ticker, "timeframe": "1D", "delivery_methods": ["email"]},
            headers=headers,
        )

        published = client.post(
            "/api/admin/signals",
            json={"ticker": ticker, "signal_type": "sell", "price": 12.5, "timeframe": "1D",
                  "entry_price": 12.5, "stop_loss": 13, "take_profit": 11},
            headers=admin_headers,
        )
        assert published.status_code == 201
        body = published.json()
        assert body["signal"]["risk_reward_ratio"] == 3.0
        assert body["fan_out"]["deliveries_queued"] == 1

        signal_id = body["signal"]["id"]
        deliveries = client.get(f"/api/admin/signals/{signal_id}/deliveries", headers=admin_headers).json()
        assert len(deliveries) == 1

        clicked = client.post(f"/api/signals/deliveries/{deliveries[0]['id']}/clicked", headers=headers).json()
        assert clicked["clicked"] is True
        assert clicked["viewed"] is True

        deactivated = client.post(f"/api/admin/signals/{signal_id}/deactivate", headers=admin_headers).json()
        assert deactivated["is_active"] is False
        assert signal_id not in [s["id"] for s in client.get("/api/signals", headers=headers).json()]

        assert client.get("/api/admin/signals/nope/deliveries", headers=admin_headers).status_code == 404


class TestRealtimeSocket:

    def test_rejects_missing_or_bad_token(self, client):
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/notifications") as ws:
                ws.receive_json()
        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect("/ws/notifications?token=bad") as ws:
                ws.receive_json()

    def test_connect_ping_and_push(self, client, admin_headers, make_user, ticker):
        _, headers = make_user()
        token = headers["Authorization"].split(" ", 1)[1]
        client.post(
            "/api/subscriptions/tickers",
            json={"ticker_symbol": ticker, "timeframe": "4H"},
            headers=headers,
        )

        with client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            assert ws.receive_json() == {"type": "connected", "data": {"unread_count": 0}}

            ws.send_text("ping")
            assert ws.receive_text() == "pong"

            client.post(
                "/api/admin/signals",
                json={"ticker": ticker, "signal_type": "buy", "price": 5, "timeframe": "4H"},
                headers=admin_headers,
            )
            message = ws.receive_json()
            assert message["type"] == "notification"
            assert message["data"]["title"] == f"BUY signal: {ticker}"
