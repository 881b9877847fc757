"""SignalDesk web application"""
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, status
from fastapi.responses import Response

from config import WORKER_ENABLED
from signaldesk import __version__, metrics
from signaldesk.auth.routes import router as auth_router
from signaldesk.auth.service import auth_service
from signaldesk.subscriptions.routes import router as subscriptions_router
from signaldesk.signals.routes import (
    router as signals_router,
    tickers_router,
    subscriptions_router as ticker_subscriptions_router,
    admin_signals_router,
    admin_tickers_router,
)
from signaldesk.signals.service import signal_service
from signaldesk.webhooks.routes import router as webhook_router, admin_router as admin_webhooks_router
from signaldesk.notifications.routes import (
    router as notifications_router,
    admin_router as admin_notifications_router,
)
from signaldesk.notifications.providers import build_default_providers
from signaldesk.notifications.realtime import connection_manager
from signaldesk.notifications.service import notification_service
from signaldesk.notifications.worker import DeliveryWorker

logger = logging.getLogger(__name__)

# Seconds the worker gets to finish its batch before it is cancelled
WORKER_SHUTDOWN_TIMEOUT = 10


# Queue status changes flow back into signal delivery tracking
notification_service.on_result(signal_service.handle_queue_update)
# New inbox entries are pushed to the user's open sockets
notification_service.inbox.set_broadcast(connection_manager.send_to_user)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start and stop the delivery worker"""
    app.state.worker = None
    shutdown_event = asyncio.Event()
    task = None

    if WORKER_ENABLED:
        worker = DeliveryWorker(notification_service, build_default_providers())
        app.state.worker = worker
        task = asyncio.create_task(worker.run(shutdown_event))
    else:
        logger.info("Delivery worker disabled")

    yield

    shutdown_event.set()
    if task is not None:
        try:
            await asyncio.wait_for(task, timeout=WORKER_SHUTDOWN_TIMEOUT)
        except asyncio.TimeoutError:
            logger.warning("Delivery worker did not stop in time, cancelling")
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


app = FastAPI(title="SignalDesk", version=__version__, lifespan=lifespan)

app.include_router(auth_router)
app.include_router(ticker_subscriptions_router)
app.include_router(subscriptions_router)
app.include_router(signals_router)
app.include_router(tickers_router)
app.include_router(admin_signals_router)
app.include_router(admin_tickers_router)
app.include_router(webhook_router)
app.include_router(admin_webhooks_router)
app.include_router(notifications_router)
app.include_router(admin_notifications_router)


@app.get("/health")
async def health():
    worker = getattr(app.state, "worker", None)
    return {
        "status": "ok",
        "version": __version__,
        "time": datetime.utcnow().isoformat(),
        "worker": {
            "running": worker is not None,
            "processed": worker.processed if worker else 0,
            "last_run_at": worker.last_run_at.isoformat() if worker and worker.last_run_at else None,
        },
        "queue_pending": notification_service.queue.depth(),
        "websocket_clients": connection_manager.connection_count(),
    }


@app.get("/metrics")
async def prometheus_metrics():
    """Prometheus metrics endpoint"""
    body, content_type = metrics.render_latest()
    return Response(content=body, media_type=content_type)


@app.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    """Realtime inbox push; authenticate with `?token=<jwt>`"""
    token = websocket.query_params.get("token") or websocket.cookies.get("access_token")
    user = auth_service.resolve_token(token) if token else None
    if user is None or not user.is_active:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await connection_manager.connect(
        user.id, websocket, unread=notification_service.inbox.unread_count(user.id)
    )
    try:
        while True:
            # Keep connection alive, handle any client messages
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        connection_manager.disconnect(user.id, websocket)
